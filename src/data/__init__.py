"""Record types, attribute indexing and the records cache."""

from .cache import RecordsCache, build_records_cache  # noqa: F401
from .indexers import (  # noqa: F401
    AttributeIndex,
    EmptyDomainError,
    UnseenValueError,
    build_attribute_index,
)
from .loaders import load_records  # noqa: F401
from .records import (  # noqa: F401
    AttributeSpec,
    DistortionPrior,
    IndexedAttribute,
    Record,
)
from .samplers import ConstantSimilarityFn, FrequencySampler, SimilarityFn  # noqa: F401
from .transformers import (  # noqa: F401
    SchemaMismatchError,
    transform_record,
    transform_records,
)
