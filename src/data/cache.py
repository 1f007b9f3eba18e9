"""
Statistics gathering and the broadcastable records cache.

`build_records_cache` makes a single pass over the raw records, counting the
records in each file and the occurrences of every attribute value, then builds
one `AttributeIndex` per attribute on the driver. The resulting `RecordsCache`
is an immutable snapshot meant to be broadcast to every worker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from types import MappingProxyType
from typing import Callable, Iterator, Mapping, Sequence

import numpy as np
from loguru import logger

from src.engine import CounterRegistry, LocalCounter, LocalExecutor, Partitioned

from .indexers import AttributeIndex, EmptyDomainError, build_attribute_index
from .records import AttributeSpec, DistortionPrior, FileId, IndexedAttribute, Record, ValueId
from .transformers import check_schema, transform_records

FILE_SIZES_COUNTER = "number of records per file"


def _value_counter_name(attribute: AttributeSpec) -> str:
    return f"value counts for attribute {attribute.name}"


def _default_log(message: str) -> None:
    logger.info(message)


@dataclass(frozen=True)
class RecordsCache:
    """
    Attribute indexes plus per-file record counts for one record collection.

    Parameters
    ----------
    indexed_attributes:
        One entry per attribute, in the same order as the record values.
    file_sizes:
        Number of records observed in each file.
    """

    indexed_attributes: tuple[IndexedAttribute, ...]
    file_sizes: Mapping[FileId, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "indexed_attributes", tuple(self.indexed_attributes))
        object.__setattr__(self, "file_sizes", MappingProxyType(dict(self.file_sizes)))

    def __getstate__(self) -> dict:
        return {
            "indexed_attributes": self.indexed_attributes,
            "file_sizes": dict(self.file_sizes),
        }

    def __setstate__(self, state: dict) -> None:
        object.__setattr__(self, "indexed_attributes", state["indexed_attributes"])
        object.__setattr__(self, "file_sizes", MappingProxyType(state["file_sizes"]))

    @property
    def num_records(self) -> int:
        return sum(self.file_sizes.values())

    @property
    def num_attributes(self) -> int:
        return len(self.indexed_attributes)

    @property
    def attribute_names(self) -> tuple[str, ...]:
        return tuple(attribute.name for attribute in self.indexed_attributes)

    def index_of(self, name: str) -> AttributeIndex:
        for attribute in self.indexed_attributes:
            if attribute.name == name:
                return attribute.index
        raise KeyError(f"Unknown attribute '{name}'")

    def distortion_priors(self) -> Iterator[DistortionPrior]:
        return (attribute.distortion_prior for attribute in self.indexed_attributes)

    def set_generator(self, generator: np.random.Generator) -> None:
        """Replace the sampling generator of every index on this copy only."""
        for attribute in self.indexed_attributes:
            attribute.index.set_generator(generator)

    def transform_records(
        self,
        records: Partitioned[Record[str]],
        *,
        executor: LocalExecutor | None = None,
    ) -> Partitioned[Record[ValueId]]:
        return transform_records(records, self.indexed_attributes, executor=executor)


def _count_partition(
    value_counter_names: tuple[str, ...],
    partition: Sequence[Record[str]],
    scope: dict[str, LocalCounter],
) -> None:
    file_sizes = scope[FILE_SIZES_COUNTER]
    value_counters = [scope[name] for name in value_counter_names]
    for record in partition:
        check_schema(record, len(value_counters))
        file_sizes.add(record.file_id, 1)
        for counter, value in zip(value_counters, record.values):
            counter.add(value, 1)


def build_records_cache(
    records: Partitioned[Record[str]],
    attribute_specs: Sequence[AttributeSpec],
    expected_max_cluster_size: int,
    *,
    executor: LocalExecutor | None = None,
    log: Callable[[str], None] | None = None,
) -> RecordsCache:
    """
    Gather record statistics in one pass and index every attribute.

    Parameters
    ----------
    records:
        Raw records; value order must match `attribute_specs`.
    attribute_specs:
        Specification of each attribute, in record value order.
    expected_max_cluster_size:
        Largest expected cluster size, used to size each index's cache of
        precomputed sampling distributions.
    log:
        Receives human-readable progress messages. Defaults to loguru.
    """
    if expected_max_cluster_size < 0:
        raise ValueError("expected_max_cluster_size must be non-negative.")
    attribute_specs = tuple(attribute_specs)
    emit = log or _default_log
    executor = executor or LocalExecutor()

    first = records.first()
    if first is not None:
        check_schema(first, len(attribute_specs))

    registry = CounterRegistry()
    file_sizes_counter = registry.register(FILE_SIZES_COUNTER)
    value_counters = [registry.register(_value_counter_name(spec)) for spec in attribute_specs]

    emit("Gathering statistics from source data files.")
    executor.foreach_partition(
        partial(_count_partition, tuple(counter.name for counter in value_counters)),
        records,
        registry,
    )

    file_sizes = file_sizes_counter.value()
    emit(
        f"Finished gathering statistics from {sum(file_sizes.values())} records "
        f"across {len(file_sizes)} file(s)."
    )

    indexed_attributes = []
    for spec, counter in zip(attribute_specs, value_counters):
        emit(f"Indexing attribute '{spec.name}'.")
        try:
            index = build_attribute_index(
                counter.value(),
                similarity_fn=spec.similarity_fn,
                max_cluster_size=expected_max_cluster_size,
            )
        except EmptyDomainError as exc:
            raise EmptyDomainError(f"Attribute '{spec.name}' has no observed values.") from exc
        indexed_attributes.append(IndexedAttribute.from_spec(spec, index))

    return RecordsCache(indexed_attributes=tuple(indexed_attributes), file_sizes=file_sizes)
