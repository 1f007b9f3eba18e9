import pickle

import numpy as np
import pytest

from src.data import (
    AttributeSpec,
    DistortionPrior,
    EmptyDomainError,
    Record,
    RecordsCache,
    SchemaMismatchError,
    build_records_cache,
)
from src.engine import CounterRegistrationError, LocalExecutor, Partitioned

PRIOR = DistortionPrior(alpha=1.0, beta=50.0)


def _records(num_partitions=1):
    rows = [
        Record(id="r1", file_id="f1", values=("ann", "smith")),
        Record(id="r2", file_id="f1", values=("bob", "jones")),
        Record(id="r3", file_id="f2", values=("ann", "smith")),
    ]
    return Partitioned.from_iterable(rows, num_partitions=num_partitions)


def _specs(*names):
    return [AttributeSpec(name=name, distortion_prior=PRIOR) for name in names]


def test_single_attribute_scenario():
    records = Partitioned.from_iterable(
        [
            Record(id="r1", file_id="f1", values=("ann",)),
            Record(id="r2", file_id="f1", values=("bob",)),
            Record(id="r3", file_id="f2", values=("ann",)),
        ],
        num_partitions=2,
    )

    cache = build_records_cache(records, _specs("name"), 3, log=lambda message: None)

    assert cache.num_records == 3
    assert dict(cache.file_sizes) == {"f1": 2, "f2": 1}
    assert cache.num_attributes == 1
    index = cache.index_of("name")
    assert dict(zip(index.values, index.counts.tolist())) == {"ann": 2, "bob": 1}

    coded = cache.transform_records(records).collect()
    assert [record.id for record in coded] == ["r1", "r2", "r3"]
    assert [index.value_of(record.values[0]) for record in coded] == ["ann", "bob", "ann"]
    assert coded[0].values == coded[2].values


@pytest.mark.parametrize("kind,num_partitions", [("serial", 1), ("thread", 3), ("process", 2)])
def test_build_is_independent_of_partitioning_and_executor(kind, num_partitions):
    reference = build_records_cache(_records(), _specs("first", "last"), 2)
    cache = build_records_cache(
        _records(num_partitions),
        _specs("first", "last"),
        2,
        executor=LocalExecutor(kind, max_workers=2),
    )

    assert cache.attribute_names == ("first", "last")
    assert dict(cache.file_sizes) == dict(reference.file_sizes)
    for built, expected in zip(cache.indexed_attributes, reference.indexed_attributes):
        assert built.index.values == expected.index.values
        assert built.index.counts.tolist() == expected.index.counts.tolist()
        assert built.index.max_cluster_size == 2


def test_attribute_order_and_metadata_follow_specs():
    specs = [
        AttributeSpec(name="first", distortion_prior=DistortionPrior(1.0, 10.0)),
        AttributeSpec(name="last", distortion_prior=DistortionPrior(2.0, 20.0)),
    ]

    cache = build_records_cache(_records(), specs, 1)

    assert cache.attribute_names == ("first", "last")
    assert list(cache.distortion_priors()) == [spec.distortion_prior for spec in specs]
    assert cache.index_of("last").values == ("jones", "smith")
    with pytest.raises(KeyError):
        cache.index_of("middle")


def test_file_sizes_sum_to_record_count():
    cache = build_records_cache(_records(2), _specs("first", "last"), 1)

    assert sum(cache.file_sizes.values()) == cache.num_records == 3


def test_progress_messages_are_emitted():
    messages = []

    build_records_cache(_records(), _specs("first", "last"), 1, log=messages.append)

    assert messages[0] == "Gathering statistics from source data files."
    assert messages[1] == "Finished gathering statistics from 3 records across 2 file(s)."
    assert messages[2:] == ["Indexing attribute 'first'.", "Indexing attribute 'last'."]


def test_schema_mismatch_fails_before_counting():
    messages = []

    with pytest.raises(SchemaMismatchError):
        build_records_cache(_records(), _specs("first"), 1, log=messages.append)
    assert messages == []


def test_schema_mismatch_in_later_record_aborts_build():
    records = Partitioned.from_iterable(
        [
            Record(id="r1", file_id="f1", values=("ann",)),
            Record(id="r2", file_id="f1", values=("bob", "extra")),
        ],
        num_partitions=2,
    )

    with pytest.raises(SchemaMismatchError):
        build_records_cache(records, _specs("name"), 1)


def test_duplicate_attribute_names_conflict():
    with pytest.raises(CounterRegistrationError):
        build_records_cache(_records(), _specs("name", "name"), 1)


def test_empty_collection_has_empty_domain():
    with pytest.raises(EmptyDomainError, match="name"):
        build_records_cache(Partitioned.from_iterable([], 2), _specs("name"), 1)


def test_negative_cluster_size_is_rejected():
    with pytest.raises(ValueError):
        build_records_cache(_records(), _specs("first", "last"), -1)


def test_cache_is_immutable_and_picklable():
    cache = build_records_cache(_records(), _specs("first", "last"), 2)

    with pytest.raises(TypeError):
        cache.file_sizes["f3"] = 1  # type: ignore[index]

    replica = pickle.loads(pickle.dumps(cache))
    assert isinstance(replica, RecordsCache)
    assert dict(replica.file_sizes) == dict(cache.file_sizes)
    assert replica.attribute_names == cache.attribute_names


def test_set_generator_only_touches_local_copy():
    cache = build_records_cache(_records(), _specs("first", "last"), 2)
    replica = pickle.loads(pickle.dumps(cache))
    generator = np.random.default_rng(42)

    replica.set_generator(generator)

    assert all(attr.index.generator is generator for attr in replica.indexed_attributes)
    assert all(attr.index.generator is not generator for attr in cache.indexed_attributes)
