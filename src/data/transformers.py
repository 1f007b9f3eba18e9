"""Rewrite raw records into integer-coded records, one partition at a time."""

from __future__ import annotations

from functools import partial
from typing import Iterator, Sequence

from src.engine import LocalExecutor, Partitioned

from .indexers import UnseenValueError
from .records import IndexedAttribute, Record, ValueId


class SchemaMismatchError(ValueError):
    """Raised when a record's values do not line up with the attribute specs."""


def check_schema(record: Record, num_attributes: int) -> None:
    if len(record.values) != num_attributes:
        raise SchemaMismatchError(
            f"Record {record.id!r} has {len(record.values)} values but "
            f"{num_attributes} attribute(s) are configured."
        )


def transform_record(
    record: Record[str], indexed_attributes: Sequence[IndexedAttribute]
) -> Record[ValueId]:
    check_schema(record, len(indexed_attributes))
    value_ids: list[ValueId] = []
    for raw_value, attribute in zip(record.values, indexed_attributes):
        try:
            value_ids.append(attribute.index.id_of(raw_value))
        except UnseenValueError as exc:
            raise UnseenValueError(
                raw_value, attribute=attribute.name, record_id=record.id
            ) from exc
    return Record(id=record.id, file_id=record.file_id, values=tuple(value_ids))


def _transform_partition(
    indexed_attributes: Sequence[IndexedAttribute], partition: Sequence[Record[str]]
) -> Iterator[Record[ValueId]]:
    for record in partition:
        yield transform_record(record, indexed_attributes)


def transform_records(
    records: Partitioned[Record[str]],
    indexed_attributes: Sequence[IndexedAttribute],
    *,
    executor: LocalExecutor | None = None,
) -> Partitioned[Record[ValueId]]:
    """
    Replace raw attribute values by their value ids.

    Each record is handled independently and the output keeps the input's
    partitioning. The first value missing from its attribute index aborts the
    whole transformation with `UnseenValueError`.
    """
    indexed_attributes = tuple(indexed_attributes)
    first = records.first()
    if first is not None:
        check_schema(first, len(indexed_attributes))

    executor = executor or LocalExecutor()
    return executor.map_partitions(
        partial(_transform_partition, indexed_attributes), records
    )
