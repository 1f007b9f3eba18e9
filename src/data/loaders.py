"""
CSV loading helpers that turn source files into partitioned raw records.

Every file becomes one file id (its stem), and every row one `Record[str]`
whose values follow the requested attribute column order.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Sequence

import pandas as pd
from loguru import logger

from src.engine import Partitioned

from .records import Record


def _read_csv(path: Path, *, nrows: Optional[int] = None) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Expected CSV at {path} but file was not found.")
    return pd.read_csv(path, dtype="string", keep_default_na=True, nrows=nrows)


def _records_from_frame(
    frame: pd.DataFrame,
    *,
    file_id: str,
    attributes: Sequence[str],
    id_column: str | None,
) -> list[Record[str]]:
    missing = [col for col in [*attributes, *([id_column] if id_column else [])] if col not in frame]
    if missing:
        raise ValueError(f"File '{file_id}' is missing columns: {missing}")

    complete = frame.dropna(subset=list(attributes))
    dropped = len(frame) - len(complete)
    if dropped > 0:
        logger.info(
            "Dropped {} row(s) from '{}' with missing attribute values.", dropped, file_id
        )

    if id_column:
        ids = complete[id_column].astype(str).tolist()
    else:
        ids = [f"{file_id}-{row}" for row in complete.index]

    values = complete[list(attributes)].astype(str).itertuples(index=False, name=None)
    return [
        Record(id=rec_id, file_id=file_id, values=tuple(row))
        for rec_id, row in zip(ids, values)
    ]


def load_records(
    paths: Iterable[Path],
    *,
    attributes: Sequence[str],
    id_column: str | None = None,
    num_partitions: int = 1,
    limit: Optional[int] = None,
) -> Partitioned[Record[str]]:
    """
    Load raw records from one or more CSV files.

    Parameters
    ----------
    paths:
        CSV files; each file's stem is used as its file id.
    attributes:
        Columns holding attribute values, in attribute spec order.
    id_column:
        Column holding record ids. Defaults to ``<file stem>-<row number>``.
    num_partitions:
        Number of partitions to split the records into.
    """
    records: list[Record[str]] = []
    seen_ids: set[str] = set()
    for path in paths:
        path = Path(path)
        frame = _read_csv(path, nrows=limit)
        file_records = _records_from_frame(
            frame, file_id=path.stem, attributes=attributes, id_column=id_column
        )
        duplicates = seen_ids.intersection(rec.id for rec in file_records)
        if duplicates:
            raise ValueError(f"Duplicate record ids across files: {sorted(duplicates)[:5]}")
        seen_ids.update(rec.id for rec in file_records)
        logger.debug("Loaded {} record(s) from {}", len(file_records), path)
        records.extend(file_records)

    return Partitioned.from_iterable(records, num_partitions=num_partitions)
