from pathlib import Path

import pytest

from src.data import Record, load_records


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_load_records_uses_file_stem_and_column_order(tmp_path: Path) -> None:
    first = _write(tmp_path / "f1.csv", "rec_id,last,first\nr1,smith,ann\nr2,jones,bob\n")
    second = _write(tmp_path / "f2.csv", "rec_id,last,first\nr3,smith,ann\n")

    records = load_records(
        [first, second], attributes=["first", "last"], id_column="rec_id", num_partitions=2
    )

    assert records.num_partitions == 2
    assert records.collect() == [
        Record(id="r1", file_id="f1", values=("ann", "smith")),
        Record(id="r2", file_id="f1", values=("bob", "jones")),
        Record(id="r3", file_id="f2", values=("ann", "smith")),
    ]


def test_load_records_generates_ids_and_drops_incomplete_rows(tmp_path: Path) -> None:
    source = _write(tmp_path / "people.csv", "name,code\nann,1\n,2\nbob,007\n")

    records = load_records([source], attributes=["name", "code"]).collect()

    assert [record.id for record in records] == ["people-0", "people-2"]
    assert records[1].values == ("bob", "007")


def test_load_records_missing_column(tmp_path: Path) -> None:
    source = _write(tmp_path / "people.csv", "name\nann\n")

    with pytest.raises(ValueError, match="code"):
        load_records([source], attributes=["name", "code"])


def test_load_records_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_records([tmp_path / "absent.csv"], attributes=["name"])


def test_load_records_rejects_duplicate_ids_across_files(tmp_path: Path) -> None:
    first = _write(tmp_path / "a.csv", "id,name\nr1,ann\n")
    second = _write(tmp_path / "b.csv", "id,name\nr1,bob\n")

    with pytest.raises(ValueError, match="Duplicate"):
        load_records([first, second], attributes=["name"], id_column="id")
