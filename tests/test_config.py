from pathlib import Path

import pytest

from src.data import DistortionPrior
from src.utils import (
    apply_overrides,
    clone_config,
    get_by_dotted_path,
    load_attribute_specs,
    load_config,
    load_executor,
    set_by_dotted_path,
)


class PrefixSimilarity:
    def similarity(self, a: str, b: str) -> float:
        return 1.0 if a[:1] == b[:1] else 0.0


def test_load_config_reads_yaml(tmp_path: Path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "expected_max_cluster_size: 10\nattributes:\n  - name: fname\n", encoding="utf-8"
    )

    config = load_config(config_file)

    assert config["expected_max_cluster_size"] == 10
    assert config["attributes"][0]["name"] == "fname"


def test_load_config_missing_file() -> None:
    with pytest.raises(FileNotFoundError):
        load_config(Path("does_not_exist.yaml"))


def test_clone_and_set_by_dotted_path() -> None:
    original = {"execution": {"kind": "serial"}}
    cloned = clone_config(original)

    set_by_dotted_path(cloned, "execution.kind", "thread")
    set_by_dotted_path(cloned, "execution.max_workers", 4)

    assert original["execution"]["kind"] == "serial"  # original untouched
    assert cloned["execution"]["kind"] == "thread"
    assert get_by_dotted_path(cloned, "execution.max_workers") == 4
    assert get_by_dotted_path(cloned, "execution.missing", "fallback") == "fallback"


def test_apply_overrides_parses_yaml_scalars() -> None:
    config = apply_overrides({"data": {"num_partitions": 1}}, ["data.num_partitions=8", "execution.kind=thread"])

    assert config["data"]["num_partitions"] == 8
    assert config["execution"]["kind"] == "thread"


def test_apply_overrides_rejects_malformed_entries() -> None:
    with pytest.raises(ValueError):
        apply_overrides({}, ["no-equals-sign"])


def test_load_attribute_specs_preserves_order_and_priors() -> None:
    config = {
        "attributes": [
            {"name": "fname", "distortion_prior": {"alpha": 1, "beta": 50}},
            {
                "name": "lname",
                "similarity": "prefix",
                "distortion_prior": {"alpha": 2, "beta": 40},
            },
        ]
    }
    prefix = PrefixSimilarity()

    specs = load_attribute_specs(config, {"prefix": prefix})

    assert [spec.name for spec in specs] == ["fname", "lname"]
    assert specs[0].similarity_fn is None
    assert specs[1].similarity_fn is prefix
    assert specs[1].distortion_prior == DistortionPrior(alpha=2.0, beta=40.0)


def test_load_attribute_specs_rejects_unknown_similarity() -> None:
    config = {
        "attributes": [
            {"name": "fname", "similarity": "levenshtein", "distortion_prior": {"alpha": 1, "beta": 1}}
        ]
    }

    with pytest.raises(ValueError, match="levenshtein"):
        load_attribute_specs(config)


def test_load_attribute_specs_requires_prior() -> None:
    with pytest.raises(ValueError, match="distortion_prior"):
        load_attribute_specs({"attributes": [{"name": "fname"}]})


def test_load_attribute_specs_requires_attributes() -> None:
    with pytest.raises(ValueError):
        load_attribute_specs({})


def test_load_executor_defaults_to_serial() -> None:
    executor = load_executor({})

    assert executor.kind == "serial"
    assert executor.max_attempts == 1

    configured = load_executor({"execution": {"kind": "thread", "max_workers": 2, "max_attempts": 3}})
    assert configured.kind == "thread"
    assert configured.max_workers == 2
    assert configured.max_attempts == 3
