"""Configuration loading and manipulation helpers."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Sequence

import yaml

from src.data.records import AttributeSpec, DistortionPrior
from src.data.samplers import SimilarityFn
from src.engine import LocalExecutor

CONSTANT_SIMILARITY = "constant"


def load_config(config_path: Path) -> Mapping[str, Any]:
    """
    Parse a YAML configuration file into a nested mapping.

    Sections consumed by this package: ``data`` (input files and columns),
    ``attributes`` (one entry per attribute, in record value order),
    ``expected_max_cluster_size`` and ``execution``.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def clone_config(config: Mapping[str, Any]) -> dict[str, Any]:
    """Return a deep copy of the configuration mapping."""
    return copy.deepcopy(config)


def set_by_dotted_path(
    config: MutableMapping[str, Any],
    dotted_key: str,
    value: Any,
) -> None:
    """
    Assign a value inside a nested mapping using dotted-path syntax.

    Examples
    --------
    >>> cfg = {"execution": {"kind": "serial"}}
    >>> set_by_dotted_path(cfg, "execution.kind", "thread")
    >>> cfg["execution"]["kind"]
    'thread'
    """
    keys: Sequence[str] = dotted_key.split(".")
    current: MutableMapping[str, Any] = config
    for key in keys[:-1]:
        if key not in current or not isinstance(current[key], MutableMapping):
            current[key] = {}
        current = current[key]  # type: ignore[assignment]
    current[keys[-1]] = value


def get_by_dotted_path(config: Mapping[str, Any], dotted_key: str, default: Any = None) -> Any:
    """Fetch a value from a nested mapping using dotted-path syntax."""
    current: Any = config
    for key in dotted_key.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return current


def apply_overrides(config: Mapping[str, Any], overrides: Sequence[str]) -> dict[str, Any]:
    """
    Return a copy of `config` with ``key=value`` overrides applied.

    Values are parsed as YAML scalars, so ``execution.max_workers=4`` sets an int.
    """
    updated = clone_config(config)
    for override in overrides:
        key, sep, raw_value = override.partition("=")
        if not sep or not key:
            raise ValueError(f"Override must look like 'dotted.key=value', got '{override}'.")
        set_by_dotted_path(updated, key.strip(), yaml.safe_load(raw_value))
    return updated


def load_attribute_specs(
    config: Mapping[str, Any],
    similarity_registry: Mapping[str, SimilarityFn] | None = None,
) -> list[AttributeSpec]:
    """
    Build `AttributeSpec`s from the ``attributes`` section.

    Each entry needs a ``name`` and a ``distortion_prior`` with ``alpha`` and
    ``beta``. ``similarity`` defaults to constant; any other name must be
    provided through `similarity_registry`.
    """
    entries = config.get("attributes") or []
    if not entries:
        raise ValueError("Configuration must define at least one attribute.")

    registry = similarity_registry or {}
    specs: list[AttributeSpec] = []
    for entry in entries:
        if "name" not in entry:
            raise ValueError(f"Attribute entry is missing a name: {entry}")
        prior_cfg = entry.get("distortion_prior") or {}
        try:
            prior = DistortionPrior(alpha=float(prior_cfg["alpha"]), beta=float(prior_cfg["beta"]))
        except KeyError as exc:
            raise ValueError(
                f"Attribute '{entry['name']}' needs distortion_prior.alpha and distortion_prior.beta."
            ) from exc

        similarity_name = str(entry.get("similarity", CONSTANT_SIMILARITY))
        if similarity_name == CONSTANT_SIMILARITY:
            similarity_fn = None
        elif similarity_name in registry:
            similarity_fn = registry[similarity_name]
        else:
            raise ValueError(
                f"Unknown similarity function '{similarity_name}' for attribute '{entry['name']}'."
            )
        specs.append(
            AttributeSpec(
                name=str(entry["name"]),
                distortion_prior=prior,
                similarity_fn=similarity_fn,
            )
        )
    return specs


def load_executor(config: Mapping[str, Any]) -> LocalExecutor:
    """Build a `LocalExecutor` from the ``execution`` section."""
    return LocalExecutor(
        str(get_by_dotted_path(config, "execution.kind", "serial")),
        max_workers=get_by_dotted_path(config, "execution.max_workers"),
        max_attempts=int(get_by_dotted_path(config, "execution.max_attempts", 1)),
    )
