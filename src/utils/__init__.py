"""Utility helpers shared across modules."""

from .config import (  # noqa: F401
    apply_overrides,
    clone_config,
    get_by_dotted_path,
    load_attribute_specs,
    load_config,
    load_executor,
    set_by_dotted_path,
)
