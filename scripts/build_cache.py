"""Build the records cache from CSV sources and integer-code the records."""

from __future__ import annotations

import sys
import argparse
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
project_root_str = str(PROJECT_ROOT)
if project_root_str not in sys.path:
    sys.path.insert(0, project_root_str)

from loguru import logger

from src.data import build_records_cache, load_records
from src.utils import (
    apply_overrides,
    get_by_dotted_path,
    load_attribute_specs,
    load_config,
    load_executor,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/default.yaml"),
        help="Path to the YAML configuration file.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a configuration entry using dotted-path syntax.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    config = apply_overrides(load_config(args.config), args.overrides)
    attribute_specs = load_attribute_specs(config)
    executor = load_executor(config)

    data_root = Path(get_by_dotted_path(config, "data.root", "data"))
    files = [data_root / name for name in get_by_dotted_path(config, "data.files", [])]
    if not files:
        raise ValueError("Configuration must list at least one file under data.files.")
    columns = get_by_dotted_path(config, "data.columns") or [spec.name for spec in attribute_specs]

    logger.info("Loading raw records from {} file(s) under {}", len(files), data_root)
    records = load_records(
        files,
        attributes=columns,
        id_column=get_by_dotted_path(config, "data.id_column"),
        num_partitions=int(get_by_dotted_path(config, "data.num_partitions", 1)),
        limit=get_by_dotted_path(config, "data.limit"),
    )

    cache = build_records_cache(
        records,
        attribute_specs,
        int(config.get("expected_max_cluster_size", 10)),
        executor=executor,
    )
    cache_broadcast = executor.broadcast(cache)
    coded = cache_broadcast.value.transform_records(records, executor=executor)

    logger.info(
        "Cache ready | records={} files={} attributes={}",
        cache.num_records,
        len(cache.file_sizes),
        cache.num_attributes,
    )
    for attribute in cache.indexed_attributes:
        logger.debug("Attribute '{}' domain_size={}", attribute.name, attribute.index.domain_size)
    logger.info("Integer-coded {} record(s) across {} partition(s)", len(coded), coded.num_partitions)
    cache_broadcast.destroy()


if __name__ == "__main__":
    main()
