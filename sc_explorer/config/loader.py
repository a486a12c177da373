from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sc_explorer.config.model import (
    DEFAULT_RESOLUTION,
    AnalysisSettings,
    DatasetEntry,
    DebounceSettings,
    GlobalConfig,
)
from sc_explorer.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_COLORS = {
    "primary": "#CCCCCC",
    "error": "#FF0000",
    "success": "#00FF00",
}


def _resolve_relative(root: Path, raw: Optional[str]) -> Optional[Path]:
    if raw is None:
        return None
    path = Path(raw)
    if path.is_absolute():
        return path
    return (root / path).resolve()


def load_global_config(root: Path) -> GlobalConfig:
    """
    Load configuration from a directory using the multi-file layout.

    Expected structure:

        root/
            global.json
            datasets/
                pbmc.json
                ...

    Each file in 'datasets/' is parsed into a DatasetEntry (label, species,
    data_dir, default_resolution).

    - data_root: directory holding one sub-directory of artifacts per dataset.
                 Relative paths are resolved against 'root'; SC_EXPLORER_DATA_ROOT
                 overrides it.
    - alias_tables: species -> CSV of canonical symbol / pipe-delimited aliases.

    :param root: Directory containing 'global.json' and optionally 'datasets/'.
    :return: A GlobalConfig instance.
    :raises ConfigError: if global.json does not exist or is not valid JSON.
    """
    logger.info(
        "Loading global config",
        extra={"config_root": str(root)},
    )

    global_path = root / "global.json"
    if not global_path.is_file():
        raise ConfigError(f"File not found at {global_path}")

    try:
        with global_path.open() as f:
            raw_global = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {global_path}: {e}") from e

    datasets_dir = root / "datasets"
    datasets: List[DatasetEntry] = []

    if datasets_dir.is_dir():
        files = sorted(datasets_dir.glob("*.json"))
        if not files:
            logger.warning("No .json files found in %s", datasets_dir)

        for idx, config_file in enumerate(files):
            try:
                with config_file.open() as f:
                    raw = json.load(f)
            except json.JSONDecodeError as e:
                logger.error("Failed to load %s: %s", config_file.name, e)
                continue
            datasets.append(
                DatasetEntry.from_raw(raw, source_path=config_file, index=idx)
            )
    else:
        logger.warning("Datasets directory not found at: %s", datasets_dir)

    env_root = os.environ.get("SC_EXPLORER_DATA_ROOT")
    if env_root:
        data_root: Optional[Path] = Path(env_root)
    else:
        data_root = _resolve_relative(root, raw_global.get("data_root"))

    alias_tables = {
        str(species): _resolve_relative(root, path)
        for species, path in (raw_global.get("alias_tables") or {}).items()
        if path
    }

    default_resolution = float(raw_global.get("default_resolution", DEFAULT_RESOLUTION))

    return GlobalConfig(
        ui_title=raw_global.get("ui_title", "Single-Cell Cluster Explorer"),
        datasets=datasets,
        data_root=data_root,
        scale_factor=float(raw_global.get("scale_factor", 0.7)),
        colors={**DEFAULT_COLORS, **(raw_global.get("colors") or {})},
        alias_tables=alias_tables,
        analysis=AnalysisSettings.from_raw(raw_global.get("analysis") or {}, default_resolution),
        debounce=DebounceSettings.from_raw(raw_global.get("debounce") or {}),
    )


def load_catalog(path: Path) -> Tuple[GlobalConfig, Dict[str, DatasetEntry]]:
    """
    Load global config + dataset catalog entries only (NO AnnData loading).
    Returns mapping of dataset label -> DatasetEntry.
    """
    global_config = load_global_config(path)

    entries: Dict[str, DatasetEntry] = {}
    duplicates: List[str] = []

    for entry in global_config.datasets:
        if entry.label in entries:
            duplicates.append(entry.label)
            continue
        entries[entry.label] = entry

    if duplicates:
        raise ConfigError(f"Duplicate dataset labels in catalog: {sorted(set(duplicates))}")

    if not entries:
        logger.warning("No datasets configured under: %s", path)

    logger.info(
        "Dataset catalog loaded (lazy mode; datasets not materialised)",
        extra={
            "config_root": str(path),
            "n_datasets": len(entries),
            "dataset_labels": sorted(entries.keys()),
        },
    )

    return global_config, entries
