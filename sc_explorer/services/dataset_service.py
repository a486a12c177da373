from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Tuple

from sc_explorer.config.model import DEFAULT_RESOLUTION, RESOLUTION_BOUNDS, DatasetEntry
from sc_explorer.core.dataset import Dataset
from sc_explorer.core.dataset_loader import from_entry
from sc_explorer.core.exceptions import DatasetLoadError, ScExplorerError
from sc_explorer.core.progress import NULL_PROGRESS, ProgressReporter
from sc_explorer.core.resolution import normalise_resolution

logger = logging.getLogger(__name__)


class DatasetCatalog(Mapping[str, DatasetEntry]):
    """
    Read-only lookup of dataset label -> catalog entry.

    Loaded once at process start and shared by every session; never mutated.
    """

    def __init__(
        self,
        entries: Mapping[str, DatasetEntry],
        fallback_resolution: float = DEFAULT_RESOLUTION,
        bounds: Tuple[float, float] = RESOLUTION_BOUNDS,
    ) -> None:
        self._entries: Dict[str, DatasetEntry] = dict(entries)
        self.fallback_resolution = fallback_resolution
        self.bounds = bounds

    def __getitem__(self, label: str) -> DatasetEntry:
        return self._entries[label]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def labels(self) -> list[str]:
        return list(self._entries)

    def default_resolution(self, label: str) -> float:
        """
        Configured default for a dataset, rounded to one decimal; missing or
        out-of-range values fall back to the global default.
        """
        entry = self._entries.get(label)
        value = entry.default_resolution if entry is not None else None
        res = normalise_resolution(value, self.bounds)
        if res is None:
            if value is not None:
                logger.warning(
                    "Default resolution out of range; using fallback",
                    extra={"dataset": label, "value": value, "fallback": self.fallback_resolution},
                )
            return self.fallback_resolution
        return res


class DatasetStore:
    """
    Materialises datasets from the catalog.

    Every call to load() reads the artifacts again and returns a fresh Dataset:
    datasets grow clustering columns as they are used, so they are owned by a
    single session and never handed to another one.
    """

    def __init__(self, catalog: DatasetCatalog, data_root: Optional[Path]) -> None:
        self.catalog = catalog
        self.data_root = Path(data_root) if data_root is not None else Path("data")

    def __contains__(self, label: object) -> bool:
        return label in self.catalog

    def load(self, label: str, progress: ProgressReporter = NULL_PROGRESS) -> Dataset:
        """
        :raises DatasetLoadError: unknown label or missing/unreadable artifacts
        :raises DatasetSchemaError: artifacts present but inconsistent
        """
        entry = self.catalog.get(label)
        if entry is None:
            raise DatasetLoadError(f"Unknown dataset '{label}'")

        logger.info(
            "Loading dataset",
            extra={"dataset": label, "data_root": str(self.data_root)},
        )
        try:
            return from_entry(entry, self.data_root, progress=progress)
        except ScExplorerError as e:
            logger.error(
                "Dataset load failed",
                extra={"dataset": label, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.exception(
                "Unexpected error while loading dataset",
                extra={"dataset": label},
            )
            raise DatasetLoadError(f"Could not load dataset '{label}': {e}") from e
