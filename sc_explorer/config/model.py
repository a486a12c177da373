from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_RESOLUTION = 0.8
RESOLUTION_BOUNDS: Tuple[float, float] = (0.1, 1.5)


@dataclass(frozen=True)
class AnalysisSettings:
    """
    Fixed parameters handed to the numerical backend and the marker finder.

    - n_dims: number of leading principal components used for clustering / t-SNE
    - min_cells: a marker-test group must have *more* than this many cells
    - min_auc: rows below this discriminative power are dropped from the marker table
    - min_pct: genes expressed in fewer than this fraction of both groups are not tested
    """

    n_dims: int = 15
    min_cells: int = 3
    min_auc: float = 0.7
    min_pct: float = 0.25
    default_resolution: float = DEFAULT_RESOLUTION
    resolution_bounds: Tuple[float, float] = RESOLUTION_BOUNDS

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], default_resolution: float) -> AnalysisSettings:
        bounds = raw.get("resolution_bounds", RESOLUTION_BOUNDS)
        return cls(
            n_dims=int(raw.get("n_dims", 15)),
            min_cells=int(raw.get("min_cells", 3)),
            min_auc=float(raw.get("min_auc", 0.7)),
            min_pct=float(raw.get("min_pct", 0.25)),
            default_resolution=default_resolution,
            resolution_bounds=(float(bounds[0]), float(bounds[1])),
        )


@dataclass(frozen=True)
class DebounceSettings:
    """Settle windows (seconds) per group of raw inputs."""

    gene: float = 1.5
    clusters: float = 2.0
    markers: float = 2.0
    resolution: float = 0.5

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> DebounceSettings:
        return cls(
            gene=float(raw.get("gene", 1.5)),
            clusters=float(raw.get("clusters", 2.0)),
            markers=float(raw.get("markers", 2.0)),
            resolution=float(raw.get("resolution", 0.5)),
        )


@dataclass
class DatasetEntry:
    """
    Parsed catalog entry for a single dataset.
    """

    raw: Dict[str, Any]
    source_path: Path
    index: int

    @property
    def label(self) -> str:
        return self.raw.get("label") or self.raw.get("name") or f"Dataset {self.index}"

    @property
    def species(self) -> Optional[str]:
        return self.raw.get("species")

    @property
    def data_dir(self) -> str:
        """
        Directory (relative to data_root) holding this dataset's artifacts.
        """
        data_dir = self.raw.get("data_dir")
        if not data_dir:
            raise KeyError(f"No 'data_dir' in dataset catalog entry: {self.raw}")
        return str(data_dir)

    @property
    def default_resolution(self) -> Optional[float]:
        value = self.raw.get("default_resolution")
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @classmethod
    def from_raw(
        cls, raw: Dict[str, Any], source_path: Path, index: int
    ) -> DatasetEntry:
        return cls(raw=raw, source_path=source_path, index=index)


@dataclass
class GlobalConfig:
    ui_title: str
    datasets: List[DatasetEntry]
    data_root: Optional[Path] = None
    scale_factor: float = 0.7
    colors: Dict[str, str] = field(default_factory=dict)
    alias_tables: Dict[str, Path] = field(default_factory=dict)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)
    debounce: DebounceSettings = field(default_factory=DebounceSettings)

    @property
    def default_resolution(self) -> float:
        return self.analysis.default_resolution
