from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import pandas as pd

if TYPE_CHECKING:
    from sc_explorer.core.dataset import Dataset

REST_GROUP = "(All other cells)"


class Polarity(str, Enum):
    POS = "pos"
    NEG = "neg"


class Validity(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    NEUTRAL = "neutral"


class DatasetStatus(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class Notice:
    """
    User-facing, dismissable message produced by the core.

    level: 'info' | 'warning' | 'error'
    source: the node / operation that produced it
    """
    level: str
    message: str
    source: str = ""


@dataclass(frozen=True)
class GeneSelection:
    query: str = ""
    symbol: str = ""
    validity: Validity = Validity.NEUTRAL

    @property
    def is_valid(self) -> bool:
        return self.validity is Validity.VALID and bool(self.symbol)


@dataclass(frozen=True)
class ClusteringResult:
    """A cluster-label column on a dataset's metadata, keyed by resolution."""
    resolution: float
    column: str
    choices: Tuple[str, ...] = ()


@dataclass
class SessionInputs:
    """
    Raw user inputs for one session.

    Fields:

    - dataset_label: catalog label of the active dataset (None = no dataset)
    - resolution: clustering resolution for the full dataset
    - subset_enabled: 'use subset' toggle
    - subset_clusters: cluster ids (at `resolution`) kept in the subset
    - recompute_embedding: run a fresh t-SNE when a subset is created
    - subset_resolution: clustering resolution for the subset
    - show_all_points: keep cells without a label (drawn grey) in the embedding plot
    - use_cellranger: plot cellranger t-SNE coordinates instead of the internal ones
    - show_cluster_size: label clusters as 'Cluster k (n)'
    - gene_query / gene1_query / gene2_query: free-text gene fields
    - cluster_filter: clusters used by the correlation plot
    - marker_group1 / marker_group2 / marker_polarity: marker-gene comparison
    """

    dataset_label: Optional[str] = None
    resolution: Optional[float] = None

    subset_enabled: bool = False
    subset_clusters: Tuple[str, ...] = ()
    recompute_embedding: bool = False
    subset_resolution: Optional[float] = None

    show_all_points: bool = False
    use_cellranger: bool = False
    show_cluster_size: bool = False

    gene_query: str = ""
    gene1_query: str = ""
    gene2_query: str = ""
    cluster_filter: Tuple[str, ...] = ()

    marker_group1: str = ""
    marker_group2: str = REST_GROUP
    marker_polarity: Polarity = Polarity.POS

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(cls.__dataclass_fields__)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["subset_clusters"] = list(self.subset_clusters)
        data["cluster_filter"] = list(self.cluster_filter)
        data["marker_polarity"] = self.marker_polarity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SessionInputs:
        return cls(
            dataset_label=data.get("dataset_label"),
            resolution=data.get("resolution"),
            subset_enabled=bool(data.get("subset_enabled", False)),
            subset_clusters=tuple(str(c) for c in data.get("subset_clusters") or ()),
            recompute_embedding=bool(data.get("recompute_embedding", False)),
            subset_resolution=data.get("subset_resolution"),
            show_all_points=bool(data.get("show_all_points", False)),
            use_cellranger=bool(data.get("use_cellranger", False)),
            show_cluster_size=bool(data.get("show_cluster_size", False)),
            gene_query=data.get("gene_query") or "",
            gene1_query=data.get("gene1_query") or "",
            gene2_query=data.get("gene2_query") or "",
            cluster_filter=tuple(str(c) for c in data.get("cluster_filter") or ()),
            marker_group1=data.get("marker_group1") or "",
            marker_group2=data.get("marker_group2") or REST_GROUP,
            marker_polarity=Polarity(data.get("marker_polarity", Polarity.POS.value)),
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Consistent read-only view of one session, taken after all pending
    recomputation. Projections (plots, tables, downloads) only ever read this.
    """

    status: DatasetStatus
    inputs: SessionInputs
    dataset: Optional["Dataset"] = None
    subset: Optional["Dataset"] = None
    clustering: Optional[ClusteringResult] = None
    subset_clustering: Optional[ClusteringResult] = None
    subset_choices: Tuple[str, ...] = ()
    cluster_choices: Tuple[str, ...] = ()
    embedding_data: Optional[pd.DataFrame] = None
    gene: GeneSelection = field(default_factory=GeneSelection)
    gene1: GeneSelection = field(default_factory=GeneSelection)
    gene2: GeneSelection = field(default_factory=GeneSelection)
    marker_table: Optional[pd.DataFrame] = None
    subset_resolution_visible: bool = False
    gene_title: str = ""
    revision: int = 0

    @property
    def dataset_name(self) -> str:
        return self.dataset.name if self.dataset is not None else ""

    @property
    def info_text(self) -> str:
        if self.subset is not None:
            return self.subset.info_text
        if self.dataset is not None:
            return self.dataset.info_text
        return ""

    @property
    def active_resolution(self) -> Optional[float]:
        """Resolution whose labels colour the embedding plot."""
        if self.inputs.subset_enabled and self.subset_clustering is not None:
            return self.subset_clustering.resolution
        if self.clustering is not None:
            return self.clustering.resolution
        return None

    def marker_groups(self) -> List[str]:
        return [REST_GROUP, *self.cluster_choices]
