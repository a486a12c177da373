from pathlib import Path
from typing import Dict, Optional, Sequence

import anndata as ad
import numpy as np
import pandas as pd
import pytest

from sc_explorer.analysis.backend import ScanpyBackend
from sc_explorer.config.model import DatasetEntry
from sc_explorer.core.dataset import Dataset, Species
from sc_explorer.core.exceptions import DatasetLoadError
from sc_explorer.core.genes import AliasTable, GeneResolver
from sc_explorer.core.progress import NULL_PROGRESS
from sc_explorer.services.dataset_service import DatasetCatalog, DatasetStore

GENES = ["TNF", "CD4", "PTPRC", "MS4A1", "CD3E", "g5", "g6", "g7"]


def make_adata(cluster_sizes: Sequence[int] = (50, 40, 10), seed: int = 0) -> ad.AnnData:
    """
    Small log-expression matrix with one planted population per entry of
    cluster_sizes ('group' column, labels '1', '2', ...). Gene i is strongly
    expressed in group i+1 only.
    """
    rng = np.random.default_rng(seed)
    groups = np.concatenate([[str(i + 1)] * n for i, n in enumerate(cluster_sizes)])
    n_cells = len(groups)

    X = rng.poisson(0.2, size=(n_cells, len(GENES))).astype(float)
    for i in range(len(cluster_sizes)):
        X[groups == str(i + 1), i] += 5.0
    X = np.log1p(X)

    obs = pd.DataFrame(
        {
            "group": groups,
            "orig.ident": np.where(np.arange(n_cells) % 2 == 0, "s1", "s2"),
            "nUMI": rng.integers(500, 5000, size=n_cells),
            "nGene": rng.integers(200, 2000, size=n_cells),
        },
        index=[f"cell{i}" for i in range(n_cells)],
    )
    adata = ad.AnnData(X=X, obs=obs, var=pd.DataFrame(index=GENES))
    adata.obsm["X_tsne"] = rng.normal(size=(n_cells, 2))
    return adata


def make_dataset(
    name: str = "PBMC",
    cluster_sizes: Sequence[int] = (50, 40, 10),
    species: str = "human",
    cellranger: bool = False,
) -> Dataset:
    adata = make_adata(cluster_sizes)
    cellranger_embedding = None
    if cellranger:
        cellranger_embedding = pd.DataFrame(
            {"x": np.arange(adata.n_obs, dtype=float), "y": np.zeros(adata.n_obs)},
            index=adata.obs_names.copy(),
        )
    return Dataset(name, species, adata, cellranger_embedding=cellranger_embedding)


class FakeBackend(ScanpyBackend):
    """
    Deterministic stand-in for graph clustering / t-SNE: cluster labels are the
    planted 'group' column, the embedding is a line. The ROC marker test is the
    real one. Every call is recorded.
    """

    def __init__(self) -> None:
        super().__init__()
        self.cluster_calls = []
        self.embed_calls = []
        self.marker_calls = []
        self.fail_cluster = False
        self.fail_embed = False

    def cluster(self, adata, resolution, n_dims):
        self.cluster_calls.append((int(adata.n_obs), resolution))
        if self.fail_cluster:
            raise RuntimeError("leiden exploded")
        return pd.Series(adata.obs["group"].astype(str).to_numpy(), index=adata.obs_names)

    def embed(self, adata, n_dims):
        self.embed_calls.append(int(adata.n_obs))
        if self.fail_embed:
            raise RuntimeError("tsne exploded")
        n = adata.n_obs
        return np.column_stack([np.arange(n, dtype=float), np.arange(n, dtype=float)])

    def find_markers(self, adata, cells1, cells2, min_pct):
        self.marker_calls.append((len(cells1), None if cells2 is None else len(cells2)))
        return super().find_markers(adata, cells1, cells2, min_pct)

    def resolutions(self):
        return [res for _, res in self.cluster_calls]


def make_entry(label: str, default_resolution: Optional[float] = 0.8, index: int = 0) -> DatasetEntry:
    raw = {"label": label, "species": "human", "data_dir": label.lower()}
    if default_resolution is not None:
        raw["default_resolution"] = default_resolution
    return DatasetEntry.from_raw(raw, source_path=Path(f"{label}.json"), index=index)


class FakeStore(DatasetStore):
    """DatasetStore serving in-memory datasets; labels in `broken` fail to load."""

    def __init__(self, sizes: Dict[str, Sequence[int]], broken: Sequence[str] = ()) -> None:
        labels = list(sizes) + [b for b in broken if b not in sizes]
        catalog = DatasetCatalog({label: make_entry(label, index=i) for i, label in enumerate(labels)})
        super().__init__(catalog, data_root=None)
        self.sizes = dict(sizes)
        self.broken = set(broken)
        self.loads = []

    def load(self, label, progress=NULL_PROGRESS):
        self.loads.append(label)
        if label in self.broken or label not in self.sizes:
            raise DatasetLoadError(f"AnnData file not found for '{label}'.")
        return make_dataset(label, self.sizes[label])


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def dataset():
    return make_dataset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def resolver():
    human = AliasTable(
        pd.DataFrame(
            {
                "gene": ["TNF", "CD4", "PTPRC"],
                "alias": ["TNFA|TNFSF2", "CD4mut", "CD45|LCA|LY5|T200|CD45R|GP180"],
            }
        )
    )
    mouse = AliasTable(pd.DataFrame({"gene": ["Cd4"], "alias": ["L3T4|Ly-4"]}))
    return GeneResolver({Species.HUMAN: human, Species.MOUSE: mouse})


@pytest.fixture
def store():
    return FakeStore({"PBMC": (50, 40, 10), "Other": (20, 20)}, broken=["Broken"])
