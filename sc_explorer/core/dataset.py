from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import anndata as ad
import numpy as np
import pandas as pd

from sc_explorer.core.exceptions import DatasetSchemaError

EMBEDDING_KEY = "X_tsne"
PCA_KEY = "X_pca"
RESOLUTION_PREFIX = "res_"

# Candidate per-cell QC columns, in display order
QC_COLUMNS = ("nUMI", "nGene", "total_counts", "n_genes_by_counts", "n_counts", "n_genes")


class Species(str, Enum):
    HUMAN = "human"
    MOUSE = "mouse"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> Species:
        """Lenient parse: anything that isn't human/mouse is OTHER."""
        if isinstance(value, Species):
            return value
        text = str(value or "").strip().lower()
        if text in ("human", "hs", "homo sapiens"):
            return cls.HUMAN
        if text in ("mouse", "mm", "mus musculus"):
            return cls.MOUSE
        return cls.OTHER


def resolution_key(resolution: float) -> str:
    """Metadata column name holding cluster labels for a resolution, e.g. 0.8 -> 'res_0.8'."""
    return f"{RESOLUTION_PREFIX}{float(resolution):.1f}"


def sort_cluster_labels(labels: Iterable[Any]) -> List[str]:
    """Distinct labels as strings, integer-like labels sorted numerically first."""

    def key(label: str) -> Tuple[int, Any]:
        try:
            return (0, int(label))
        except ValueError:
            return (1, label)

    return sorted({str(v) for v in labels}, key=key)


def _coords_frame(arr: Any, index: pd.Index) -> pd.DataFrame:
    arr = np.asarray(arr)
    if arr.ndim != 2 or arr.shape[1] < 2:
        raise DatasetSchemaError(
            f"Embedding must be a 2D array with at least 2 columns, got shape {arr.shape}"
        )
    return pd.DataFrame(arr[:, :2], index=index, columns=["x", "y"])


@dataclass(frozen=True)
class ValidSets:
    """
    Cached valid values for gene lookups / UI sanitisation.
    Building a set from var_names on every keystroke is wasteful, so we do it once per Dataset.
    """
    genes: frozenset
    cells: frozenset


class Dataset:
    """
    AnnData-backed dataset used throughout the explorer.

    Includes:
    - Expression matrix (cells × genes) with cached per-gene extraction
    - Cluster labels per resolution, stored as 'res_<r>' columns in .obs
    - Internal t-SNE coordinates in .obsm['X_tsne']
    - Optional cellranger t-SNE table and full (unsubsetted) embedding table

    The expression matrix, gene/cell identifiers and embeddings never change after
    construction; only new 'res_<r>' columns are appended by the resolution cache.
    """

    MAX_EXPR_CACHE = 128

    # -------------------------------------------------------------------------
    # Constructor
    # -------------------------------------------------------------------------
    def __init__(
        self,
        name: str,
        species: Species | str | None,
        adata: ad.AnnData,
        cellranger_embedding: Optional[pd.DataFrame] = None,
        full_embedding: Optional[pd.DataFrame] = None,
        file_path: Optional[Path] = None,
        parent: Optional[str] = None,
    ) -> None:
        self.name = name
        self.species = Species.parse(species)
        self.adata = adata
        self.cellranger_embedding = cellranger_embedding
        self._full_embedding = full_embedding
        self.file_path = file_path
        self.parent = parent

        # Cache for expression matrices (per gene set)
        self._expr_cache: Dict[Tuple[str, ...], pd.DataFrame] = {}

        # Cached valid values for lookups
        self._valid_sets: Optional[ValidSets] = None

    def __repr__(self) -> str:
        kind = f"subset of {self.parent}" if self.parent else "base"
        return f"Dataset({self.name!r}, {kind}, n_cells={self.n_cells}, n_genes={self.n_genes})"

    # -------------------------------------------------------------------------
    # Identifiers
    # -------------------------------------------------------------------------
    @property
    def genes(self) -> pd.Index:
        """Return gene names."""
        return self.adata.var_names

    @property
    def cells(self) -> pd.Index:
        """Return cell identifiers (barcodes)."""
        return self.adata.obs_names

    @property
    def n_cells(self) -> int:
        return int(self.adata.n_obs)

    @property
    def n_genes(self) -> int:
        return int(self.adata.n_vars)

    @property
    def is_subset(self) -> bool:
        return self.parent is not None

    @property
    def info_text(self) -> str:
        return f"{self.n_genes} genes across {self.n_cells} samples"

    def valid_sets(self) -> ValidSets:
        if self._valid_sets is None:
            self._valid_sets = ValidSets(
                genes=frozenset(map(str, self.adata.var_names)),
                cells=frozenset(map(str, self.adata.obs_names)),
            )
        return self._valid_sets

    # -------------------------------------------------------------------------
    # Clustering columns (resolution cache storage)
    # -------------------------------------------------------------------------
    def resolution_columns(self) -> List[str]:
        """All cached 'res_<r>' columns, in insertion order."""
        return [c for c in self.adata.obs.columns if str(c).startswith(RESOLUTION_PREFIX)]

    def has_clustering(self, resolution: float) -> bool:
        return resolution_key(resolution) in self.adata.obs.columns

    def cluster_labels(self, resolution: float) -> Optional[pd.Series]:
        """Cluster labels (string-normalised) for a resolution, or None if not computed."""
        key = resolution_key(resolution)
        if key not in self.adata.obs.columns:
            return None
        return self.adata.obs[key].astype(str)

    def cluster_choices(self, resolution: float) -> List[str]:
        labels = self.cluster_labels(resolution)
        if labels is None:
            return []
        return sort_cluster_labels(labels.unique())

    def cells_in_clusters(self, resolution: float, clusters: Iterable[Any]) -> pd.Index:
        labels = self.cluster_labels(resolution)
        if labels is None:
            raise DatasetSchemaError(
                f"Dataset '{self.name}' has no clustering for resolution {resolution}"
            )
        keep = {str(c) for c in clusters}
        return self.adata.obs_names[labels.isin(keep).to_numpy()]

    # -------------------------------------------------------------------------
    # Embeddings
    # -------------------------------------------------------------------------
    def embedding(self) -> pd.DataFrame:
        """Internal t-SNE coordinates as a DataFrame with x/y indexed by cell."""
        if EMBEDDING_KEY not in self.adata.obsm:
            raise DatasetSchemaError(
                f"Embedding '{EMBEDDING_KEY}' not found in adata.obsm for dataset '{self.name}'"
            )
        return _coords_frame(self.adata.obsm[EMBEDDING_KEY], self.adata.obs_names)

    @property
    def full_embedding(self) -> pd.DataFrame:
        """Embedding of the full, unsubsetted population (defaults to the internal one)."""
        if self._full_embedding is not None:
            return self._full_embedding
        return self.embedding()

    # -------------------------------------------------------------------------
    # Expression Matrix Extraction (cached)
    # -------------------------------------------------------------------------
    def expression_matrix(self, genes: Sequence[str]) -> pd.DataFrame:
        """
        Return an expression matrix (cells × genes) for the given genes.

        Notes:
        - Cache key is order-insensitive (genes are normalised to a sorted unique tuple).
        - If none of the genes exist, returns an empty DataFrame indexed by obs_names.
        """
        key = tuple(sorted(set(map(str, genes))))
        if key in self._expr_cache:
            return self._expr_cache[key]

        adata = self.adata

        var_mask = adata.var_names.isin(list(key))
        if not var_mask.any():
            df = pd.DataFrame(index=adata.obs_names)
            self._expr_cache[key] = df
            return df

        selected_genes = adata.var_names[var_mask]
        X = adata[:, var_mask].X  # sparse or dense slice

        if hasattr(X, "toarray"):
            X = X.toarray()

        df = pd.DataFrame(np.asarray(X), index=adata.obs_names, columns=selected_genes)

        if len(self._expr_cache) >= self.MAX_EXPR_CACHE:
            self._expr_cache.clear()
        self._expr_cache[key] = df

        return df

    def expression(self, gene: str) -> pd.Series:
        """Expression of a single gene across all cells (empty Series if absent)."""
        df = self.expression_matrix([gene])
        if gene not in df.columns:
            return pd.Series(dtype=float, index=self.adata.obs_names, name=gene)
        return df[gene].rename(gene)

    def qc_columns(self) -> List[str]:
        return [c for c in QC_COLUMNS if c in self.adata.obs.columns]

    # -------------------------------------------------------------------------
    # Derivation
    # -------------------------------------------------------------------------
    def fork(self) -> Dataset:
        """
        Identity subset: same cells, same matrix, but its own metadata table so that
        clusterings computed on the fork never leak back into this dataset.
        """
        adata = ad.AnnData(
            X=self.adata.X,
            obs=self.adata.obs.copy(),
            var=self.adata.var,
            obsm={k: v for k, v in self.adata.obsm.items()},
            obsp={k: v for k, v in self.adata.obsp.items()},
            uns=dict(self.adata.uns),
        )
        return Dataset(
            name=self.name,
            species=self.species,
            adata=adata,
            cellranger_embedding=self.cellranger_embedding,
            full_embedding=self.full_embedding_or_none(),
            file_path=self.file_path,
            parent=self.name,
        )

    def full_embedding_or_none(self) -> Optional[pd.DataFrame]:
        if self._full_embedding is not None:
            return self._full_embedding
        if EMBEDDING_KEY in self.adata.obsm:
            return self.embedding()
        return None
