from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc
import scipy.sparse as sp
from scipy.stats import rankdata

from sc_explorer.analysis.exceptions import AnalysisError
from sc_explorer.core.dataset import EMBEDDING_KEY, PCA_KEY

logger = logging.getLogger(__name__)

# Raw marker statistics returned by a backend, indexed by gene
MARKER_STAT_COLUMNS = ["myAUC", "avg_diff", "power", "avg_logFC", "pct.1", "pct.2"]


class AnalysisBackend(ABC):
    """
    Capability interface for the numerical routines the session core delegates to.

    Implementations may cache intermediate results (PCA, neighbour graph) on the
    AnnData they are given, but must not add or modify 'res_*' metadata columns:
    committing results is the caller's job.
    """

    @abstractmethod
    def cluster(self, adata: ad.AnnData, resolution: float, n_dims: int) -> pd.Series:
        """
        Graph clustering on the first `n_dims` principal components.
        :return: one label per cell, indexed like adata.obs_names
        """
        raise NotImplementedError()

    @abstractmethod
    def embed(self, adata: ad.AnnData, n_dims: int) -> np.ndarray:
        """
        2D t-SNE on the first `n_dims` principal components.
        :return: array of shape (n_cells, 2), rows in adata.obs_names order
        """
        raise NotImplementedError()

    @abstractmethod
    def find_markers(
        self,
        adata: ad.AnnData,
        cells1: Sequence[str],
        cells2: Optional[Sequence[str]],
        min_pct: float,
    ) -> pd.DataFrame:
        """
        ROC-style differential expression of cells1 against cells2 (None = all other cells).

        :return: DataFrame indexed by gene with MARKER_STAT_COLUMNS; effect sizes are
                 positive when expression is higher in cells1
        """
        raise NotImplementedError()


def _dense(X) -> np.ndarray:
    if sp.issparse(X):
        X = X.toarray()
    return np.asarray(X, dtype=float)


class ScanpyBackend(AnalysisBackend):
    """
    scanpy-backed implementation: PCA -> neighbours -> Leiden, PCA -> t-SNE,
    and a vectorised ROC marker test computed with numpy/scipy.
    """

    def __init__(self, random_state: int = 0) -> None:
        self.random_state = random_state

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------
    def _ensure_pca(self, adata: ad.AnnData, n_dims: int) -> int:
        """Make sure adata.obsm['X_pca'] exists; return the number of PCs to use."""
        max_comps = min(adata.n_obs, adata.n_vars) - 1
        if max_comps < 1:
            raise AnalysisError(
                f"Too few cells/genes for PCA (n_obs={adata.n_obs}, n_vars={adata.n_vars})"
            )

        if PCA_KEY in adata.obsm:
            have = np.asarray(adata.obsm[PCA_KEY]).shape[1]
            if have >= min(n_dims, max_comps):
                return min(n_dims, have)

        n_comps = min(n_dims, max_comps)
        logger.info("Running PCA", extra={"n_comps": n_comps, "n_cells": adata.n_obs})
        sc.pp.pca(adata, n_comps=n_comps, random_state=self.random_state)
        return n_comps

    # ------------------------------------------------------------------
    # Clustering
    # ------------------------------------------------------------------
    def cluster(self, adata: ad.AnnData, resolution: float, n_dims: int) -> pd.Series:
        n_pcs = self._ensure_pca(adata, n_dims)

        # The neighbour graph does not depend on resolution; build it once per AnnData
        if "neighbors" not in adata.uns:
            sc.pp.neighbors(
                adata,
                n_pcs=n_pcs,
                use_rep=PCA_KEY,
                n_neighbors=min(15, max(2, adata.n_obs - 1)),
                random_state=self.random_state,
            )

        key_added = "_explorer_leiden"
        sc.tl.leiden(
            adata,
            resolution=resolution,
            key_added=key_added,
            random_state=self.random_state,
            flavor="igraph",
            n_iterations=2,
            directed=False,
        )
        labels = adata.obs.pop(key_added).astype(str)
        return pd.Series(labels.to_numpy(), index=adata.obs_names, name="cluster")

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------
    def embed(self, adata: ad.AnnData, n_dims: int) -> np.ndarray:
        n_pcs = self._ensure_pca(adata, n_dims)
        perplexity = min(30.0, max(1.0, (adata.n_obs - 1) / 3.0))
        sc.tl.tsne(
            adata,
            n_pcs=n_pcs,
            use_rep=PCA_KEY,
            perplexity=perplexity,
            random_state=self.random_state,
        )
        return np.asarray(adata.obsm[EMBEDDING_KEY])[:, :2].copy()

    # ------------------------------------------------------------------
    # Marker test
    # ------------------------------------------------------------------
    def find_markers(
        self,
        adata: ad.AnnData,
        cells1: Sequence[str],
        cells2: Optional[Sequence[str]],
        min_pct: float,
    ) -> pd.DataFrame:
        obs_names = adata.obs_names
        idx1 = obs_names.get_indexer(list(cells1))
        if (idx1 < 0).any():
            raise AnalysisError("Cell group 1 contains cells not present in the dataset")

        if cells2 is None:
            mask2 = np.ones(adata.n_obs, dtype=bool)
            mask2[idx1] = False
            idx2 = np.flatnonzero(mask2)
        else:
            idx2 = obs_names.get_indexer(list(cells2))
            if (idx2 < 0).any():
                raise AnalysisError("Cell group 2 contains cells not present in the dataset")

        if len(idx1) == 0 or len(idx2) == 0:
            raise AnalysisError("Both cell groups must be non-empty for a marker test")

        data1 = _dense(adata.X[idx1])
        data2 = _dense(adata.X[idx2])

        pct1 = np.round((data1 > 0).mean(axis=0), 3)
        pct2 = np.round((data2 > 0).mean(axis=0), 3)
        keep = np.maximum(pct1, pct2) >= min_pct

        genes = adata.var_names[keep]
        if not keep.any():
            return pd.DataFrame(columns=MARKER_STAT_COLUMNS, index=pd.Index([], name="gene"))

        data1 = data1[:, keep]
        data2 = data2[:, keep]
        n1, n2 = data1.shape[0], data2.shape[0]

        avg_diff = data1.mean(axis=0) - data2.mean(axis=0)
        # Data are log1p-normalised: compare means on the linear scale
        avg_logfc = np.log(np.expm1(data1).mean(axis=0) + 1) - np.log(np.expm1(data2).mean(axis=0) + 1)

        # AUC = Mann-Whitney U / (n1 * n2), ties counted as half
        ranks = rankdata(np.vstack([data1, data2]), axis=0)
        u1 = ranks[:n1].sum(axis=0) - n1 * (n1 + 1) / 2.0
        auc = np.round(u1 / (n1 * n2), 3)
        power = np.round(np.abs(auc - 0.5) * 2, 3)

        return pd.DataFrame(
            {
                "myAUC": auc,
                "avg_diff": avg_diff,
                "power": power,
                "avg_logFC": avg_logfc,
                "pct.1": pct1[keep],
                "pct.2": pct2[keep],
            },
            index=pd.Index(genes, name="gene"),
        )
