from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Optional, Tuple

import pandas as pd

from sc_explorer.analysis.exceptions import AnalysisError
from sc_explorer.config.model import RESOLUTION_BOUNDS
from sc_explorer.core.dataset import Dataset, resolution_key
from sc_explorer.core.progress import NULL_PROGRESS, ProgressReporter

if TYPE_CHECKING:
    from sc_explorer.analysis.backend import AnalysisBackend

logger = logging.getLogger(__name__)

CLUSTERING_OPERATION = "Find clusters using new resolution"


def normalise_resolution(
    value: Any,
    bounds: Tuple[float, float] = RESOLUTION_BOUNDS,
) -> Optional[float]:
    """
    Round a requested resolution to one decimal, or return None if it is not a
    number or falls outside `bounds` (inclusive).
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None

    lo, hi = bounds
    if number < lo or number > hi:
        return None
    return round(number, 1)


def ensure_clustering(
    dataset: Dataset,
    resolution: Any,
    backend: AnalysisBackend,
    *,
    n_dims: int = 15,
    bounds: Tuple[float, float] = RESOLUTION_BOUNDS,
    progress: ProgressReporter = NULL_PROGRESS,
) -> Dataset:
    """
    Guarantee a 'res_<r>' label column on `dataset` and return the same instance.

    - out-of-range resolutions are ignored (dataset returned untouched)
    - an existing column is reused as-is: it is never recomputed for this instance
    - otherwise the backend clusters on the first `n_dims` PCs; the column is only
      written once the backend has succeeded

    :raises AnalysisError: if the backend fails; nothing is committed
    """
    res = normalise_resolution(resolution, bounds)
    if res is None:
        logger.info(
            "Ignoring out-of-range resolution",
            extra={"dataset": dataset.name, "resolution": resolution, "bounds": list(bounds)},
        )
        return dataset

    key = resolution_key(res)
    if key in dataset.adata.obs.columns:
        logger.debug("Clustering cache hit", extra={"dataset": dataset.name, "column": key})
        return dataset

    logger.info(
        "Clustering at new resolution",
        extra={"dataset": dataset.name, "resolution": res, "n_cells": dataset.n_cells},
    )

    with progress.task(CLUSTERING_OPERATION, "This may take a while...") as task:
        task.update(0.1, "Running clustering")
        try:
            labels = backend.cluster(dataset.adata, res, n_dims)
        except AnalysisError:
            raise
        except Exception as e:
            logger.exception(
                "Clustering failed",
                extra={"dataset": dataset.name, "resolution": res},
            )
            raise AnalysisError(f"Clustering at resolution {res} failed: {e}") from e

        labels = _align_labels(dataset, labels)
        dataset.adata.obs[key] = pd.Categorical(labels.astype(str))
        task.update(0.9, "Store cluster labels")

    logger.info(
        "Clustering stored",
        extra={"dataset": dataset.name, "column": key, "n_clusters": int(labels.nunique())},
    )
    return dataset


def _align_labels(dataset: Dataset, labels: Any) -> pd.Series:
    """Backend output must cover every cell exactly once."""
    if isinstance(labels, pd.Series):
        if labels.index.equals(dataset.cells):
            return labels
        if set(labels.index) == set(dataset.cells) and labels.index.is_unique:
            return labels.reindex(dataset.cells)
        raise AnalysisError("Clustering returned labels for a different set of cells")

    values = list(labels)
    if len(values) != dataset.n_cells:
        raise AnalysisError(
            f"Clustering returned {len(values)} labels for {dataset.n_cells} cells"
        )
    return pd.Series(values, index=dataset.cells)
