from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

import numpy as np

from sc_explorer.analysis.exceptions import AnalysisError
from sc_explorer.core.dataset import EMBEDDING_KEY, RESOLUTION_PREFIX, Dataset
from sc_explorer.core.exceptions import DatasetSchemaError
from sc_explorer.core.progress import NULL_PROGRESS, ProgressReporter

if TYPE_CHECKING:
    from sc_explorer.analysis.backend import AnalysisBackend

logger = logging.getLogger(__name__)

SUBSET_OPERATION = "Create subset data"

# Minimum cells for a fresh t-SNE; smaller subsets keep the parent coordinates
MIN_CELLS_FOR_EMBEDDING = 2


def subset(
    dataset: Dataset,
    keep_labels: Iterable[str],
    *,
    resolution: float,
    recompute_embedding: bool,
    backend: AnalysisBackend,
    n_dims: int = 15,
    progress: ProgressReporter = NULL_PROGRESS,
) -> Dataset:
    """
    Return a new Dataset holding only the cells whose label at `resolution`
    is in `keep_labels`.

    - An empty selection is a valid (empty) dataset.
    - Every 'res_*' column and any cached neighbour graph is dropped: clusterings
      of the parent population say nothing about the subset.
    - With recompute_embedding, a fresh t-SNE replaces the parent coordinates.
    - `dataset` itself is never modified.

    :raises DatasetSchemaError: if `dataset` has no clustering at `resolution`
    :raises AnalysisError: if the embedding backend fails
    """
    labels = dataset.cluster_labels(resolution)
    if labels is None:
        raise DatasetSchemaError(
            f"Cannot subset '{dataset.name}': no clustering at resolution {resolution}"
        )

    keep = {str(label) for label in keep_labels}

    with progress.task(SUBSET_OPERATION, "This may take a while...") as task:
        mask = labels.isin(keep).to_numpy()
        sub_adata = dataset.adata[mask].copy()

        res_columns = [c for c in sub_adata.obs.columns if str(c).startswith(RESOLUTION_PREFIX)]
        sub_adata.obs = sub_adata.obs.drop(columns=res_columns)
        sub_adata.uns.pop("neighbors", None)
        for key in list(sub_adata.obsp.keys()):
            del sub_adata.obsp[key]

        task.advance(0.4, "Run t-SNE on subset")
        if recompute_embedding and sub_adata.n_obs >= MIN_CELLS_FOR_EMBEDDING:
            try:
                coords = np.asarray(backend.embed(sub_adata, n_dims))
            except AnalysisError:
                raise
            except Exception as e:
                logger.exception(
                    "t-SNE on subset failed",
                    extra={"dataset": dataset.name, "n_cells": int(sub_adata.n_obs)},
                )
                raise AnalysisError(f"t-SNE on subset failed: {e}") from e

            if coords.shape[0] != sub_adata.n_obs or coords.ndim != 2 or coords.shape[1] < 2:
                raise AnalysisError(
                    f"t-SNE returned shape {coords.shape} for {sub_adata.n_obs} cells"
                )
            sub_adata.obsm[EMBEDDING_KEY] = coords[:, :2]
        elif recompute_embedding:
            logger.info(
                "Subset too small for t-SNE; keeping parent coordinates",
                extra={"dataset": dataset.name, "n_cells": int(sub_adata.n_obs)},
            )

        task.advance(0.4, "Generate metadata")
        result = Dataset(
            name=dataset.name,
            species=dataset.species,
            adata=sub_adata,
            cellranger_embedding=dataset.cellranger_embedding,
            full_embedding=dataset.full_embedding_or_none(),
            file_path=dataset.file_path,
            parent=dataset.name,
        )

    logger.info(
        "Subset created",
        extra={
            "dataset": dataset.name,
            "clusters": sorted(keep),
            "resolution": resolution,
            "n_cells": result.n_cells,
            "recomputed_embedding": bool(recompute_embedding),
        },
    )
    return result
