from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import anndata as ad
import pandas as pd

from sc_explorer.config.model import DatasetEntry
from sc_explorer.core.dataset import EMBEDDING_KEY, Dataset
from sc_explorer.core.exceptions import DatasetLoadError, DatasetSchemaError
from sc_explorer.core.progress import NULL_PROGRESS, ProgressReporter

logger = logging.getLogger(__name__)

LOAD_OPERATION = "Load dataset"

CELLRANGER_FILE = "projection.csv"
CELLRANGER_COLUMNS = ("Barcode", "TSNE-1", "TSNE-2")

FULL_EMBEDDING_FILE = "projection_full.csv"
FULL_EMBEDDING_COLUMNS = ("Barcode", "tSNE_1", "tSNE_2")


def dataset_dir(entry: DatasetEntry, data_root: Path) -> Path:
    return Path(data_root) / entry.data_dir


def _ensure_unique_names(adata: ad.AnnData, label: str, path: Path) -> ad.AnnData:
    """
    Ensure obs_names and var_names are unique, logging what we do.
    """
    if not adata.obs_names.is_unique:
        logger.warning(
            "Cell barcodes are not unique for dataset '%s' (%s); "
            "calling .obs_names_make_unique() (in-memory fix)",
            label,
            path,
        )
        adata.obs_names_make_unique()

    if not adata.var_names.is_unique:
        logger.warning(
            "Gene names are not unique for dataset '%s' (%s); "
            "calling .var_names_make_unique() (in-memory fix)",
            label,
            path,
        )
        adata.var_names_make_unique()

    return adata


def _read_coords(path: Path, columns: tuple, strip_suffix: bool) -> pd.DataFrame:
    """
    Read a (barcode, x, y) table into a DataFrame with x/y indexed by barcode.
    Barcodes like 'AAACCTG-1' are cut at the first '-' when strip_suffix is set.
    """
    try:
        frame = pd.read_csv(path, dtype={columns[0]: str})
    except (OSError, pd.errors.ParserError) as e:
        raise DatasetLoadError(f"Could not read {path}: {e}") from e

    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise DatasetSchemaError(f"{path.name} is missing columns {missing}")

    barcodes = frame[columns[0]].astype(str)
    if strip_suffix:
        barcodes = barcodes.str.split("-", n=1).str[0]

    return pd.DataFrame(
        {"x": frame[columns[1]].to_numpy(dtype=float), "y": frame[columns[2]].to_numpy(dtype=float)},
        index=pd.Index(barcodes, name="Barcode"),
    )


def from_entry(
    entry: DatasetEntry,
    data_root: Path,
    progress: ProgressReporter = NULL_PROGRESS,
) -> Dataset:
    """
    Materialise a Dataset from its catalog entry.

    Artifacts under <data_root>/<data_dir>/:
    - <data_dir>.h5ad: expression matrix, cell metadata, obsm['X_tsne']
    - projection.csv: cellranger t-SNE (Barcode, TSNE-1, TSNE-2)
    - projection_full.csv (optional): embedding of the full, unsubsetted population

    :raises DatasetLoadError: if the h5ad file is missing or unreadable
    :raises DatasetSchemaError: if the artifacts are inconsistent
    """
    try:
        directory = dataset_dir(entry, data_root)
    except KeyError as e:
        raise DatasetLoadError(str(e)) from e

    h5ad_path = directory / f"{entry.data_dir}.h5ad"

    with progress.task(LOAD_OPERATION, "Locate data file") as task:
        if not h5ad_path.is_file():
            raise DatasetLoadError(f"AnnData file not found at {h5ad_path}.")

        task.update(0.1, "Read h5ad file")
        try:
            adata = ad.read_h5ad(h5ad_path)
        except (OSError, KeyError, ValueError) as e:
            raise DatasetLoadError(f"Could not read {h5ad_path}: {e}") from e
        adata = _ensure_unique_names(adata, entry.label, h5ad_path)

        if EMBEDDING_KEY not in adata.obsm:
            raise DatasetSchemaError(
                f"Dataset '{entry.label}': obsm['{EMBEDDING_KEY}'] not found in {h5ad_path.name}"
            )

        task.update(0.7, "Read t-SNE coordinates")
        cellranger: Optional[pd.DataFrame] = None
        cellranger_path = directory / CELLRANGER_FILE
        if cellranger_path.is_file():
            cellranger = _read_coords(cellranger_path, CELLRANGER_COLUMNS, strip_suffix=True)
        else:
            logger.warning(
                "Cellranger projection not found; cellranger view disabled",
                extra={"dataset": entry.label, "path": str(cellranger_path)},
            )

        full: Optional[pd.DataFrame] = None
        full_path = directory / FULL_EMBEDDING_FILE
        if full_path.is_file():
            full = _read_coords(full_path, FULL_EMBEDDING_COLUMNS, strip_suffix=False)

        task.update(0.9, "Get resolution list")
        dataset = Dataset(
            name=entry.label,
            species=entry.species,
            adata=adata,
            cellranger_embedding=cellranger,
            full_embedding=full,
            file_path=h5ad_path,
        )

    logger.info(
        "Dataset loaded",
        extra={
            "dataset": entry.label,
            "path": str(h5ad_path),
            "n_cells": dataset.n_cells,
            "n_genes": dataset.n_genes,
            "cached_resolutions": dataset.resolution_columns(),
        },
    )
    return dataset
