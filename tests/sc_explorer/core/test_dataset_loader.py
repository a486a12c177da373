import anndata as ad
import numpy as np
import pandas as pd
import pytest
from conftest import make_adata, make_entry

from sc_explorer.core.dataset_loader import LOAD_OPERATION, from_entry
from sc_explorer.core.exceptions import DatasetLoadError, DatasetSchemaError
from sc_explorer.core.progress import ProgressLog, ProgressReporter


def _write_dataset(root, name="pbmc", adata=None, projection=True, full=False):
    """Lay out <root>/<name>/<name>.h5ad (+ projection CSVs) like the data directory."""
    adata = adata if adata is not None else make_adata((6, 4))
    directory = root / name
    directory.mkdir(parents=True)
    adata.write_h5ad(directory / f"{name}.h5ad")

    if projection:
        pd.DataFrame(
            {
                "Barcode": [f"{c}-1" for c in adata.obs_names],
                "TSNE-1": np.arange(adata.n_obs, dtype=float),
                "TSNE-2": np.ones(adata.n_obs),
            }
        ).to_csv(directory / "projection.csv", index=False)
    if full:
        pd.DataFrame(
            {
                "Barcode": list(adata.obs_names) + ["extra_cell"],
                "tSNE_1": np.zeros(adata.n_obs + 1),
                "tSNE_2": np.zeros(adata.n_obs + 1),
            }
        ).to_csv(directory / "projection_full.csv", index=False)
    return directory


def test_loads_matrix_embedding_and_cellranger_projection(tmp_path):
    _write_dataset(tmp_path)

    ds = from_entry(make_entry("PBMC"), tmp_path)

    assert ds.n_cells == 10 and ds.n_genes == 8
    assert ds.species.value == "human"
    assert ds.embedding().shape == (10, 2)
    # barcode suffix '-1' is stripped so cellranger rows line up with cells
    assert list(ds.cellranger_embedding.index) == list(ds.cells)
    assert ds.cellranger_embedding["x"].tolist() == list(range(10))
    assert ds.full_embedding.equals(ds.embedding())


def test_full_embedding_table_is_optional(tmp_path):
    _write_dataset(tmp_path, full=True)

    ds = from_entry(make_entry("PBMC"), tmp_path)

    assert len(ds.full_embedding) == 11
    assert "extra_cell" in ds.full_embedding.index


def test_missing_projection_only_disables_cellranger(tmp_path):
    _write_dataset(tmp_path, projection=False)

    ds = from_entry(make_entry("PBMC"), tmp_path)

    assert ds.cellranger_embedding is None


def test_missing_h5ad_is_a_load_error(tmp_path):
    with pytest.raises(DatasetLoadError, match="not found"):
        from_entry(make_entry("PBMC"), tmp_path)


def test_missing_embedding_is_a_schema_error(tmp_path):
    adata = make_adata((6, 4))
    del adata.obsm["X_tsne"]
    _write_dataset(tmp_path, adata=adata)

    with pytest.raises(DatasetSchemaError):
        from_entry(make_entry("PBMC"), tmp_path)


def test_bad_projection_columns_are_a_schema_error(tmp_path):
    directory = _write_dataset(tmp_path, projection=False)
    pd.DataFrame({"cell": ["a"], "x": [0.0]}).to_csv(directory / "projection.csv", index=False)

    with pytest.raises(DatasetSchemaError):
        from_entry(make_entry("PBMC"), tmp_path)


def test_duplicate_names_are_made_unique(tmp_path):
    adata = ad.AnnData(
        X=np.ones((3, 2)),
        obs=pd.DataFrame(index=["c1", "c1", "c2"]),
        var=pd.DataFrame(index=["g1", "g1"]),
    )
    adata.obsm["X_tsne"] = np.zeros((3, 2))
    _write_dataset(tmp_path, adata=adata, projection=False)

    ds = from_entry(make_entry("PBMC"), tmp_path)

    assert ds.cells.is_unique
    assert ds.genes.is_unique


def test_loading_reports_progress(tmp_path):
    _write_dataset(tmp_path)
    log = ProgressLog()

    from_entry(make_entry("PBMC"), tmp_path, progress=ProgressReporter([log]))

    assert {e.operation for e in log.events} == {LOAD_OPERATION}
    assert [e.message for e in log.events if e.stage == "running"] == [
        "Read h5ad file",
        "Read t-SNE coordinates",
        "Get resolution list",
    ]
