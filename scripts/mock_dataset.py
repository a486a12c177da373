"""
Write a small synthetic dataset matching config/datasets/demo.json:

    data/demo/demo.h5ad         expression + obs QC columns + obsm['X_tsne']
    data/demo/projection.csv    cellranger t-SNE (Barcode, TSNE-1, TSNE-2)
"""
import argparse
from pathlib import Path

import anndata as ad
import numpy as np
import pandas as pd

MARKER_GENES = ["TNF", "CD4", "PTPRC", "MS4A1", "CD3E"]


def build_adata(n_cells: int, n_genes: int, n_groups: int, seed: int) -> ad.AnnData:
    rng = np.random.default_rng(seed)

    groups = rng.integers(0, n_groups, size=n_cells)
    X = rng.poisson(lam=1.0, size=(n_cells, n_genes)).astype(np.float32)
    # each group over-expresses its own block of genes so clustering finds something
    block = max(1, n_genes // n_groups)
    for g in range(n_groups):
        X[groups == g, g * block:(g + 1) * block] += rng.poisson(4.0, size=((groups == g).sum(), block))
    X = np.log1p(X)

    centers = rng.normal(scale=10.0, size=(n_groups, 2))
    tsne = centers[groups] + rng.normal(size=(n_cells, 2))

    barcodes = [f"CELL{i:05d}" for i in range(n_cells)]
    genes = MARKER_GENES + [f"GENE{j}" for j in range(n_genes - len(MARKER_GENES))]

    obs = pd.DataFrame(
        {
            "orig.ident": rng.choice(["sample_a", "sample_b"], size=n_cells),
            "nUMI": rng.integers(500, 5000, size=n_cells),
            "nGene": rng.integers(200, 2000, size=n_cells),
        },
        index=barcodes,
    )
    adata = ad.AnnData(X=X, obs=obs, var=pd.DataFrame(index=genes))
    adata.obsm["X_tsne"] = tsne
    return adata


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--out", type=Path, default=Path("data"))
    parser.add_argument("--name", default="demo")
    parser.add_argument("--cells", type=int, default=600)
    parser.add_argument("--genes", type=int, default=200)
    parser.add_argument("--groups", type=int, default=4)
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    adata = build_adata(args.cells, args.genes, args.groups, args.seed)

    directory = args.out / args.name
    directory.mkdir(parents=True, exist_ok=True)
    adata.write_h5ad(directory / f"{args.name}.h5ad")

    jitter = np.random.default_rng(args.seed + 1).normal(scale=0.5, size=(adata.n_obs, 2))
    projection = pd.DataFrame(
        {
            "Barcode": [f"{b}-1" for b in adata.obs_names],
            "TSNE-1": adata.obsm["X_tsne"][:, 0] + jitter[:, 0],
            "TSNE-2": adata.obsm["X_tsne"][:, 1] + jitter[:, 1],
        }
    )
    projection.to_csv(directory / "projection.csv", index=False)

    print(f"wrote {directory} {adata.shape}")


if __name__ == "__main__":
    main()
