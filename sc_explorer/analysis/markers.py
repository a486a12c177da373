from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

import pandas as pd

from sc_explorer.analysis.backend import MARKER_STAT_COLUMNS, AnalysisBackend
from sc_explorer.analysis.exceptions import AnalysisError
from sc_explorer.core.dataset import Dataset
from sc_explorer.core.progress import NULL_PROGRESS, ProgressReporter
from sc_explorer.core.state import REST_GROUP, Polarity

logger = logging.getLogger(__name__)

MARKER_OPERATION = "Find marker genes"

# Fixed, display-ready schema of a marker table
MARKER_COLUMNS: List[str] = ["gene", *MARKER_STAT_COLUMNS]

# Adjusted p-values are never shown, whatever a backend returns
_DROPPED_COLUMNS = ("p_val_adj", "pvals_adj", "adj_pvalue")


def empty_marker_table() -> pd.DataFrame:
    table = pd.DataFrame({c: pd.Series(dtype=float) for c in MARKER_STAT_COLUMNS})
    table.insert(0, "gene", pd.Series(dtype=str))
    return table


@dataclass
class MarkerResult:
    """
    Output of a marker-gene comparison.

    - table: MARKER_COLUMNS, sorted by myAUC descending (empty when not run)
    - warning: user-correctable reason the test was not run, if any
    """

    table: pd.DataFrame
    warning: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.table.empty


def find_markers(
    dataset: Dataset,
    group1: Iterable[str],
    group2: Union[Iterable[str], str],
    polarity: Polarity | str,
    backend: AnalysisBackend,
    *,
    min_cells: int = 3,
    min_auc: float = 0.7,
    min_pct: float = 0.25,
    progress: ProgressReporter = NULL_PROGRESS,
) -> MarkerResult:
    """
    Marker genes of cell group1 against group2 (or REST_GROUP = all other cells).

    Effect sizes are positive when expression is higher in group1:
    - pos: genes up in group1 (avg_logFC > 0), myAUC as returned by the test
    - neg: genes up in group2 (avg_logFC < 0), myAUC is the AUC of group2 over group1

    :raises AnalysisError: if the backend test fails
    """
    polarity = Polarity(polarity)
    cells1 = list(dict.fromkeys(str(c) for c in group1))
    is_rest = isinstance(group2, str) and group2 == REST_GROUP
    cells2: Optional[List[str]] = None if is_rest else list(dict.fromkeys(str(c) for c in group2))

    too_few = len(cells1) <= min_cells or (cells2 is not None and len(cells2) <= min_cells)
    if too_few:
        logger.info(
            "Too few cells for marker test",
            extra={
                "dataset": dataset.name,
                "n_group1": len(cells1),
                "n_group2": None if cells2 is None else len(cells2),
                "min_cells": min_cells,
            },
        )
        return MarkerResult(
            table=empty_marker_table(),
            warning=f"Too few cells: each group needs more than {min_cells} cells.",
        )

    with progress.task(MARKER_OPERATION, "This may take a while...") as task:
        task.update(0.1, "Run ROC test")
        try:
            stats = backend.find_markers(dataset.adata, cells1, cells2, min_pct)
        except AnalysisError:
            raise
        except Exception as e:
            logger.exception("Marker test failed", extra={"dataset": dataset.name})
            raise AnalysisError(f"Marker test failed: {e}") from e

        task.update(0.8, "Filter and rank markers")
        table = _post_process(stats, polarity, min_auc)

    logger.info(
        "Marker genes found",
        extra={
            "dataset": dataset.name,
            "polarity": polarity.value,
            "vs_rest": is_rest,
            "n_markers": int(len(table)),
        },
    )
    return MarkerResult(table=table)


def _post_process(stats: pd.DataFrame, polarity: Polarity, min_auc: float) -> pd.DataFrame:
    if stats is None or stats.empty:
        return empty_marker_table()

    df = stats.drop(columns=[c for c in _DROPPED_COLUMNS if c in stats.columns])
    if "gene" not in df.columns:
        df = df.rename_axis("gene").reset_index()

    missing = [c for c in MARKER_COLUMNS if c not in df.columns]
    if missing:
        raise AnalysisError(f"Marker test returned no columns {missing}")

    df = df[MARKER_COLUMNS].copy()
    df["gene"] = df["gene"].astype(str)

    if polarity is Polarity.POS:
        df = df[df["avg_logFC"] > 0]
    else:
        df = df[df["avg_logFC"] < 0].copy()
        df["myAUC"] = (1.0 - df["myAUC"]).round(3)

    df = df[df["myAUC"] >= min_auc]
    df = df.sort_values("myAUC", ascending=False, kind="mergesort")
    return df.reset_index(drop=True)
