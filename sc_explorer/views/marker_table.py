from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from sc_explorer.analysis.markers import MARKER_COLUMNS, empty_marker_table


def marker_table_records(
    table: Optional[pd.DataFrame],
    digits: int = 3,
) -> Tuple[List[Dict[str, str]], List[Dict[str, Any]]]:
    """
    (columns, data) for a Dash DataTable; floats rounded for display.
    A missing table renders as the empty fixed-schema table.
    """
    if table is None:
        table = empty_marker_table()

    columns = [
        {"name": c, "id": c, "type": "text" if c == "gene" else "numeric"}
        for c in MARKER_COLUMNS
    ]
    shown = table[MARKER_COLUMNS].copy()
    numeric = [c for c in MARKER_COLUMNS if c != "gene"]
    shown[numeric] = shown[numeric].astype(float).round(digits)
    return columns, shown.to_dict("records")


def gene_for_row(records: Optional[List[Dict[str, Any]]], row: Optional[int]) -> Optional[str]:
    """Gene of a clicked table row, or None for an out-of-range / empty click."""
    if not records or row is None or row < 0 or row >= len(records):
        return None
    gene = records[row].get("gene")
    if gene is None or (isinstance(gene, float) and pd.isna(gene)):
        return None
    return str(gene)
