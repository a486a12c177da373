from __future__ import annotations

from typing import List, Optional

import pandas as pd
import plotly.express as px
import plotly.graph_objs as go

from sc_explorer.core.base_view import BaseView
from sc_explorer.core.state import SessionSnapshot

# Per-sample grouping column candidates, in order of preference
SAMPLE_COLUMNS = ("orig.ident", "sample", "batch")


class QualityView(BaseView):
    """
    Data-quality violins: UMI and gene counts per cell, grouped by sample.
    Always drawn for the full dataset, whatever subset is active.
    """

    id = "quality"
    label = "Data Quality"
    empty_message = "No per-cell quality metrics in this dataset"

    def compute_data(self, snapshot: SessionSnapshot) -> Optional[pd.DataFrame]:
        ds = snapshot.dataset
        if ds is None:
            return None

        metrics: List[str] = ds.qc_columns()[:2]
        if not metrics:
            return None

        obs = ds.adata.obs
        group_col = next((c for c in SAMPLE_COLUMNS if c in obs.columns), None)
        groups = obs[group_col].astype(str) if group_col else pd.Series(ds.name, index=obs.index)

        frame = obs[metrics].astype(float).assign(sample=groups.to_numpy())
        return frame.melt(id_vars="sample", var_name="metric", value_name="value")

    def render_figure(self, data: pd.DataFrame, snapshot: SessionSnapshot) -> go.Figure:
        fig = px.violin(
            data,
            x="sample",
            y="value",
            color="sample",
            facet_col="metric",
            points="all",
            template="simple_white",
        )
        fig.update_yaxes(matches=None, showticklabels=True)
        fig.for_each_annotation(lambda a: a.update(text=a.text.split("=")[-1]))
        fig.update_traces(marker=dict(size=2), jitter=0.4)
        fig.update_layout(
            height=self.plot_height(offset=-0.2),
            margin=dict(l=40, r=40, t=40, b=40),
            showlegend=False,
        )
        return fig
