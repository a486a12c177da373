from __future__ import annotations

from typing import List, Optional

import pandas as pd
import plotly.express as px
import plotly.graph_objs as go

from sc_explorer.core.base_view import BaseView
from sc_explorer.core.dataset import sort_cluster_labels
from sc_explorer.core.state import SessionSnapshot

UNLABELLED_COLOR = "lightgrey"
CLUSTER_PALETTE = px.colors.qualitative.Plotly + px.colors.qualitative.Dark24


def cluster_label_positions(data: pd.DataFrame, show_size: bool) -> pd.DataFrame:
    """Median position per cluster, with the text drawn there."""
    labelled = data[data["cluster"].notna()]
    if labelled.empty:
        return pd.DataFrame(columns=["cluster", "x", "y", "size", "text"])

    summary = (
        labelled.groupby("cluster", observed=True)
        .agg(x=("x", "median"), y=("y", "median"), size=("x", "size"))
        .reset_index()
    )
    summary["cluster"] = summary["cluster"].astype(str)
    if show_size:
        summary["text"] = [f"Cluster {c} ({n})" for c, n in zip(summary["cluster"], summary["size"])]
    else:
        summary["text"] = summary["cluster"]
    order = {c: i for i, c in enumerate(sort_cluster_labels(summary["cluster"]))}
    return summary.sort_values("cluster", key=lambda s: s.map(order)).reset_index(drop=True)


def cluster_traces(data: pd.DataFrame, show_size: bool, marker_size: int = 4) -> List[go.BaseTraceType]:
    """
    Scatter traces for an embedding coloured by cluster:
    unlabelled cells first in light grey, one trace per cluster, then the labels.
    """
    traces: List[go.BaseTraceType] = []

    unlabelled = data[data["cluster"].isna()]
    if not unlabelled.empty:
        traces.append(
            go.Scattergl(
                x=unlabelled["x"],
                y=unlabelled["y"],
                mode="markers",
                marker=dict(size=marker_size, color=UNLABELLED_COLOR),
                name="unassigned",
                hoverinfo="skip",
                showlegend=False,
            )
        )

    labelled = data[data["cluster"].notna()]
    for i, cluster in enumerate(sort_cluster_labels(labelled["cluster"].unique())):
        part = labelled[labelled["cluster"].astype(str) == cluster]
        traces.append(
            go.Scattergl(
                x=part["x"],
                y=part["y"],
                mode="markers",
                marker=dict(size=marker_size, color=CLUSTER_PALETTE[i % len(CLUSTER_PALETTE)]),
                name=f"Cluster {cluster}",
                text=part.index,
                hovertemplate="%{text}<extra>Cluster " + cluster + "</extra>",
                showlegend=False,
            )
        )

    labels = cluster_label_positions(data, show_size)
    if not labels.empty:
        traces.append(
            go.Scatter(
                x=labels["x"],
                y=labels["y"],
                mode="text",
                text=labels["text"],
                textfont=dict(color="black", size=13, family="Arial Black"),
                hoverinfo="skip",
                showlegend=False,
            )
        )
    return traces


class ClusterView(BaseView):
    """
    t-SNE plot coloured by cluster.

    - X/Y from the session's embedding data (internal, full or cellranger t-SNE)
    - cells without a label (only kept with 'show all points') drawn light grey
    - cluster ids drawn at each cluster's median position, optionally with sizes
    """

    id = "cluster"
    label = "Cluster Plot"

    def compute_data(self, snapshot: SessionSnapshot) -> Optional[pd.DataFrame]:
        return snapshot.embedding_data

    def render_figure(self, data: pd.DataFrame, snapshot: SessionSnapshot) -> go.Figure:
        if data.empty:
            return self.empty_figure(f"{snapshot.dataset_name} (no cells to show)")

        fig = go.Figure(cluster_traces(data, snapshot.inputs.show_cluster_size))
        fig.update_layout(
            title=snapshot.dataset_name,
            height=self.plot_height(),
            template="simple_white",
            margin=dict(l=40, r=40, t=40, b=40),
            xaxis_title="tSNE_1",
            yaxis_title="tSNE_2",
        )
        fig.update_yaxes(scaleanchor="x", scaleratio=1)
        return fig
