from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import pandas as pd
import plotly.graph_objs as go
from plotly.subplots import make_subplots

from sc_explorer.core.base_view import BaseView
from sc_explorer.core.dataset import sort_cluster_labels
from sc_explorer.core.state import SessionSnapshot
from sc_explorer.views.cluster_view import CLUSTER_PALETTE, ClusterView, cluster_traces

EXPRESSION_SCALE = [[0.0, "lightgrey"], [1.0, "blue"]]


@dataclass
class ExpressionData:
    """
    Inputs of the combined figure.

    - clusters: embedding data (x, y, cluster)
    - expression: clusters inner-joined with the gene's expression ('expr'); None = no valid gene
    - violin: per-cell (cluster, expr) of the active dataset at its active resolution
    """

    clusters: pd.DataFrame
    gene: str = ""
    title: str = ""
    expression: Optional[pd.DataFrame] = None
    violin: Optional[pd.DataFrame] = None


class ExpressionView(BaseView):
    """
    Combined plot: cluster t-SNE and expression overlay side by side (same axis
    ranges), with a per-cluster violin of the gene underneath.

    Falls back to the plain cluster plot while no valid gene is selected.
    """

    id = "expression"
    label = "Gene Expression"

    def compute_data(self, snapshot: SessionSnapshot) -> Optional[ExpressionData]:
        clusters = snapshot.embedding_data
        if clusters is None:
            return None

        ds = snapshot.subset if snapshot.subset is not None else snapshot.dataset
        gene = snapshot.gene
        if ds is None or not gene.is_valid or gene.symbol not in ds.valid_sets().genes:
            return ExpressionData(clusters=clusters)

        expr = ds.expression(gene.symbol).rename("expr")
        expression = clusters.join(expr, how="inner")

        violin = None
        res = snapshot.subset_clustering.resolution if snapshot.subset_clustering else None
        labels = ds.cluster_labels(res) if res is not None else None
        if labels is not None:
            violin = pd.DataFrame({"cluster": labels, "expr": expr.reindex(labels.index)})

        return ExpressionData(
            clusters=clusters,
            gene=gene.symbol,
            title=snapshot.gene_title or gene.symbol,
            expression=expression,
            violin=violin,
        )

    def render_figure(self, data: ExpressionData, snapshot: SessionSnapshot) -> go.Figure:
        if data.expression is None:
            return ClusterView(self.dataset, scale_factor=self.scale_factor).render_figure(
                data.clusters, snapshot
            )

        fig = make_subplots(
            rows=2,
            cols=2,
            specs=[[{}, {}], [{"colspan": 2}, None]],
            row_heights=[0.6, 0.4],
            subplot_titles=(snapshot.dataset_name, data.gene, data.title),
            vertical_spacing=0.1,
        )

        for trace in cluster_traces(data.clusters, snapshot.inputs.show_cluster_size, marker_size=3):
            fig.add_trace(trace, row=1, col=1)

        expr = data.expression.sort_values("expr")
        fig.add_trace(
            go.Scattergl(
                x=expr["x"],
                y=expr["y"],
                mode="markers",
                marker=dict(
                    size=3,
                    color=expr["expr"],
                    colorscale=EXPRESSION_SCALE,
                    showscale=False,
                ),
                text=expr.index,
                hovertemplate="%{text}: %{marker.color:.2f}<extra></extra>",
                showlegend=False,
            ),
            row=1,
            col=2,
        )

        # Expression panel shares the cluster panel's axis ranges
        if not data.clusters.empty:
            x_range = [float(data.clusters["x"].min()), float(data.clusters["x"].max())]
            y_range = [float(data.clusters["y"].min()), float(data.clusters["y"].max())]
            for col in (1, 2):
                fig.update_xaxes(range=x_range, row=1, col=col)
                fig.update_yaxes(range=y_range, row=1, col=col)

        if data.violin is not None and not data.violin.empty:
            for i, cluster in enumerate(sort_cluster_labels(data.violin["cluster"].unique())):
                values = data.violin.loc[data.violin["cluster"] == cluster, "expr"]
                fig.add_trace(
                    go.Violin(
                        x=[cluster] * len(values),
                        y=values,
                        name=cluster,
                        line_color=CLUSTER_PALETTE[i % len(CLUSTER_PALETTE)],
                        points="all",
                        pointpos=0,
                        jitter=0.4,
                        marker=dict(size=2, color="black"),
                        showlegend=True,
                    ),
                    row=2,
                    col=1,
                )
            fig.update_xaxes(title_text="Identity", type="category", row=2, col=1)
            fig.update_yaxes(title_text="Expression level", row=2, col=1)

        fig.update_layout(
            height=self.plot_height(offset=0.3),
            template="simple_white",
            margin=dict(l=40, r=40, t=60, b=40),
        )
        return fig
