from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objs as go

from sc_explorer.core.base_view import BaseView
from sc_explorer.core.state import SessionSnapshot


@dataclass
class CorrelationData:
    gene1: str
    gene2: str
    clusters: Tuple[str, ...]
    frame: pd.DataFrame
    r: float = math.nan

    @property
    def title(self) -> str:
        r_text = "NA" if math.isnan(self.r) else f"{round(self.r, 2)}"
        return f"{self.gene1} & {self.gene2} (cluster {'/'.join(self.clusters)}) [r = {r_text}]"


def pearson_r(x: pd.Series, y: pd.Series) -> float:
    """Pearson correlation; NaN for fewer than two cells or a constant gene."""
    if len(x) < 2 or np.std(x) == 0 or np.std(y) == 0:
        return math.nan
    return float(np.corrcoef(x.to_numpy(dtype=float), y.to_numpy(dtype=float))[0, 1])


class CorrelationView(BaseView):
    """
    Expression of two genes against each other, restricted to the cells of the
    selected clusters, with rug marginals and the Pearson r in the title.
    """

    id = "correlation"
    label = "Gene Correlation"
    empty_message = "Enter two different valid genes"

    def compute_data(self, snapshot: SessionSnapshot) -> Optional[CorrelationData]:
        ds = snapshot.subset if snapshot.subset is not None else snapshot.dataset
        g1, g2 = snapshot.gene1, snapshot.gene2
        if ds is None or not (g1.is_valid and g2.is_valid) or g1.symbol == g2.symbol:
            return None

        genes = ds.valid_sets().genes
        if g1.symbol not in genes or g2.symbol not in genes:
            return None

        clusters = tuple(snapshot.inputs.cluster_filter)
        res = snapshot.subset_clustering.resolution if snapshot.subset_clustering else None
        if not clusters or res is None or not ds.has_clustering(res):
            cells = pd.Index([])
        else:
            cells = ds.cells_in_clusters(res, clusters)

        matrix = ds.expression_matrix([g1.symbol, g2.symbol])
        frame = matrix.loc[cells, [g1.symbol, g2.symbol]]
        return CorrelationData(
            gene1=g1.symbol,
            gene2=g2.symbol,
            clusters=clusters,
            frame=frame,
            r=pearson_r(frame[g1.symbol], frame[g2.symbol]),
        )

    def render_figure(self, data: CorrelationData, snapshot: SessionSnapshot) -> go.Figure:
        if not data.clusters:
            return self.empty_figure("Select clusters to compare the two genes")
        if data.frame.empty:
            return self.empty_figure(f"No cells in cluster {'/'.join(data.clusters)}")

        fig = px.scatter(
            data.frame,
            x=data.gene1,
            y=data.gene2,
            opacity=0.7,
            marginal_x="rug",
            marginal_y="rug",
            title=data.title,
            template="simple_white",
        )
        fig.update_traces(marker=dict(size=7), selector=dict(type="scatter", mode="markers"))
        fig.update_layout(
            height=self.plot_height(offset=-0.1),
            margin=dict(l=40, r=40, t=60, b=40),
            showlegend=False,
        )
        return fig
