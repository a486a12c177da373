from __future__ import annotations

import dash_bootstrap_components as dbc
from dash import dcc, html

from sc_explorer.config.model import AnalysisSettings
from sc_explorer.ui.ids import IDs


def _resolution_slider(component_id: str, settings: AnalysisSettings) -> dcc.Slider:
    lo, hi = settings.resolution_bounds
    return dcc.Slider(
        id=component_id,
        min=lo,
        max=hi,
        step=0.1,
        value=settings.default_resolution,
        marks={lo: str(lo), 0.8: "0.8", hi: str(hi)},
        tooltip={"placement": "bottom", "always_visible": False},
        updatemode="mouseup",
    )


def build_control_panel(settings: AnalysisSettings) -> dbc.Card:
    return dbc.Card(
        [
            dbc.CardHeader("Clusters", className="fw-semibold"),
            dbc.CardBody(
                [
                    html.Label("Resolution", className="form-label"),
                    _resolution_slider(IDs.Control.RESOLUTION, settings),
                    html.Hr(),

                    dbc.Switch(
                        id=IDs.Control.SUBSET_ENABLED,
                        label="Use subset",
                        value=False,
                    ),
                    html.Div(
                        id=IDs.Control.SUBSET_CONTAINER,
                        style={"display": "none"},
                        children=[
                            html.Label("Keep clusters", className="form-label"),
                            dcc.Dropdown(
                                id=IDs.Control.SUBSET_CLUSTERS,
                                options=[],
                                value=[],
                                multi=True,
                                placeholder="Select clusters",
                                className="mb-2",
                            ),
                            dbc.Checkbox(
                                id=IDs.Control.RECOMPUTE_TSNE,
                                label="Re-run t-SNE on subset",
                                value=False,
                            ),
                            html.Div(
                                id=IDs.Control.SUBSET_RESOLUTION_CONTAINER,
                                style={"display": "none"},
                                children=[
                                    html.Label("Subset resolution", className="form-label mt-2"),
                                    _resolution_slider(IDs.Control.SUBSET_RESOLUTION, settings),
                                ],
                            ),
                        ],
                    ),
                    html.Hr(),

                    dbc.Checklist(
                        id=IDs.Control.OPTIONS_CHECKLIST,
                        options=[
                            {"label": "Show all points", "value": "show_all"},
                            {"label": "Cellranger t-SNE", "value": "cellranger"},
                            {"label": "Show cluster size", "value": "show_size"},
                        ],
                        value=[],
                        switch=True,
                    ),
                    html.Hr(),

                    html.Label("Gene", className="form-label"),
                    dbc.Input(
                        id=IDs.Control.GENE_INPUT,
                        type="text",
                        placeholder="e.g. CD3E",
                        value="",
                        debounce=False,
                        className="mb-2",
                    ),
                ]
            ),
        ],
    )
