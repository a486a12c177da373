from __future__ import annotations

import dash_bootstrap_components as dbc
from dash import dash_table, dcc, html

from sc_explorer.analysis.markers import MARKER_COLUMNS
from sc_explorer.core.state import REST_GROUP, Polarity
from sc_explorer.ui.ids import IDs


# Spinner only for real recomputation, not for the debounce poll
LOADING_DELAY_MS = 800


def _graph(component_id: str) -> dcc.Loading:
    return dcc.Loading(
        type="default",
        delay_show=LOADING_DELAY_MS,
        children=dcc.Graph(id=component_id, config={"responsive": True}),
    )


def build_expression_tab() -> html.Div:
    return html.Div(
        [
            _graph(IDs.Control.EXPRESSION_GRAPH),
            html.Div(
                [
                    dbc.Button(
                        "Download image",
                        id=IDs.Control.DOWNLOAD_IMAGE_BTN,
                        color="secondary",
                        size="sm",
                        className="mt-2 ms-auto me-2",
                    ),
                    dcc.Download(id=IDs.Control.DOWNLOAD_IMAGE),
                ],
                className="d-flex justify-content-end align-items-center",
            ),
        ]
    )


def build_correlation_tab() -> html.Div:
    return html.Div(
        [
            dbc.Row(
                [
                    dbc.Col(dbc.Input(id=IDs.Control.GENE1_INPUT, placeholder="Gene 1", value="")),
                    dbc.Col(dbc.Input(id=IDs.Control.GENE2_INPUT, placeholder="Gene 2", value="")),
                    dbc.Col(
                        dcc.Dropdown(
                            id=IDs.Control.CLUSTER_FILTER,
                            options=[],
                            value=[],
                            multi=True,
                            placeholder="Clusters",
                        )
                    ),
                ],
                className="my-2",
            ),
            _graph(IDs.Control.CORRELATION_GRAPH),
        ]
    )


def build_marker_tab() -> html.Div:
    return html.Div(
        [
            dbc.Row(
                [
                    dbc.Col(
                        dcc.Dropdown(
                            id=IDs.Control.MARKER_GROUP1,
                            options=[],
                            value="",
                            placeholder="Cell group 1",
                        )
                    ),
                    dbc.Col(
                        dcc.Dropdown(
                            id=IDs.Control.MARKER_GROUP2,
                            options=[{"label": REST_GROUP, "value": REST_GROUP}],
                            value=REST_GROUP,
                            clearable=False,
                        )
                    ),
                    dbc.Col(
                        dbc.RadioItems(
                            id=IDs.Control.MARKER_POLARITY,
                            options=[
                                {"label": "Positive", "value": Polarity.POS.value},
                                {"label": "Negative", "value": Polarity.NEG.value},
                            ],
                            value=Polarity.POS.value,
                            inline=True,
                        )
                    ),
                ],
                className="my-2",
            ),
            dcc.Loading(
                type="default",
                children=dash_table.DataTable(
                    id=IDs.Control.MARKER_TABLE,
                    columns=[{"name": c, "id": c} for c in MARKER_COLUMNS],
                    data=[],
                    page_size=15,
                    sort_action="native",
                    style_table={"overflowX": "auto"},
                ),
            ),
        ]
    )


def build_plot_panel() -> dbc.Card:
    return dbc.Card(
        dbc.CardBody(
            dcc.Tabs(
                value="expression",
                children=[
                    dcc.Tab(label="Gene Expression", value="expression", children=build_expression_tab()),
                    dcc.Tab(label="Gene Correlation", value="correlation", children=build_correlation_tab()),
                    dcc.Tab(label="Marker Genes", value="markers", children=build_marker_tab()),
                    dcc.Tab(
                        label="Data Quality",
                        value="quality",
                        children=_graph(IDs.Control.QUALITY_GRAPH),
                    ),
                ],
            )
        )
    )
