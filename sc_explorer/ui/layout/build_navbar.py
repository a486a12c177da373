from __future__ import annotations

from typing import List

import dash_bootstrap_components as dbc
from dash import dcc, html

from sc_explorer.core.session import NO_DATASET
from sc_explorer.ui.ids import IDs


def dataset_options(labels: List[str]) -> List[dict]:
    return [{"label": "(none)", "value": NO_DATASET}] + [
        {"label": label, "value": label} for label in labels
    ]


def build_navbar(labels: List[str], title: str) -> dbc.Navbar:
    return dbc.Navbar(
        dbc.Container(
            fluid=True,
            children=[
                html.Div(
                    [
                        html.H2(title, className="mb-0"),
                        html.Small(
                            "",
                            id=IDs.Control.DATASET_INFO,
                            className="text-muted",
                        ),
                    ],
                    className="d-flex flex-column justify-content-center",
                ),
                html.Div(
                    dcc.Dropdown(
                        id=IDs.Control.DATASET_SELECT,
                        options=dataset_options(labels),
                        value=NO_DATASET,
                        clearable=False,
                        placeholder="Select dataset",
                        style={"minWidth": "260px"},
                    ),
                    className="ms-auto d-flex align-items-center",
                    style={"width": "300px"},
                ),
            ],
        ),
        color="light",
        dark=False,
        className="shadow-sm",
    )
