from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import dash_bootstrap_components as dbc
from dash import dcc, html

from sc_explorer.ui.ids import IDs
from sc_explorer.ui.layout.build_control_panel import build_control_panel
from sc_explorer.ui.layout.build_navbar import build_navbar
from sc_explorer.ui.layout.build_plot_panel import build_plot_panel

if TYPE_CHECKING:
    from sc_explorer.ui.config import AppConfig

# Polling period of the debounce flush, in ms
TICK_INTERVAL_MS = 500


def build_layout(ctx: AppConfig):
    """
    Page layout factory. Dash calls it on every page load, so each browser tab
    gets its own session id and therefore its own session state.
    """

    def layout():
        return dbc.Container(
            fluid=True,
            children=[
                dcc.Location(id=IDs.Control.URL, refresh=False),
                dcc.Store(id=IDs.Store.SESSION_ID, data=uuid.uuid4().hex, storage_type="memory"),
                dcc.Store(id=IDs.Store.REVISION, data=0, storage_type="memory"),
                dcc.Store(id=IDs.Store.MARKER_PICK, data=None, storage_type="memory"),
                dcc.Interval(id=IDs.Control.TICK, interval=TICK_INTERVAL_MS, n_intervals=0),

                build_navbar(ctx.catalog.labels(), ctx.global_config.ui_title),

                html.Div(id=IDs.Control.NOTICES, className="mt-2"),
                html.Small("", id=IDs.Control.STATUS_BAR, className="text-muted"),

                html.Div(
                    id=IDs.Control.DATASET_PANEL,
                    style={"display": "none"},
                    children=dbc.Row(
                        [
                            dbc.Col(build_control_panel(ctx.global_config.analysis), md=3),
                            dbc.Col(build_plot_panel(), md=9),
                        ],
                        className="mt-3",
                    ),
                ),
            ],
        )

    return layout
