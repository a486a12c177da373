from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import dash
from dash import Input, Output, State, dcc, exceptions

from sc_explorer.services.export_service import DEFAULT_FORMAT
from sc_explorer.ui.ids import IDs
from sc_explorer.views.marker_table import gene_for_row

if TYPE_CHECKING:
    from sc_explorer.ui.config import AppConfig

logger = logging.getLogger(__name__)


def register_io_callbacks(app: dash.Dash, ctx: AppConfig) -> None:
    # ---------------------------------------------------------
    # 1. Download the combined expression plot
    # ---------------------------------------------------------
    @app.callback(
        Output(IDs.Control.DOWNLOAD_IMAGE, "data"),
        Input(IDs.Control.DOWNLOAD_IMAGE_BTN, "n_clicks"),
        State(IDs.Store.SESSION_ID, "data"),
        prevent_initial_call=True,
    )
    def download_image(n_clicks, session_id):
        if not n_clicks or not session_id:
            raise exceptions.PreventUpdate

        try:
            with ctx.sessions.use(session_id) as machine:
                snapshot = machine.snapshot()
                filename, image = ctx.export_service.render_image(snapshot, DEFAULT_FORMAT)
        except ValueError as e:
            logger.info("Image download refused", extra={"session_id": session_id, "reason": str(e)})
            raise exceptions.PreventUpdate
        except Exception:
            logger.exception("Image export failed", extra={"session_id": session_id})
            raise exceptions.PreventUpdate

        return dcc.send_bytes(image, filename)

    # ---------------------------------------------------------
    # 2. Marker table row click -> gene of interest
    # ---------------------------------------------------------
    @app.callback(
        Output(IDs.Store.MARKER_PICK, "data"),
        Input(IDs.Control.MARKER_TABLE, "active_cell"),
        State(IDs.Control.MARKER_TABLE, "derived_viewport_data"),
        prevent_initial_call=True,
    )
    def select_marker_gene(active_cell, rows):
        """Clicking a row makes its gene the gene of interest, skipping the typing delay."""
        if not active_cell:
            raise exceptions.PreventUpdate

        gene = gene_for_row(rows, active_cell.get("row"))
        if gene is None:
            raise exceptions.PreventUpdate

        logger.info("Marker gene selected", extra={"gene": gene})
        return gene
