from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, List, Optional, Set, Tuple

import dash_bootstrap_components as dbc
import plotly.graph_objs as go
from dash import Output, State, no_update

from sc_explorer.core.session import NO_DATASET, SessionStateMachine
from sc_explorer.core.state import DatasetStatus, GeneSelection, Notice, SessionSnapshot, Validity
from sc_explorer.ui.ids import IDs, OPTION_FIELDS
from sc_explorer.views.marker_table import marker_table_records

if TYPE_CHECKING:
    from sc_explorer.ui.config import AppConfig

logger = logging.getLogger(__name__)

MAX_NOTICES = 5

NOTICE_COLORS = {"error": "danger", "warning": "warning", "info": "info"}

HIDDEN = {"display": "none"}
SHOWN = {"display": "block"}

# (control id, session input) pairs the core may rewrite and the UI mirrors back
SYNCED_CONTROLS: List[Tuple[str, str]] = [
    (IDs.Control.RESOLUTION, "resolution"),
    (IDs.Control.SUBSET_ENABLED, "subset_enabled"),
    (IDs.Control.SUBSET_CLUSTERS, "subset_clusters"),
    (IDs.Control.RECOMPUTE_TSNE, "recompute_embedding"),
    (IDs.Control.SUBSET_RESOLUTION, "subset_resolution"),
    (IDs.Control.GENE_INPUT, "gene_query"),
    (IDs.Control.GENE1_INPUT, "gene1_query"),
    (IDs.Control.GENE2_INPUT, "gene2_query"),
    (IDs.Control.CLUSTER_FILTER, "cluster_filter"),
    (IDs.Control.MARKER_GROUP1, "marker_group1"),
    (IDs.Control.MARKER_GROUP2, "marker_group2"),
    (IDs.Control.MARKER_POLARITY, "marker_polarity"),
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _message_figure(title: str, details: Optional[str] = None) -> go.Figure:
    fig = go.Figure()
    text = title if details is None else f"{title}<br><br>{details}"
    fig.add_annotation(
        text=text,
        showarrow=False,
        xref="paper",
        yref="paper",
        x=0.5,
        y=0.5,
    )
    fig.update_xaxes(visible=False)
    fig.update_yaxes(visible=False)
    fig.update_layout(margin=dict(l=40, r=40, t=40, b=40), template="simple_white")
    return fig


def _error_figure() -> go.Figure:
    return _message_figure(
        "Something went wrong while rendering this view.",
        "If this keeps happening, grab the logs and open an issue.",
    )


def client_value(field: str, value: Any) -> Any:
    """Session input value as the matching Dash control holds it."""
    if field in ("subset_clusters", "cluster_filter"):
        return list(value)
    if field == "marker_polarity":
        return value.value
    return value


def sync_value(field: str, server: Any, client: Any, pending: Set[str]) -> Any:
    """
    Push a session value back to its control only when it differs, and never
    while raw input for that field is still settling (the user may be typing).
    """
    if field in pending:
        return no_update
    value = client_value(field, server)
    if value == client or (value in (None, "", []) and client in (None, "", [])):
        return no_update
    return value


def validity_props(gene: GeneSelection) -> Tuple[bool, bool]:
    """(valid, invalid) for a dbc.Input."""
    return gene.validity is Validity.VALID, gene.validity is Validity.INVALID


def notice_alerts(notices: List[Notice], existing: Optional[List[Any]]) -> Any:
    if not notices:
        return no_update
    alerts = list(existing or [])
    for notice in notices:
        alerts.append(
            dbc.Alert(
                notice.message,
                color=NOTICE_COLORS.get(notice.level, "secondary"),
                dismissable=True,
                className="py-2 mb-1",
            )
        )
    return alerts[-MAX_NOTICES:]


def status_text(machine: SessionStateMachine) -> str:
    event = machine.progress_log.last
    if event is None:
        return ""
    return f"{event.operation}: {event.message}" if event.message else event.operation


def render_views(ctx: AppConfig, snapshot: SessionSnapshot) -> List[go.Figure]:
    figures = []
    for view_id in ("expression", "correlation", "quality"):
        try:
            view = ctx.registry.create(
                view_id,
                snapshot.subset or snapshot.dataset,
                scale_factor=ctx.global_config.scale_factor,
            )
            figures.append(view.render(snapshot))
        except Exception:
            logger.exception(
                "Error rendering view",
                extra={"view_id": view_id, "dataset": snapshot.dataset_name},
            )
            figures.append(_error_figure())
    return figures


# -----------------------------------------------------------------------------
# Session -> page
# -----------------------------------------------------------------------------
RENDER_OUTPUTS = [
    Output(IDs.Control.EXPRESSION_GRAPH, "figure"),
    Output(IDs.Control.CORRELATION_GRAPH, "figure"),
    Output(IDs.Control.QUALITY_GRAPH, "figure"),
    Output(IDs.Control.MARKER_TABLE, "columns"),
    Output(IDs.Control.MARKER_TABLE, "data"),
    Output(IDs.Control.DATASET_INFO, "children"),
    Output(IDs.Control.DATASET_PANEL, "style"),
    Output(IDs.Control.STATUS_BAR, "children"),
    Output(IDs.Control.NOTICES, "children"),
    Output(IDs.Control.SUBSET_CONTAINER, "style"),
    Output(IDs.Control.SUBSET_RESOLUTION_CONTAINER, "style"),
    Output(IDs.Control.SUBSET_CLUSTERS, "options"),
    Output(IDs.Control.CLUSTER_FILTER, "options"),
    Output(IDs.Control.MARKER_GROUP1, "options"),
    Output(IDs.Control.MARKER_GROUP2, "options"),
    Output(IDs.Control.GENE_INPUT, "valid"),
    Output(IDs.Control.GENE_INPUT, "invalid"),
    Output(IDs.Control.GENE1_INPUT, "valid"),
    Output(IDs.Control.GENE1_INPUT, "invalid"),
    Output(IDs.Control.GENE2_INPUT, "valid"),
    Output(IDs.Control.GENE2_INPUT, "invalid"),
    Output(IDs.Control.DATASET_SELECT, "value"),
    Output(IDs.Control.OPTIONS_CHECKLIST, "value"),
    *[Output(cid, "value") for cid, _ in SYNCED_CONTROLS],
]

# Read alongside the event so unchanged controls are left alone
RENDER_STATES = [State(IDs.Control.NOTICES, "children")]

NO_RENDER = (no_update,) * len(RENDER_OUTPUTS)


def render_outputs(
    ctx: AppConfig,
    machine: SessionStateMachine,
    existing_notices: Optional[List[Any]],
    dataset_value: Optional[str],
    options_value: Optional[List[str]],
    client_values: List[Any],
) -> Tuple[Any, ...]:
    """
    Project the session onto every output in RENDER_OUTPUTS.

    ``client_values`` are the current values of the SYNCED_CONTROLS, in order.
    A control is only written when the session disagrees with it.
    """
    snapshot = machine.snapshot()
    pending = machine.pending_fields()
    drained = machine.drain_notices()
    status = status_text(machine)
    expr_fig, corr_fig, quality_fig = render_views(ctx, snapshot)

    inputs = snapshot.inputs
    columns, records = marker_table_records(snapshot.marker_table)

    subset_options = [{"label": c, "value": c} for c in snapshot.subset_choices]
    filter_options = [{"label": c, "value": c} for c in snapshot.cluster_choices]
    group2_options = [{"label": g, "value": g} for g in snapshot.marker_groups()]

    ready = snapshot.status is DatasetStatus.READY
    server_dataset = inputs.dataset_label or NO_DATASET
    server_options = [key for key, field in OPTION_FIELDS.items() if getattr(inputs, field)]

    synced = [
        sync_value(field, getattr(inputs, field), client, pending)
        for (_, field), client in zip(SYNCED_CONTROLS, client_values)
    ]

    return (
        expr_fig,
        corr_fig,
        quality_fig,
        columns,
        records,
        snapshot.info_text,
        SHOWN if ready else HIDDEN,
        status,
        notice_alerts(drained, existing_notices),
        SHOWN if inputs.subset_enabled else HIDDEN,
        SHOWN if snapshot.subset_resolution_visible else HIDDEN,
        subset_options,
        filter_options,
        filter_options,
        group2_options,
        *validity_props(snapshot.gene),
        *validity_props(snapshot.gene1),
        *validity_props(snapshot.gene2),
        server_dataset if server_dataset != dataset_value else no_update,
        server_options if sorted(server_options) != sorted(options_value or []) else no_update,
        *synced,
    )
