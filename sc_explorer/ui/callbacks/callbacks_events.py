from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from urllib.parse import parse_qs

import dash
from dash import Input, Output, State, no_update

from sc_explorer.core.session import SessionStateMachine
from sc_explorer.ui.callbacks.callbacks_render import (
    NO_RENDER,
    RENDER_OUTPUTS,
    RENDER_STATES,
    SYNCED_CONTROLS,
    render_outputs,
)
from sc_explorer.ui.ids import IDs, OPTION_FIELDS

if TYPE_CHECKING:
    from sc_explorer.ui.config import AppConfig

logger = logging.getLogger(__name__)

# Control id -> session input, for controls whose 'value' maps onto one field
FIELD_BY_CONTROL: Dict[str, str] = dict(SYNCED_CONTROLS)


def deep_link_params(search: Optional[str]) -> Dict[str, List[str]]:
    """'?dataset=PBMC' -> {'dataset': ['PBMC']}"""
    if not search:
        return {}
    return parse_qs(search.lstrip("?"))


def options_to_inputs(options: Optional[List[str]]) -> Dict[str, bool]:
    selected = set(options or [])
    return {field: key in selected for key, field in OPTION_FIELDS.items()}


def dispatch_event(
    machine: SessionStateMachine,
    trigger: Optional[str],
    value: Any,
) -> None:
    """Route one UI event to the session: immediate inputs, debounced inputs or a timer tick."""
    if trigger is None or trigger == IDs.Control.URL:
        machine.apply_deep_link(deep_link_params(value))
    elif trigger == IDs.Control.DATASET_SELECT:
        machine.select_dataset(value)
    elif trigger == IDs.Control.OPTIONS_CHECKLIST:
        machine.set_inputs(**options_to_inputs(value))
    elif trigger == IDs.Store.MARKER_PICK:
        if value:
            machine.set_inputs(gene_query=value)
    elif trigger == IDs.Control.TICK:
        machine.tick()
    elif trigger in FIELD_BY_CONTROL:
        machine.submit(FIELD_BY_CONTROL[trigger], value)
    else:
        logger.warning("Unhandled UI event", extra={"trigger": trigger})


def register_event_callbacks(app: dash.Dash, ctx: AppConfig) -> None:
    control_ids = list(FIELD_BY_CONTROL)

    # ---------------------------------------------------------
    # Every user event -> session -> page, in one round trip.
    # Controls are both inputs and outputs here; Dash only allows that
    # within a single callback.
    # ---------------------------------------------------------
    @app.callback(
        Output(IDs.Store.REVISION, "data"),
        *RENDER_OUTPUTS,
        Input(IDs.Control.URL, "search"),
        Input(IDs.Control.DATASET_SELECT, "value"),
        Input(IDs.Control.OPTIONS_CHECKLIST, "value"),
        Input(IDs.Control.TICK, "n_intervals"),
        Input(IDs.Store.MARKER_PICK, "data"),
        *[Input(cid, "value") for cid in control_ids],
        State(IDs.Store.SESSION_ID, "data"),
        State(IDs.Store.REVISION, "data"),
        *RENDER_STATES,
    )
    def sync_session(search, dataset_label, options, _n_intervals, marker_pick, *rest):
        control_values = list(rest[:len(control_ids)])
        session_id, revision, notices = rest[len(control_ids):]
        if not session_id:
            return (no_update, *NO_RENDER)

        trigger = dash.ctx.triggered_id
        values = {
            IDs.Control.URL: search,
            IDs.Control.DATASET_SELECT: dataset_label,
            IDs.Control.OPTIONS_CHECKLIST: options,
            IDs.Control.TICK: None,
            IDs.Store.MARKER_PICK: marker_pick,
            **dict(zip(control_ids, control_values)),
        }

        try:
            with ctx.sessions.use(session_id) as machine:
                dispatch_event(machine, trigger, values.get(trigger, search))
                if trigger is not None and machine.revision == revision:
                    return (no_update, *NO_RENDER)
                rendered = render_outputs(
                    ctx, machine, notices, dataset_label, options, control_values
                )
                new_revision = machine.revision
        except Exception:
            logger.exception(
                "Error while handling UI event",
                extra={"session_id": session_id, "trigger": trigger},
            )
            return (no_update, *NO_RENDER)

        return (new_revision, *rendered)
