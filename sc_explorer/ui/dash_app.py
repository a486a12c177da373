from __future__ import annotations

import logging
import os
from pathlib import Path

import dash_bootstrap_components as dbc
from dash import Dash

from .config import AppConfig
from sc_explorer.analysis.backend import ScanpyBackend
from sc_explorer.config.loader import load_catalog
from sc_explorer.core.genes import GeneResolver
from sc_explorer.core.view_registry import ViewRegistry
from sc_explorer.services.dataset_service import DatasetCatalog, DatasetStore
from sc_explorer.services.export_service import ExportService
from sc_explorer.services.session_service import DEFAULT_MAX_SESSIONS, SessionService
from sc_explorer.ui.callbacks import (
    register_event_callbacks,
    register_io_callbacks,
)
from sc_explorer.ui.layout.build_layout import build_layout

logger = logging.getLogger(__name__)


def _build_view_registry() -> ViewRegistry:
    from sc_explorer.views import (
        ClusterView,
        CorrelationView,
        ExpressionView,
        QualityView,
    )

    registry = ViewRegistry()
    registry.register(ClusterView)
    registry.register(ExpressionView)
    registry.register(CorrelationView)
    registry.register(QualityView)
    return registry


def create_dash_app(config_root: Path | str = Path("config")) -> Dash:
    config_root = Path(config_root)

    # 1) Load config (catalog only; datasets are read on selection)
    global_config, entries = load_catalog(config_root)
    catalog = DatasetCatalog(
        entries,
        fallback_resolution=global_config.default_resolution,
        bounds=global_config.analysis.resolution_bounds,
    )

    # 2) Shared, read-only services
    store = DatasetStore(catalog, global_config.data_root)
    resolver = GeneResolver.from_paths(global_config.alias_tables)
    backend = ScanpyBackend()
    registry = _build_view_registry()

    # 3) Per-session state lives in the SessionService
    sessions = SessionService(
        store,
        resolver,
        backend,
        settings=global_config.analysis,
        debounce=global_config.debounce,
        max_sessions=int(os.getenv("SC_EXPLORER_MAX_SESSIONS", DEFAULT_MAX_SESSIONS)),
    )
    export_service = ExportService(registry, scale_factor=global_config.scale_factor)

    # 4) App context
    ctx = AppConfig(
        config_root=config_root,
        global_config=global_config,
        catalog=catalog,
        sessions=sessions,
        registry=registry,
        export_service=export_service,
    )
    ctx.validate()

    app = Dash(
        __name__,
        external_stylesheets=[dbc.themes.FLATLY],
    )
    app.title = global_config.ui_title
    app.layout = build_layout(ctx)

    register_event_callbacks(app, ctx)
    register_io_callbacks(app, ctx)

    logger.info(
        "Dash app created",
        extra={"config_root": str(config_root), "n_datasets": len(catalog)},
    )
    return app
