from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sc_explorer.config.model import GlobalConfig
from sc_explorer.core.view_registry import ViewRegistry
from sc_explorer.services.dataset_service import DatasetCatalog
from sc_explorer.services.export_service import ExportService
from sc_explorer.services.session_service import SessionService


@dataclass
class AppConfig:
    """
    Shared, read-only wiring for the Dash app. Passed into layout and callback
    registration functions instead of using module-level globals.
    """

    config_root: Path
    global_config: GlobalConfig
    catalog: DatasetCatalog

    sessions: Optional[SessionService] = None
    registry: Optional[ViewRegistry] = None
    export_service: Optional[ExportService] = None

    def validate(self) -> None:
        """Ensure all required services are attached before the app starts."""
        if self.sessions is None:
            raise RuntimeError("AppConfig.sessions must be initialized.")
        if self.registry is None:
            raise RuntimeError("AppConfig.registry must be initialized.")
        if self.export_service is None:
            raise RuntimeError("AppConfig.export_service must be initialized.")
