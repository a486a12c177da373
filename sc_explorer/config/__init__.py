"""
Config package for sc_explorer.

Responsible for:
- config models (GlobalConfig, DatasetEntry, AnalysisSettings, DebounceSettings)
- config I/O helpers (load_global_config / load_catalog)
"""

from .model import AnalysisSettings, DatasetEntry, DebounceSettings, GlobalConfig
from .loader import load_catalog, load_global_config

__all__ = [
    "AnalysisSettings",
    "DatasetEntry",
    "DebounceSettings",
    "GlobalConfig",
    "load_catalog",
    "load_global_config",
]
