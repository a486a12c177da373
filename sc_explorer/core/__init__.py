"""
Core domain layer: dataset abstraction, session inputs/snapshot types, gene
resolver, dependency graph, debouncer and progress reporting.

The session state machine lives in sc_explorer.core.session and is imported
from there (it depends on the analysis package).
"""

from .base_view import BaseView
from .dataset import Dataset, Species
from .debounce import Debouncer
from .genes import AliasTable, GeneResolver
from .graph import DependencyGraph
from .progress import ProgressEvent, ProgressReporter
from .state import DatasetStatus, Polarity, SessionInputs, SessionSnapshot
from .view_registry import ViewRegistry

__all__ = [
    "AliasTable",
    "BaseView",
    "Dataset",
    "DatasetStatus",
    "Debouncer",
    "DependencyGraph",
    "GeneResolver",
    "Polarity",
    "ProgressEvent",
    "ProgressReporter",
    "SessionInputs",
    "SessionSnapshot",
    "Species",
    "ViewRegistry",
]
