"""
Numerical analysis layer: the backend capability interface (clustering, t-SNE,
ROC marker test), its scanpy implementation and the marker-gene finder.
"""

from .backend import AnalysisBackend, ScanpyBackend
from .exceptions import AnalysisError
from .markers import MARKER_COLUMNS, MarkerResult, empty_marker_table, find_markers

__all__ = [
    "AnalysisBackend",
    "AnalysisError",
    "MARKER_COLUMNS",
    "MarkerResult",
    "ScanpyBackend",
    "empty_marker_table",
    "find_markers",
]
