"""
Top-level package for the single-cell cluster explorer.

This package exposes the reactive session core, the analysis backend and the
Dash UI adapters. Most code should import from submodules such as:
    sc_explorer.core
    sc_explorer.analysis
    sc_explorer.views
    sc_explorer.ui
"""

__all__: list[str] = []
