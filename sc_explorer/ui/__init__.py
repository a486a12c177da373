"""
UI adapters for the explorer.

Currently provides a Dash-based web UI via create_dash_app(). The UI holds no
session state of its own; every callback goes through the SessionService.
"""

from .dash_app import create_dash_app

__all__ = ["create_dash_app"]
