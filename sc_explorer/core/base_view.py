from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import plotly.graph_objs as go

from .dataset import Dataset
from .state import SessionSnapshot

# Nominal plot width in px; figure heights are this times the configured scale factor
PLOT_WIDTH = 1000


class BaseView(ABC):
    """
    Abstract base class for all plot views.

    Defines the contract that every view in the app must follow
    - expose an 'id' - used internally
    - expose a 'label' - used for UI/human-readable applications
    - implement 'compute_data' - read what the view needs from a SessionSnapshot
    - implement 'render_figure' - used to render the figure using Plotly

    Views are pure projections: they never modify the snapshot or its datasets.
    """

    id: str = None
    label: str = None
    empty_message: str = ""

    def __init__(self, dataset: Optional[Dataset], scale_factor: float = 0.7):
        self.dataset = dataset
        self.scale_factor = scale_factor

    @abstractmethod
    def compute_data(self, snapshot: SessionSnapshot) -> Any:
        """
        Compute the data given the current session snapshot
        :param snapshot: consistent read-only view of the session
        :return: data for render_figure, or None when there is nothing to draw
        """
        raise NotImplementedError()

    @abstractmethod
    def render_figure(self, data: Any, snapshot: SessionSnapshot) -> go.Figure:
        """
        Render the figure given the computed data
        :param data: the data provided by {@link compute_data()}
        :param snapshot: the snapshot the data was computed from
        :return: the Plotly figure for these parameters
        """
        raise NotImplementedError()

    # ------------------------------------------------------------------
    # Common helpers for all views
    # ------------------------------------------------------------------
    def render(self, snapshot: SessionSnapshot) -> go.Figure:
        data = self.compute_data(snapshot)
        if data is None:
            return self.empty_figure(self.empty_message)
        return self.render_figure(data, snapshot)

    def plot_height(self, offset: float = 0.0) -> int:
        return int(PLOT_WIDTH * max(self.scale_factor + offset, 0.1))

    @staticmethod
    def empty_figure(message: str) -> go.Figure:
        """
        Standardised 'no data' figure used by all views.
        """
        fig = go.Figure()
        fig.update_layout(
            title=message,
            xaxis={"visible": False},
            yaxis={"visible": False},
            template="simple_white",
        )
        return fig
