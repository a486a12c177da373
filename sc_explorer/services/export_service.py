from __future__ import annotations

import logging
import re

import plotly.graph_objs as go

from sc_explorer.core.state import SessionSnapshot
from sc_explorer.core.view_registry import ViewRegistry

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "pdf"
SUPPORTED_FORMATS = ("pdf", "png", "svg")

# Export canvas in px (square, like the on-screen combined plot)
EXPORT_SIZE = 900

_UNSAFE = re.compile(r"[^\w.\-]+")


def _safe(part: str) -> str:
    return _UNSAFE.sub("_", part).strip("_")


def image_filename(snapshot: SessionSnapshot, ext: str = DEFAULT_FORMAT) -> str:
    """'{dataset}_{gene}.{ext}', or '{dataset}.{ext}' when no valid gene is selected."""
    name = _safe(snapshot.dataset_name) or "dataset"
    if snapshot.gene.is_valid:
        return f"{name}_{_safe(snapshot.gene.symbol)}.{ext}"
    return f"{name}.{ext}"


class ExportService:
    """
    Renders the currently displayed combined plot (embedding + expression
    overlay + violin) to an image file.
    Stateless: the figure is rebuilt from the snapshot on every request.
    """

    def __init__(self, view_registry: ViewRegistry, view_id: str = "expression", scale_factor: float = 0.7) -> None:
        self._view_registry = view_registry
        self._view_id = view_id
        self._scale_factor = scale_factor

    def render_figure(self, snapshot: SessionSnapshot) -> go.Figure:
        view = self._view_registry.create(
            self._view_id,
            snapshot.subset or snapshot.dataset,
            scale_factor=self._scale_factor,
        )
        return view.render(snapshot)

    def render_image(self, snapshot: SessionSnapshot, fmt: str = DEFAULT_FORMAT) -> tuple[str, bytes]:
        """
        :return: (filename, image bytes)
        :raises ValueError: for an unsupported format or when no dataset is selected
        """
        fmt = fmt.lower()
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported image format '{fmt}'; expected one of {SUPPORTED_FORMATS}")
        if snapshot.dataset is None:
            raise ValueError("No dataset selected")

        figure = self.render_figure(snapshot)

        # Requires kaleido
        image = figure.to_image(format=fmt, width=EXPORT_SIZE, height=EXPORT_SIZE)
        filename = image_filename(snapshot, fmt)
        logger.info(
            "Figure exported",
            extra={"dataset": snapshot.dataset_name, "file_name": filename, "bytes": len(image)},
        )
        return filename, image
