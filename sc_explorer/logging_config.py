from __future__ import annotations

import logging
import os
from typing import Optional

from pythonjsonlogger import jsonlogger

JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Third-party loggers that flood INFO during clustering and t-SNE
NOISY_LOGGERS = ("numba", "h5py", "matplotlib", "PIL", "kaleido", "werkzeug")


def build_formatter(mode: str) -> logging.Formatter:
    if mode == "plain":
        return logging.Formatter(PLAIN_FORMAT)
    return jsonlogger.JsonFormatter(JSON_FORMAT)


def configure_logging(
        level: Optional[int] = None,
        force_format: Optional[str] = None,
) -> None:
    """
    Set up the root logger once per process.

    Output format, first match wins:
        1) ``force_format`` ("json" or "plain")
        2) env var SC_EXPLORER_LOG_FORMAT
        3) json

    ``level`` falls back to env var SC_EXPLORER_LOG_LEVEL, then INFO.
    """
    mode = (force_format or os.getenv("SC_EXPLORER_LOG_FORMAT", "json")).lower()

    if level is None:
        level_name = os.getenv("SC_EXPLORER_LOG_LEVEL", "INFO").upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(mode))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
