from .callbacks_events import register_event_callbacks
from .callbacks_io import register_io_callbacks

__all__ = [
    "register_event_callbacks",
    "register_io_callbacks",
]
