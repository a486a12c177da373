import logging
import os
import socket

# Numba threading layer has to be chosen before scanpy is imported
os.environ.setdefault("NUMBA_THREADING_LAYER", "workqueue")

from sc_explorer.logging_config import configure_logging
from sc_explorer.ui.dash_app import create_dash_app

DEBUG = os.getenv("DEBUG", "0") == "1"

configure_logging(level=logging.DEBUG if DEBUG else None)

logger = logging.getLogger(__name__)

app = create_dash_app(os.getenv("SC_EXPLORER_CONFIG_ROOT", "config"))
server = app.server


def port_is_free(port: int, host: str = "localhost") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        return sock.connect_ex((host, port)) != 0


def pick_port(preferred: int, attempts: int = 100) -> int:
    for port in range(preferred, preferred + attempts):
        if port_is_free(port):
            return port
    return preferred


if __name__ == "__main__":
    preferred_port = int(os.getenv("PORT", "8051"))
    port = pick_port(preferred_port)

    if port != preferred_port:
        logger.warning(
            "Preferred port taken",
            extra={"preferred_port": preferred_port, "port": port},
        )

    logger.info("Starting explorer", extra={"port": port, "debug": DEBUG})
    app.run(host="0.0.0.0", port=port, debug=DEBUG)
