"""Logging setup shared by the HTTP app and the Socket.IO server."""

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure the root logger once; later calls only adjust the level."""
    root = logging.getLogger()
    level = getattr(logging, log_level.upper(), logging.INFO)
    root.setLevel(level)
    if getattr(root, "_community_alert_configured", False):
        return

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    # Engine.IO polling is chatty below WARNING
    logging.getLogger("engineio").setLevel(logging.WARNING)
    root._community_alert_configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
