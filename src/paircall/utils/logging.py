"""Logging setup shared by the coordinator and client entry points."""

import json
import logging
from typing import Any

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", fmt: str = LOG_FORMAT) -> None:
    """Configure root logging.

    Args:
        level: Logging level name (case-insensitive)
        fmt: Log record format
    """
    logging.basicConfig(level=getattr(logging, level.upper()), format=fmt)

    # websockets logs every handshake failure at INFO
    if logging.getLogger().level > logging.DEBUG:
        logging.getLogger("websockets").setLevel(logging.WARNING)


def log_event(logger: logging.Logger, event_type: str, data: dict[str, Any]) -> None:
    """Log a structured event as a single JSON line.

    Args:
        logger: Logger to emit on
        event_type: Event type identifier
        data: Event data dictionary
    """
    logger.info(json.dumps({"event": event_type, **data}, default=str))
