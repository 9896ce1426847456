"""Process-wide logging setup for the booking service."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from portflow.utils.config import get_settings


PACKAGE_LOGGER = "portflow"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Attach a single stdout handler the first time it is called.

    ``LOG_LEVEL`` applies to the ``portflow`` logger tree; third-party
    libraries stay at WARNING.
    """

    global _configured
    if _configured:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT, stream=sys.stdout)
    logging.getLogger(PACKAGE_LOGGER).setLevel(resolved_level)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``, configuring the process on first use."""
    configure_logging()
    return logging.getLogger(name)
