"""Logging setup for job and script entry points."""

from __future__ import annotations

import logging
import os
import sys


def configure_logging(level: str | None = None) -> None:
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))

    logger = logging.getLogger("catalog_sync")
    logger.setLevel(level_name)
    logger.handlers.clear()
    logger.addHandler(handler)
