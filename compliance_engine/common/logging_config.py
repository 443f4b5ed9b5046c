"""Process-wide logging setup (stdlib ``logging``)."""

from __future__ import annotations

import logging

from compliance_engine.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s — %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once; safe to call repeatedly."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
