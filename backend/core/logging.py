"""Logging setup shared by the API and the scripts."""
from __future__ import annotations

import logging
import os


def configure_logging(level: str | None = None) -> None:
    """Initialise root logging with a shared format.

    The level comes from the argument or the ``LOG_LEVEL`` environment
    variable and defaults to ``INFO``.
    """

    resolved_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
