"""Logging setup for the spatepi package.

Library modules only ever call ``logging.getLogger(__name__)``. Scripts and
the CLI call ``configure_logging()`` once; it attaches a handler to the
``spatepi`` logger, never to the root logger, so host applications keep
control of their own logging.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

DEFAULT_FMT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_DATEFMT = "%H:%M:%S"
PACKAGE_LOGGER = "spatepi"


def configure_logging(
    level: Optional[Union[str, int]] = None,
    log_file: Optional[str] = None,
    *,
    fmt: str = DEFAULT_FMT,
    datefmt: str = DEFAULT_DATEFMT,
) -> logging.Logger:
    """Configure the ``spatepi`` logger.

    Args:
        level: Logging level name or number. Defaults to the
            SPATEPI_LOG_LEVEL environment variable, else "INFO".
        log_file: Optional path; when given, logs are also written there.
        fmt: Log record format.
        datefmt: Timestamp format.

    Returns:
        The configured package logger.
    """
    if level is None:
        level = os.environ.get("SPATEPI_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level '{level}'")
        level = numeric

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    # Reconfiguring replaces our handlers instead of stacking duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt, datefmt=datefmt)
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
