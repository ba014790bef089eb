"""Utility functions for SpatEpi.

General-purpose helpers: hashing, provenance, timing.
"""

from __future__ import annotations

import hashlib
import logging
import subprocess
import time
from contextlib import contextmanager
from typing import Dict, Generator, Optional

logger = logging.getLogger(__name__)


def config_hash(text: str) -> str:
    """SHA-256 of a serialised config (for tagging run summaries)."""
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def get_git_hash() -> str:
    """Return the current git commit hash, or 'unknown' if not in a repo."""
    try:
        result = subprocess.run(
            ['git', 'rev-parse', 'HEAD'],
            capture_output=True, text=True, timeout=5,
        )
        return result.stdout.strip() if result.returncode == 0 else 'unknown'
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return 'unknown'


@contextmanager
def timer(
    label: str = "",
    timings: Optional[Dict[str, float]] = None,
) -> Generator[None, None, None]:
    """Context-manager timer.

    Logs elapsed time at DEBUG on exit and, when ``timings`` is given,
    stores it under ``label``.
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if timings is not None:
            timings[label] = elapsed
        logger.debug("[%s] %.3fs", label or "elapsed", elapsed)
