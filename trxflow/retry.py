"""Retrying of operations that may fail while a dependency starts up."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


def retry(
    func: Callable[[], T],
    attempts: int = 5,
    delay: float = 2.0,
    what: str = "connection",
) -> T:
    """Call ``func`` until it succeeds, at most ``attempts`` times.

    Waits ``delay`` seconds between failed attempts and re-raises the last
    error once every attempt has failed.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            result = func()
        except Exception as exc:
            if attempt == attempts:
                log.error("%s failed: %s", what, exc)
                raise
            log.warning(
                "%s not connected yet: %s (waiting for %s seconds)", what, exc, delay
            )
            time.sleep(delay)
        else:
            log.info("%s connected!", what)
            return result

    raise AssertionError("unreachable")