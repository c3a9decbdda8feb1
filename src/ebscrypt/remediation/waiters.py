"""Polling primitive shared by every state-transition wait in the workflow."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from ebscrypt.errors import WaitTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def wait_for(
    fetch: Callable[[], T],
    predicate: Callable[[T], bool],
    *,
    interval: float,
    timeout: float | None = None,
    max_interval: float | None = None,
    backoff: float = 1.0,
    description: str = "resource state",
) -> T:
    """
    Call fetch() until predicate(result) holds and return that result.

    Sleeps `interval` between checks, multiplied by `backoff` after each miss
    (capped at `max_interval`). With `timeout` set, raises WaitTimeoutError
    once the ceiling is reached; without it the loop only ends on success or
    when fetch/predicate raises, which propagates unchanged.
    """
    start = time.monotonic()
    deadline = start + timeout if timeout is not None else None
    delay = interval
    attempts = 0

    while True:
        state = fetch()
        attempts += 1
        if predicate(state):
            logger.debug(
                "Wait satisfied: %s",
                description,
                extra={"attempts": attempts, "elapsed_seconds": time.monotonic() - start},
            )
            return state

        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WaitTimeoutError(description, timeout)
            time.sleep(min(delay, remaining))
        else:
            time.sleep(delay)

        delay *= backoff
        if max_interval is not None:
            delay = min(delay, max_interval)
