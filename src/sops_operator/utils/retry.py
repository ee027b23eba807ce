"""Bounded retry for optimistic-concurrency conflicts."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from kubernetes.client.exceptions import ApiException

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff parameters.

    The defaults give four attempts spaced 10ms, 50ms and 250ms apart,
    each stretched by up to 10% jitter.
    """

    steps: int = 4
    duration: float = 0.01
    factor: float = 5.0
    jitter: float = 0.1

    def delays(self) -> list[float]:
        delays = []
        duration = self.duration
        for _ in range(self.steps - 1):
            delays.append(duration + duration * self.jitter * random.random())
            duration *= self.factor
        return delays


DEFAULT_BACKOFF = Backoff()


def is_conflict(e: Exception) -> bool:
    return isinstance(e, ApiException) and e.status == 409


def retry_on_conflict(
    fn: Callable[[], _T],
    backoff: Backoff = DEFAULT_BACKOFF,
    sleep: Callable[[float], None] = time.sleep,
) -> _T:
    """Run a read-modify-write function, retrying it on HTTP 409 conflicts.

    Args:
        fn: Function that re-reads the object, merges and writes it
        backoff: Retry budget and spacing
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever ``fn`` returns

    Raises:
        ApiException: The last conflict once the budget is exhausted, or
            any non-conflict error immediately
    """
    delays = backoff.delays()
    attempt = 0
    while True:
        try:
            return fn()
        except ApiException as e:
            if not is_conflict(e) or attempt >= len(delays):
                raise
            logger.debug(f"Conflict on attempt {attempt + 1}, retrying in {delays[attempt]:.3f}s")
            sleep(delays[attempt])
            attempt += 1
