from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, Type

from webaudit.domain.errors import TransientNetworkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attempted:
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    delays: Tuple[float, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RetryPolicy:
    """
    Exponential backoff: delay = base_delay * factor ** (attempt - 1).
    Only exceptions in `retry_on` are retried; a retry is skipped when its
    backoff would run past the deadline (a time.monotonic() value).
    The delays actually slept are reported on the returned Attempted.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = (TransientNetworkError,)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (self.factor ** (attempt - 1))

    def call(self, fn: Callable[[], Any], deadline: Optional[float] = None, label: str = "") -> Attempted:
        attempt = 0
        delays: List[float] = []
        while True:
            attempt += 1
            try:
                return Attempted(value=fn(), attempts=attempt, delays=tuple(delays))
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    return Attempted(error=e, attempts=attempt, delays=tuple(delays))
                delay = self.delay_for(attempt)
                if deadline is not None and self.clock() + delay >= deadline:
                    logger.info("%s: no time left to retry after attempt %d", label or "call", attempt)
                    return Attempted(error=e, attempts=attempt, delays=tuple(delays))
                logger.warning("%s: attempt %d failed (%s); retrying in %.1fs", label or "call", attempt, e, delay)
                self.sleep(delay)
                delays.append(delay)
            except Exception as e:
                return Attempted(error=e, attempts=attempt, delays=tuple(delays))
