"""Bounded retry policy with a cancellation check.

Replaces "retry until succeeded" loops with an explicit object the
caller passes in.  Waits are blocking (``time.sleep`` by default) but are
sliced so a cancellation signal set during a wait is noticed promptly.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Attempts / delay used for runtime service (re)starts.
DEFAULT_RESTART_ATTEMPTS = 3
DEFAULT_RESTART_DELAY = 30.0


class RetryExhausted(RuntimeError):
    """All attempts failed; ``__cause__`` holds the last failure."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class RetryCancelled(RuntimeError):
    """A cancellation signal arrived before the next attempt."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


@dataclass
class RetryPolicy:
    """``max_attempts`` tries with a fixed ``delay`` between them.

    ``cancel`` is checked before every attempt and during every wait.
    ``_sleep_fn`` exists for test injection (avoids real sleeps).
    """

    max_attempts: int = DEFAULT_RESTART_ATTEMPTS
    delay: float = DEFAULT_RESTART_DELAY
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    cancel: Optional[threading.Event] = None
    _sleep_fn: Optional[Callable[[float], Any]] = field(default=None, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def _wait(self) -> None:
        if self._sleep_fn is not None:
            self._sleep_fn(self.delay)
            return
        if self.cancel is not None:
            # Event.wait returns early when the event is set.
            self.cancel.wait(self.delay)
            return
        time.sleep(self.delay)

    def call(
        self,
        fn: Callable[[], T],
        *,
        description: str = "operation",
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        """Invoke *fn* until it returns without raising one of ``retry_on``.

        Raises :class:`RetryExhausted` after ``max_attempts`` failures and
        :class:`RetryCancelled` if ``cancel`` is set before an attempt.
        """
        last_exc: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            if self.cancelled:
                raise RetryCancelled(
                    f"{description} cancelled after {attempt - 1} attempt(s)",
                    attempts=attempt - 1,
                ) from last_exc
            try:
                return fn()
            except self.retry_on as exc:
                last_exc = exc
                logger.warning(
                    "%s failed (attempt %d/%d): %s",
                    description, attempt, self.max_attempts, exc,
                )
                if on_retry is not None:
                    on_retry(attempt, exc)
                if attempt == self.max_attempts:
                    break
                self._wait()
        raise RetryExhausted(
            f"{description} failed after {self.max_attempts} attempt(s)",
            attempts=self.max_attempts,
        ) from last_exc
