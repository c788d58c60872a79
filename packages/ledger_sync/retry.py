"""Bounded retry with exponential backoff for remote-store calls.

Only rate-limit failures are retried. Everything else is surfaced to the
caller on the first attempt.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .config import EngineSettings
from .errors import SyncCancelled, TransientRemoteError
from .logging_setup import get_logger

_logger = get_logger("ledger_sync.retry")


def is_quota_error(exc: BaseException) -> bool:
    """Return True only for rate-limit (HTTP 429) failures."""

    if isinstance(exc, TransientRemoteError):
        return True
    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and sc == 429


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and backoff shape.

    ``max_attempts`` counts the first call. The delay before retry ``n``
    (0-based) is ``base_delay * 2**n + uniform(0, max_jitter)`` seconds.
    """

    max_attempts: int = 4
    base_delay: float = 0.5
    max_jitter: float = 0.25
    is_retryable: Callable[[BaseException], bool] = is_quota_error
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_ms / 1000.0,
            max_jitter=settings.retry_max_jitter_ms / 1000.0,
        )

    def backoff(self, attempt: int) -> float:
        jitter = random.uniform(0.0, self.max_jitter) if self.max_jitter > 0 else 0.0
        return self.base_delay * (2**attempt) + jitter

    def call[T](
        self,
        fn: Callable[[], T],
        *,
        label: str = "call",
        deadline: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> T:
        """Run ``fn`` until it succeeds or the attempt budget is spent.

        ``deadline`` is an absolute value of ``clock()``. When the next wait
        would cross it, or ``cancel_event`` is set, :class:`SyncCancelled`
        is raised instead of sleeping.
        """

        attempt = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise SyncCancelled(f"{label} cancelled")
            try:
                return fn()
            except Exception as e:
                if attempt + 1 >= self.max_attempts or not self.is_retryable(e):
                    _logger.error(
                        "retry:gave_up label=%s attempts=%d error=%s",
                        label,
                        attempt + 1,
                        e,
                    )
                    raise
                delay = self.backoff(attempt)
                if deadline is not None and self.clock() + delay > deadline:
                    raise SyncCancelled(
                        f"{label} deadline exceeded after {attempt + 1} attempt(s)"
                    ) from e
                _logger.warning(
                    "retry:backoff label=%s attempt=%d delay_ms=%.0f error=%s",
                    label,
                    attempt + 1,
                    delay * 1000.0,
                    e,
                )
                if cancel_event is not None:
                    if cancel_event.wait(delay):
                        raise SyncCancelled(f"{label} cancelled") from e
                else:
                    self.sleep(delay)
                attempt += 1


__all__ = ["is_quota_error", "RetryPolicy"]
