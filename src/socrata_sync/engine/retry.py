# src/socrata_sync/engine/retry.py
"""RetryManager: whole-chunk retry with tenacity.

A chunk whose upstream page is cut short is retried from the start (fetch,
transcode, stage, load, clean up). Only errors accepted by ``is_retryable``
are retried; anything else propagates on the first attempt.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

if TYPE_CHECKING:
    from socrata_sync.core.config import RetrySettings

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


@dataclass(frozen=True)
class RetryConfig:
    """Retry behavior.

    max_attempts is the TOTAL number of tries: 3 means try, retry, retry.
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    jitter: float = 1.0  # seconds
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays must be >= 0")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        """Single attempt."""
        return cls(max_attempts=1)

    @classmethod
    def immediate(cls, max_attempts: int = 3) -> "RetryConfig":
        """Retries without waiting between attempts."""
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=0.0)

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            exponential_base=settings.exponential_base,
        )


class RetryManager:
    """Re-runs an operation while it fails with a retryable error.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3))

        result = manager.execute_with_retry(
            lambda: copy_chunk(cursor),
            is_retryable=lambda e: isinstance(e, TransientTransportError),
            on_retry=lambda attempt, error: log.warning("retrying", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    def _wait(self) -> wait_exponential_jitter:
        return wait_exponential_jitter(
            multiplier=self._config.base_delay,
            max=self._config.max_delay,
            exp_base=self._config.exponential_base,
            jitter=self._config.jitter,
        )

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Call ``operation`` until it returns, up to ``max_attempts`` times.

        ``on_retry(attempt, error)`` runs after every retryable failure,
        including the last one.

        Raises:
            MaxRetriesExceeded: Every attempt failed with a retryable error.
            Exception: The first non-retryable error, unchanged.
        """

        def after_failure(state: RetryCallState) -> None:
            if on_retry is not None and state.outcome is not None:
                error = state.outcome.exception()
                if error is not None:
                    on_retry(state.attempt_number, error)

        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=self._wait(),
            retry=retry_if_exception(is_retryable),
            after=after_failure,
        )
        try:
            return retrying(operation)
        except RetryError as e:
            last = e.last_attempt
            error = last.exception()
            if error is None:  # pragma: no cover
                raise
            raise MaxRetriesExceeded(last.attempt_number, error) from error
