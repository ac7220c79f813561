# tests/engine/test_retry.py
"""Tests for RetryManager."""

import warnings

import pytest

from socrata_sync.contracts.errors import TransientTransportError
from socrata_sync.core.config import RetrySettings
from socrata_sync.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager


class TestRetryConfig:
    def test_defaults(self) -> None:
        config = RetryConfig()

        assert config.max_attempts == 3
        assert config.base_delay == 1.0

    def test_from_settings(self) -> None:
        config = RetryConfig.from_settings(RetrySettings(max_attempts=5, initial_delay_seconds=0.5, jitter_seconds=0.0))

        assert config.max_attempts == 5
        assert config.base_delay == 0.5
        assert config.jitter == 0.0

    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)

    def test_no_retry(self) -> None:
        assert RetryConfig.no_retry().max_attempts == 1


class TestRetryManager:
    """Retry logic with tenacity."""

    def test_retry_on_retryable_error(self) -> None:
        manager = RetryManager(RetryConfig.immediate(3))
        call_count = 0

        def flaky_operation() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise TransientTransportError("cut short")
            return "success"

        result = manager.execute_with_retry(flaky_operation, is_retryable=lambda e: isinstance(e, TransientTransportError))

        assert result == "success"
        assert call_count == 3

    def test_no_retry_on_non_retryable(self) -> None:
        manager = RetryManager(RetryConfig.immediate(3))
        call_count = 0

        def failing_operation() -> None:
            nonlocal call_count
            call_count += 1
            raise TypeError("Not retryable")

        with pytest.raises(TypeError):
            manager.execute_with_retry(failing_operation, is_retryable=lambda e: isinstance(e, TransientTransportError))

        assert call_count == 1

    def test_max_attempts_exceeded(self) -> None:
        manager = RetryManager(RetryConfig.immediate(3))
        call_count = 0

        def always_fails() -> None:
            nonlocal call_count
            call_count += 1
            raise TransientTransportError(f"attempt {call_count}")

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            manager.execute_with_retry(always_fails, is_retryable=lambda e: isinstance(e, TransientTransportError))

        assert call_count == 3
        assert exc_info.value.attempts == 3
        assert str(exc_info.value.last_error) == "attempt 3"

    def test_on_retry_sees_every_failed_attempt(self) -> None:
        manager = RetryManager(RetryConfig.immediate(2))
        seen: list[tuple[int, str]] = []

        def always_fails() -> None:
            raise TransientTransportError("cut short")

        with pytest.raises(MaxRetriesExceeded):
            manager.execute_with_retry(
                always_fails,
                is_retryable=lambda e: isinstance(e, TransientTransportError),
                on_retry=lambda attempt, error: seen.append((attempt, str(error))),
            )

        assert seen == [(1, "cut short"), (2, "cut short")]

    def test_default_backoff_raises_no_warnings(self) -> None:
        manager = RetryManager(RetryConfig(base_delay=0.5, jitter=0.0))

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert manager.execute_with_retry(lambda: "ok", is_retryable=lambda e: True) == "ok"

    def test_last_error_is_the_cause(self) -> None:
        manager = RetryManager(RetryConfig.immediate(2))
        error = TransientTransportError("cut short")

        def always_fails() -> None:
            raise error

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            manager.execute_with_retry(always_fails, is_retryable=lambda e: True)

        assert exc_info.value.last_error is error
        assert exc_info.value.__cause__ is error
