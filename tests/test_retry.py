"""
Tests for retry logic.
"""

import pytest
from contactcore.errors import StoreError
from contactcore.retry import (
    exponential_backoff,
    is_transient_error,
    RetryError,
)


class TestExponentialBackoff:
    """Test exponential backoff decorator."""

    def test_success_on_first_try(self):
        """Function that succeeds immediately should not retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.1)
        def succeeds():
            call_count[0] += 1
            return "success"

        result = succeeds()
        assert result == "success"
        assert call_count[0] == 1

    def test_retry_then_succeed(self):
        """Function that fails then succeeds should retry."""
        call_count = [0]

        @exponential_backoff(max_retries=3, base_delay=0.01)
        def fails_twice():
            call_count[0] += 1
            if call_count[0] < 3:
                raise ConnectionError("Temporary failure")
            return "success"

        result = fails_twice()
        assert result == "success"
        assert call_count[0] == 3

    def test_all_retries_exhausted(self):
        """Should raise RetryError after all attempts fail."""
        call_count = [0]

        @exponential_backoff(max_retries=2, base_delay=0.01)
        def always_fails():
            call_count[0] += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError):
            always_fails()

        assert call_count[0] == 3  # Initial + 2 retries

    def test_only_catches_specified_exceptions(self):
        """Should only retry on specified exception types."""
        call_count = [0]

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exceptions=(ConnectionError,)
        )
        def raises_value_error():
            call_count[0] += 1
            raise ValueError("Not retryable")

        # Should not retry, raises original exception
        with pytest.raises(ValueError):
            raises_value_error()

        assert call_count[0] == 1  # No retries

    def test_exponential_delay(self):
        """Delay should increase exponentially."""
        delays = []

        def on_retry_callback(attempt, exception, delay):
            delays.append(delay)

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exponential_base=2.0,
            on_retry=on_retry_callback
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        # Check delays are increasing
        assert len(delays) == 3
        assert delays[0] == 0.01
        assert delays[1] == 0.02
        assert delays[2] == 0.04

    def test_max_delay_cap(self):
        """Delay should not exceed max_delay."""
        delays = []

        def on_retry_callback(attempt, exception, delay):
            delays.append(delay)

        @exponential_backoff(
            max_retries=5,
            base_delay=0.01,
            max_delay=0.02,
            exponential_base=3.0,
            on_retry=on_retry_callback
        )
        def always_fails():
            raise ConnectionError("Test")

        with pytest.raises(RetryError):
            always_fails()

        # All delays should be capped at max_delay
        assert all(d <= 0.02 for d in delays)


class TestRetryIf:
    """Predicate-gated retries."""

    def test_rejected_error_reraised_unchanged(self):
        """An error the predicate rejects is raised on the first attempt."""
        call_count = [0]

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exceptions=(StoreError,),
            retry_if=is_transient_error,
        )
        def permanent():
            call_count[0] += 1
            raise StoreError("no such table: contacts")

        with pytest.raises(StoreError, match="no such table"):
            permanent()

        assert call_count[0] == 1

    def test_accepted_error_retried(self):
        """An error the predicate accepts is retried."""
        call_count = [0]

        @exponential_backoff(
            max_retries=3,
            base_delay=0.01,
            exceptions=(StoreError,),
            retry_if=is_transient_error,
        )
        def locked_once():
            call_count[0] += 1
            if call_count[0] == 1:
                raise StoreError("database is locked")
            return "saved"

        assert locked_once() == "saved"
        assert call_count[0] == 2

    def test_retry_error_is_store_error(self):
        """Exhausted retries surface as a StoreError."""

        @exponential_backoff(max_retries=1, base_delay=0.01, exceptions=(StoreError,))
        def always_locked():
            raise StoreError("database is locked")

        with pytest.raises(StoreError):
            always_locked()


class TestTransientErrorDetection:
    """Test transient error detection utilities."""

    def test_detects_lock_contention(self):
        """SQLite lock errors are transient."""
        assert is_transient_error(Exception("(sqlite3.OperationalError) database is locked"))
        assert is_transient_error(Exception("database table is locked"))

    def test_detects_timeout_errors(self):
        """Should detect timeout errors as transient."""
        error = ConnectionError("Connection timeout")
        assert is_transient_error(error)

    def test_detects_connection_errors(self):
        """Should detect connection errors as transient."""
        error = Exception("Connection reset by peer")
        assert is_transient_error(error)

    def test_detects_serialization_failures(self):
        """Should detect serialization and deadlock failures as transient."""
        assert is_transient_error(Exception("could not serialize access due to concurrent update"))
        assert is_transient_error(Exception("deadlock detected"))

    def test_non_transient_errors(self):
        """Should not detect permanent errors as transient."""
        errors = [
            Exception("no such column: contacts.version"),
            ValueError("Invalid data"),
            Exception("UNIQUE constraint failed: contacts.id"),
        ]
        for error in errors:
            assert not is_transient_error(error)
