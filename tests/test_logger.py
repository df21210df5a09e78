"""
Tests for logger functionality.
"""

import pytest
from datetime import datetime
from pathlib import Path
from contactcore.logger import StructuredLogger, get_logger, reset_logger


class TestStructuredLogger:
    """Test structured logging functionality."""

    def test_logger_creation(self, tmp_path):
        """Logger should be created with default settings."""
        logger = StructuredLogger(
            name="test",
            level="INFO",
            log_dir=tmp_path,
            enable_console=False,
        )

        assert logger.logger.name == "test"
        assert logger.metrics["merges_attempted"] == 0
        assert logger.metrics["scores_computed"] == 0

    def test_log_methods(self, tmp_path):
        """All log level methods should work."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        # Should not raise exceptions
        logger.debug("Debug message")
        logger.info("Info message")
        logger.warning("Warning message")
        logger.error("Error message")
        logger.critical("Critical message")

    def test_log_with_context(self, tmp_path):
        """Context is appended as JSON; non-JSON values are stringified."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.info("Merged duplicate group", group_id="phone-5551234567", at=datetime(2026, 1, 2))

        content = next(tmp_path.glob("*.log")).read_text()
        assert '| Context: {"group_id": "phone-5551234567", "at": "2026-01-02 00:00:00"}' in content

    def test_merge_metrics(self, tmp_path):
        """Merge metrics should be tracked correctly."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.record_merge_attempt()
        logger.record_merge_success(absorbed=2)
        logger.record_merge_attempt()
        logger.record_merge_failure("ConflictError")

        metrics = logger.get_metrics()

        assert metrics["merges_attempted"] == 2
        assert metrics["merges_succeeded"] == 1
        assert metrics["merges_failed"] == 1
        assert metrics["contacts_absorbed"] == 2
        assert metrics["errors_by_type"]["ConflictError"] == 1
        assert "score_success_rate" not in metrics

    def test_score_success_rate(self, tmp_path):
        """Success rate should be calculated correctly."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        # 3 scored, 2 successes = 66.7% success rate
        logger.record_score_success()
        logger.record_score_success()
        logger.record_score_failure("TimeoutError")

        metrics = logger.get_metrics()

        assert metrics["scores_computed"] == 2
        assert metrics["scores_failed"] == 1
        assert metrics["score_success_rate"] == pytest.approx(0.667, rel=0.01)
        assert metrics["errors_by_type"] == {"TimeoutError": 1}

    def test_get_metrics_returns_copy(self, tmp_path):
        """Mutating returned metrics must not touch the logger."""
        logger = StructuredLogger(name="test", log_dir=tmp_path, enable_console=False)
        logger.record_score_failure("StoreError")

        metrics = logger.get_metrics()
        metrics["errors_by_type"]["StoreError"] = 99

        assert logger.metrics["errors_by_type"]["StoreError"] == 1

    def test_metrics_summary(self, tmp_path):
        """Summary should list merges, scores and error types."""
        logger = StructuredLogger(name="test", log_dir=tmp_path, enable_console=False)
        logger.record_merge_attempt()
        logger.record_merge_success(absorbed=1)
        logger.record_score_success()
        logger.record_score_failure("RuntimeError")

        logger.log_metrics_summary()

        content = next(tmp_path.glob("*.log")).read_text()
        assert "Merges: 1/1 succeeded, 1 contacts absorbed" in content
        assert "Scores: 1/2 (50.0% success)" in content
        assert "RuntimeError: 1" in content

    def test_log_file_creation(self, tmp_path):
        """Log file should be created in specified directory."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.info("Test message")

        # Check that a log file was created
        log_files = list(tmp_path.glob("contactcore_*.log"))
        assert len(log_files) == 1

        # Check that message was written
        log_content = log_files[0].read_text()
        assert "Test message" in log_content

    def test_file_disabled(self, tmp_path):
        """No file is written when file output is off."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path / "logs",
            enable_file=False,
            enable_console=False,
        )
        logger.info("Nowhere")

        assert not Path(tmp_path / "logs").exists()


class TestGlobalLogger:
    """Test global logger singleton."""

    def test_get_logger_singleton(self, tmp_path):
        """get_logger should return same instance."""
        reset_logger()  # Start fresh

        logger1 = get_logger(log_dir=tmp_path, enable_console=False)
        logger2 = get_logger()

        assert logger1 is logger2

    def test_reset_logger(self, tmp_path):
        """reset_logger should create new instance."""
        reset_logger()

        logger1 = get_logger(log_dir=tmp_path, enable_console=False)
        logger1.record_merge_attempt()

        reset_logger()

        logger2 = get_logger(log_dir=tmp_path, enable_console=False)

        # Should be different instance with fresh metrics
        assert logger2.metrics["merges_attempted"] == 0
