"""
Unit tests for logging configuration.
"""

import logging

import pytest

from strava_relay.utils.logging_config import setup_logging, get_logger, PerformanceTimer


class TestSetupLogging:
    """Test setup_logging function"""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for name in ('', 'strava_relay.webhook_server', 'performance'):
            for handler in logging.getLogger(name).handlers:
                handler.close()
            logging.getLogger(name).handlers.clear()
        root.handlers.extend(handlers)
        root.setLevel(level)

    def test_creates_log_files(self, tmp_path):
        """Test rotating files are created in the log directory"""
        setup_logging(log_level="DEBUG", log_dir=str(tmp_path / "logs"))

        get_logger('strava_relay.webhook_server').info("Webhook challenge received")
        with PerformanceTimer("Dispatch activity 1"):
            pass

        log_dir = tmp_path / "logs"
        assert logging.getLogger().level == logging.DEBUG
        assert (log_dir / "strava_relay.log").exists()
        assert (log_dir / "strava_relay_errors.log").exists()
        assert "Webhook challenge received" in (log_dir / "webhook.log").read_text()
        assert "Dispatch activity 1 completed" in (log_dir / "performance.log").read_text()

    def test_repeated_setup_does_not_duplicate_handlers(self, tmp_path):
        setup_logging(log_dir=str(tmp_path))
        setup_logging(log_dir=str(tmp_path))

        assert len(logging.getLogger('performance').handlers) == 1
        assert len(logging.getLogger('strava_relay.webhook_server').handlers) == 1


class TestPerformanceTimer:
    """Test PerformanceTimer context manager"""

    def test_logs_failure(self):
        timer_logger = logging.getLogger('test.performance')
        records = []
        handler = logging.Handler()
        handler.emit = records.append
        timer_logger.addHandler(handler)

        with pytest.raises(ValueError):
            with PerformanceTimer("Sync", timer_logger):
                raise ValueError("boom")

        timer_logger.removeHandler(handler)
        assert records[0].levelno == logging.ERROR
        assert "Sync failed after" in records[0].getMessage()
