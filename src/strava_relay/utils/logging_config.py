"""
Centralized logging configuration for the Strava activity relay.

This module provides consistent logging setup across all components
with proper formatting, file rotation, and log levels.
"""

import os
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Optional


class RelayLogger:
    """Centralized logging configuration for the relay service"""

    def __init__(self,
                 log_dir: str = "logs",
                 log_level: str = "INFO",
                 max_file_size: int = 10 * 1024 * 1024,  # 10MB
                 backup_count: int = 5,
                 console: bool = True):
        """
        Initialize the logging configuration.

        Args:
            log_dir: Directory to store log files
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            max_file_size: Maximum size of each log file in bytes
            backup_count: Number of backup log files to keep
            console: Whether to also log to stderr
        """
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper(), logging.INFO)
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.console = console

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_logging()

    def _rotating_handler(self, filename: str, level: int, formatter: logging.Formatter) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / filename,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
            encoding='utf-8'
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    def _setup_logging(self):
        """Setup logging configuration with file rotation and console output"""

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # Console formatter (simpler for readability)
        console_formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)
        root_logger.handlers.clear()

        root_logger.addHandler(self._rotating_handler("strava_relay.log", self.log_level, formatter))

        if self.console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(self.log_level)
            console_handler.setFormatter(console_formatter)
            root_logger.addHandler(console_handler)

        # Separate file for errors and above
        root_logger.addHandler(self._rotating_handler("strava_relay_errors.log", logging.ERROR, formatter))

        # Inbound webhook traffic gets its own file as well
        webhook_logger = logging.getLogger('strava_relay.webhook_server')
        webhook_logger.handlers.clear()
        webhook_logger.addHandler(self._rotating_handler("webhook.log", self.log_level, formatter))
        webhook_logger.setLevel(self.log_level)
        webhook_logger.propagate = True

        self._configure_third_party_loggers()

        logger = logging.getLogger(__name__)
        logger.info(f"Logging initialized - Level: {logging.getLevelName(self.log_level)}")
        logger.info(f"Log directory: {self.log_dir.absolute()}")

    def _configure_third_party_loggers(self):
        """Configure third-party library loggers to reduce noise"""
        logging.getLogger('aiohttp').setLevel(logging.WARNING)
        logging.getLogger('aiohttp.access').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('asyncio').setLevel(logging.WARNING)

        if os.getenv('FLASK_ENV') != 'development':
            logging.getLogger('werkzeug').setLevel(logging.WARNING)

    def add_performance_logging(self) -> logging.Logger:
        """Add a dedicated, non-propagating file for PerformanceTimer output"""
        perf_handler = self._rotating_handler(
            "performance.log",
            logging.INFO,
            logging.Formatter(fmt='%(asctime)s - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
        )

        perf_logger = logging.getLogger('performance')
        perf_logger.handlers.clear()
        perf_logger.addHandler(perf_handler)
        perf_logger.setLevel(logging.INFO)
        perf_logger.propagate = False

        return perf_logger


def setup_logging(log_level: Optional[str] = None,
                  log_dir: Optional[str] = None) -> RelayLogger:
    """
    Setup logging for the relay service.

    Args:
        log_level: Logging level from environment or default to INFO
        log_dir: Log directory from environment or default to 'logs'

    Returns:
        Configured RelayLogger instance
    """
    log_level = log_level or os.getenv('LOG_LEVEL', 'INFO')
    log_dir = log_dir or os.getenv('LOG_DIR', 'logs')

    relay_logger = RelayLogger(
        log_dir=log_dir,
        log_level=log_level,
        max_file_size=int(os.getenv('LOG_MAX_FILE_SIZE', 10 * 1024 * 1024)),
        backup_count=int(os.getenv('LOG_BACKUP_COUNT', 5))
    )
    relay_logger.add_performance_logging()
    return relay_logger


def get_logger(name: str) -> logging.Logger:
    """
    Convenience function to get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


class PerformanceTimer:
    """Context manager for timing operations and logging performance metrics"""

    def __init__(self, operation_name: str, logger: Optional[logging.Logger] = None):
        """
        Initialize performance timer.

        Args:
            operation_name: Name of the operation being timed
            logger: Logger instance (defaults to performance logger)
        """
        self.operation_name = operation_name
        self.logger = logger or logging.getLogger('performance')
        self.start_time = None

    def __enter__(self):
        """Start timing"""
        self.start_time = datetime.now()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """End timing and log result"""
        if self.start_time:
            duration_ms = (datetime.now() - self.start_time).total_seconds() * 1000

            if exc_type is None:
                self.logger.info(f"{self.operation_name} completed in {duration_ms:.2f}ms")
            else:
                self.logger.error(f"{self.operation_name} failed after {duration_ms:.2f}ms - {exc_type.__name__}: {exc_val}")
