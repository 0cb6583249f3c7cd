"""
Centralized logging configuration for TSMetrics.
Provides structured logging with file output and configurable levels.
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional


LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL
}

DEFAULT_FORMAT = '%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s'


class MetricsLogger:
    """Centralized logger for metrics store components."""

    _loggers = {}
    _initialized = False
    _log_dir = None
    _log_level = logging.INFO

    @classmethod
    def setup(cls, log_dir: str = "./logs", log_level: str = "INFO", console_output: bool = False,
              log_format: str = DEFAULT_FORMAT):
        """Setup logging configuration for all TSMetrics components."""
        if cls._initialized:
            return

        cls._log_dir = Path(log_dir)
        cls._log_dir.mkdir(parents=True, exist_ok=True)
        cls._log_level = LEVEL_MAP.get(log_level.upper(), logging.INFO)

        detailed_formatter = logging.Formatter(log_format, datefmt='%Y-%m-%d %H:%M:%S')
        simple_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(message)s',
            datefmt='%H:%M:%S'
        )

        # Only the package logger is configured; the host application's root logger is left alone
        package_logger = logging.getLogger("tsmetrics")
        package_logger.setLevel(cls._log_level)
        package_logger.handlers.clear()

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = cls._log_dir / f"tsmetrics_{timestamp}.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(cls._log_level)
        file_handler.setFormatter(detailed_formatter)
        package_logger.addHandler(file_handler)

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(logging.WARNING)  # Only warnings/errors to console
            console_handler.setFormatter(simple_formatter)
            package_logger.addHandler(console_handler)

        cls._initialized = True

        init_logger = cls.get_logger("MetricsLogger")
        init_logger.info(f"Logging initialized - Level: {log_level}, File: {log_file}")
        if console_output:
            init_logger.info("Console output enabled for WARNING+ messages")

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger for a specific component."""
        if not cls._initialized:
            cls.setup()  # Initialize with defaults if not already done

        if name not in cls._loggers:
            logger = logging.getLogger(f"tsmetrics.{name}")
            logger.setLevel(cls._log_level)
            cls._loggers[name] = logger

        return cls._loggers[name]

    @classmethod
    def set_level(cls, level: str):
        """Change logging level for all loggers."""
        new_level = LEVEL_MAP.get(level.upper(), logging.INFO)

        logging.getLogger("tsmetrics").setLevel(new_level)
        for logger in cls._loggers.values():
            logger.setLevel(new_level)

        cls._log_level = new_level

    @classmethod
    def get_log_file(cls) -> Optional[Path]:
        """Get the current log file path."""
        if not cls._initialized:
            return None

        if cls._log_dir and cls._log_dir.exists():
            log_files = sorted(cls._log_dir.glob("tsmetrics_*.log"), key=lambda x: x.stat().st_mtime)
            if log_files:
                return log_files[-1]
        return None


def get_logger(name: str) -> logging.Logger:
    """Convenience function to get a logger."""
    return MetricsLogger.get_logger(name)
