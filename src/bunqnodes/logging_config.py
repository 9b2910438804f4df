"""
Centralized logging configuration for bunqnodes.
Logs to both console and files with rotation.
"""
import logging
import logging.handlers
import os
from datetime import datetime
from pathlib import Path
from typing import Optional


class LogConfig:
    """Centralized logging configuration."""

    LOG_DIR = Path(os.getenv("BUNQ_LOG_DIR", "./logs"))

    CONSOLE_LEVEL = logging.INFO
    FILE_LEVEL = logging.DEBUG

    DETAILED_FORMAT = '%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s'
    SIMPLE_FORMAT = '%(levelname)-8s | %(message)s'
    DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

    @classmethod
    def setup_root(cls, level: str = "INFO", log_file: Optional[str] = "bunqnodes.log") -> logging.Logger:
        """
        Configure the root logger once: console at `level`, rotated file at DEBUG.

        Args:
            level: Console level name (e.g. "INFO", "DEBUG").
            log_file: File name under LOG_DIR, or None to skip file logging.

        Returns:
            The root logger
        """
        root = logging.getLogger()
        if getattr(root, "_bunqnodes_configured", False):
            return root
        root.setLevel(logging.DEBUG)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(getattr(logging, str(level).upper(), cls.CONSOLE_LEVEL))
        console_handler.setFormatter(logging.Formatter(cls.SIMPLE_FORMAT, datefmt=cls.DATE_FORMAT))
        root.addHandler(console_handler)

        if log_file:
            cls.LOG_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                cls.LOG_DIR / log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB per file
                backupCount=10,
            )
            file_handler.setLevel(cls.FILE_LEVEL)
            file_handler.setFormatter(logging.Formatter(cls.DETAILED_FORMAT, datefmt=cls.DATE_FORMAT))
            root.addHandler(file_handler)

        # urllib3 logs full URLs at DEBUG
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        root._bunqnodes_configured = True
        return root

    @classmethod
    def setup_session_logger(cls) -> logging.Logger:
        """
        Set up a logger for workflow executions.
        Logs to a per-run session file with timestamp.
        """
        session_name = datetime.now().strftime("%Y%m%d_%H%M%S")
        session_logger = logging.getLogger("bunqnodes.session")
        session_logger.setLevel(logging.DEBUG)

        if session_logger.handlers:
            return session_logger

        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)
        session_handler = logging.FileHandler(cls.LOG_DIR / f"session_{session_name}.log")
        session_handler.setLevel(logging.DEBUG)
        session_handler.setFormatter(logging.Formatter(cls.DETAILED_FORMAT, datefmt=cls.DATE_FORMAT))
        session_logger.addHandler(session_handler)
        return session_logger


def setup_logging(level: str = "INFO", log_file: Optional[str] = "bunqnodes.log") -> logging.Logger:
    return LogConfig.setup_root(level, log_file)


def setup_session_logger() -> logging.Logger:
    """Set up session-wide logging."""
    return LogConfig.setup_session_logger()
