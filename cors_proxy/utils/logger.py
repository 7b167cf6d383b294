"""Logger utility for CORS Proxy Buddy.

Every component logs through a child of one package logger, configured once
from the ``logging`` section of the proxy configuration.
"""

import logging
import logging.handlers
import sys
from typing import Any, Dict

DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    "level": "INFO",
    "parent_logger": None,
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "date_format": "%Y-%m-%d %H:%M:%S",
    "enable_console": True,
    "enable_file": False,
    "file_path": None,
    "max_file_size": 10485760,  # 10MB
    "backup_count": 5,
}

PACKAGE_LOGGER = "cors_proxy"


class ColorFormatter(logging.Formatter):
    """Adds ANSI colors per log level to console output."""

    COLORS = {
        "DEBUG": "\033[94m",  # Blue
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        return f"{color}{super().format(record)}{self.RESET}"


class LoggerManager:
    """Owns the package logger's handlers and hands out child loggers."""

    def __init__(self):
        self._loggers: Dict[str, logging.Logger] = {}
        self._config: Dict[str, Any] = {}
        self._configured = False

    def configure(self, config: Dict[str, Any]) -> None:
        """Apply a logging configuration, replacing any previous handlers.

        Args:
            config: ``logging`` section of the proxy configuration; missing
                keys fall back to ``DEFAULT_LOGGING_CONFIG``
        """
        self._config = {**DEFAULT_LOGGING_CONFIG, **(config or {})}
        self._configured = True
        self._apply()

    @property
    def parent_name(self) -> str:
        return self._config.get("parent_logger") or PACKAGE_LOGGER

    def _apply(self) -> None:
        parent_logger = logging.getLogger(self.parent_name)
        for handler in list(parent_logger.handlers):
            parent_logger.removeHandler(handler)
            handler.close()

        level = getattr(logging, str(self._config["level"]).upper(), logging.INFO)
        parent_logger.setLevel(level)

        log_format = self._config["format"]
        date_format = self._config["date_format"]

        if self._config["enable_console"]:
            console_handler = logging.StreamHandler(sys.stdout)
            if sys.stdout.isatty():
                console_handler.setFormatter(ColorFormatter(log_format, date_format))
            else:
                console_handler.setFormatter(logging.Formatter(log_format, date_format))
            parent_logger.addHandler(console_handler)

        if self._config["enable_file"] and self._config["file_path"]:
            file_handler = logging.handlers.RotatingFileHandler(
                self._config["file_path"],
                maxBytes=self._config["max_file_size"],
                backupCount=self._config["backup_count"],
            )
            file_handler.setFormatter(logging.Formatter(log_format, date_format))
            parent_logger.addHandler(file_handler)

        # Prevent propagation to avoid duplicate logs
        parent_logger.propagate = False

    def get_logger(self, name: str) -> logging.Logger:
        """Get a child of the package logger, configuring defaults on first use."""
        if not self._configured:
            self.configure({})

        full_name = f"{self.parent_name}.{name}"
        if full_name not in self._loggers:
            self._loggers[full_name] = logging.getLogger(full_name)
        return self._loggers[full_name]

    def set_level(self, level: str) -> None:
        if not self._configured:
            self.configure({})
        self._config["level"] = level
        logging.getLogger(self.parent_name).setLevel(getattr(logging, level.upper(), logging.INFO))


# Global logger manager instance
_logger_manager = LoggerManager()


def configure_logging(config: Dict[str, Any]) -> None:
    """Configure the logging system with the provided configuration."""
    _logger_manager.configure(config)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the specified module/component.

    Example:
        logger = get_logger("core.dispatcher")
        logger.info("This is an info message")
    """
    return _logger_manager.get_logger(name)


def set_log_level(level: str) -> None:
    """Change the logging level for the entire package."""
    _logger_manager.set_level(level)
