"""
Logger Utility
==============

Component-scoped logging for the orchestration core.

Every module creates one logger named after the component it belongs to
("Classifier", "Assembler", "Router", ...). Lines carry a timestamp, the
level, the component path and, optionally, a structured payload rendered
as JSON underneath the message.

Levels:
    DEBUG    - per-step details (prompt sizes, candidate counts)
    INFO     - pipeline milestones (intent chosen, path taken)
    WARNING  - degraded outcomes (store outage, tool failure, fallback)
    ERROR    - the request could not be answered

Usage:
    from memagent.utils.logger import Logger

    logger = Logger("Assembler")
    logger.info("Built context", {"episodic": 3, "semantic": 2})

    branch = logger.child("semantic")
    branch.warning("Semantic lookup timed out")
"""

import json
import os
import sys
from datetime import datetime
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Numeric levels; a line is printed when its level >= the minimum."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


class Colors:
    """ANSI escape codes for terminal output."""
    RESET = "\033[0m"
    DEBUG = "\033[36m"
    INFO = "\033[32m"
    WARNING = "\033[33m"
    ERROR = "\033[31m"
    DIM = "\033[2m"


_LEVEL_NAMES = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARNING": LogLevel.WARNING,
    "WARN": LogLevel.WARNING,
    "ERROR": LogLevel.ERROR,
}


def parse_level(value: str | None) -> LogLevel:
    """
    Map a level name to a LogLevel.

    Unknown or empty names map to INFO.
    """
    if not value:
        return LogLevel.INFO
    return _LEVEL_NAMES.get(value.strip().upper(), LogLevel.INFO)


def _use_color(stream) -> bool:
    if os.getenv("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class Logger:
    """
    A component logger.

    The minimum level is read from LOG_LEVEL when the logger is created,
    so tests can raise or lower verbosity through the environment.

    Example:
        logger = Logger("Router")
        logger.info("Dispatching", {"intent": "tool_execution"})

        tool_logger = logger.child("calculator")
        tool_logger.debug("Invoking tool")   # [Router:calculator]
    """

    def __init__(self, context: str = "", level: LogLevel | None = None):
        self.context = context
        self._min_level = level if level is not None else parse_level(os.getenv("LOG_LEVEL"))

    def child(self, child_context: str) -> "Logger":
        """Return a logger whose context is `<parent>:<child_context>`."""
        new_context = f"{self.context}:{child_context}" if self.context else child_context
        return Logger(new_context, self._min_level)

    def is_enabled_for(self, level: LogLevel) -> bool:
        return level >= self._min_level

    def _format_message(self, level_name: str, message: str, color: str, colored: bool) -> str:
        timestamp = datetime.now().isoformat(timespec="seconds")
        context_str = f"[{self.context}] " if self.context else ""

        if not colored:
            return f"[{timestamp}] [{level_name}] {context_str}{message}"

        return (
            f"{Colors.DIM}[{timestamp}]{Colors.RESET} "
            f"{color}[{level_name}]{Colors.RESET} "
            f"{context_str}{message}"
        )

    def _log(
        self,
        level: LogLevel,
        level_name: str,
        color: str,
        message: str,
        data: dict[str, Any] | None = None
    ) -> None:
        if level < self._min_level:
            return

        stream = sys.stderr if level >= LogLevel.WARNING else sys.stdout
        colored = _use_color(stream)
        print(self._format_message(level_name, message, color, colored), file=stream)

        if data:
            payload = json.dumps(data, indent=2, default=str)
            if colored:
                payload = f"{Colors.DIM}{payload}{Colors.RESET}"
            print(payload, file=stream)

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(LogLevel.DEBUG, "DEBUG", Colors.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(LogLevel.INFO, "INFO", Colors.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(LogLevel.WARNING, "WARN", Colors.WARNING, message, data)

    def error(
        self,
        message: str,
        error: BaseException | None = None,
        data: dict[str, Any] | None = None
    ) -> None:
        """
        Log an error.

        Args:
            message: What failed
            error: Optional exception; its type and message are attached
            data: Optional extra structured data
        """
        payload = dict(data or {})
        if error is not None:
            payload["error_type"] = type(error).__name__
            payload["error_message"] = str(error)
        self._log(LogLevel.ERROR, "ERROR", Colors.ERROR, message, payload or None)


# Package-level logger for code that has no natural component name
logger = Logger("memagent")
