"""
Centralized logging setup for the rotation engine.

Provides colored console output, optional file output and a dedicated
audit channel that writes one JSON record per sweep or on-demand request.
"""

import json
import logging
import sys
from typing import Any, Dict, Optional


class ColoredFormatter(logging.Formatter):
    """
    Formatter that colors the level name and error/warning messages.

    Colors are only applied when stdout is a terminal.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def __init__(self, fmt: str = None, use_colors: bool = True):
        super().__init__(fmt or "%(asctime)s [%(levelname)s] %(message)s")
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return super().format(record)

        original_levelname = record.levelname
        original_msg = record.msg

        color = self.COLORS.get(record.levelname, "")
        reset = self.COLORS["RESET"]
        record.levelname = f"{color}{record.levelname}{reset}"
        if original_levelname in ("WARNING", "ERROR", "CRITICAL"):
            record.msg = f"{color}{record.msg}{reset}"

        try:
            return super().format(record)
        finally:
            record.levelname = original_levelname
            record.msg = original_msg


class StructuredLogger(logging.Logger):
    """
    Logger with section headers, outcome helpers and an audit record method.
    """

    def section(self, title: str) -> None:
        """Log a section header."""
        self.info("")
        self.info("=" * 60)
        self.info(title)
        self.info("=" * 60)

    def subsection(self, title: str) -> None:
        """Log a subsection header."""
        self.info("")
        self.info(f"--- {title} ---")

    def success(self, message: str) -> None:
        self.info(f"[OK] {message}")

    def failure(self, message: str) -> None:
        self.error(f"[FAIL] {message}")

    def audit(self, kind: str, record: Dict[str, Any]) -> None:
        """
        Emit a single-line JSON audit record.

        Args:
            kind: Record type, e.g. "sweep" or "request"
            record: JSON-serializable payload
        """
        payload = {"audit": kind, **record}
        self.info(f"AUDIT {json.dumps(payload, sort_keys=True, default=str)}")


_logger: Optional[StructuredLogger] = None


def setup_logger(
    name: str = "CertRotation",
    verbose: bool = False,
    use_colors: bool = True,
    log_file: Optional[str] = None,
) -> StructuredLogger:
    """
    Setup and configure the global logger.

    Args:
        name: Logger name
        verbose: Enable debug-level logging
        use_colors: Enable colored console output
        log_file: Optional file path for log output

    Returns:
        Configured StructuredLogger instance
    """
    global _logger

    logging.setLoggerClass(StructuredLogger)
    logger = logging.getLogger(name)
    logger.__class__ = StructuredLogger

    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s"
        ))
        logger.addHandler(file_handler)

    _logger = logger
    return logger


def get_logger() -> StructuredLogger:
    """
    Get the global logger instance, creating a default one on first use.

    Returns:
        The configured StructuredLogger instance
    """
    global _logger

    if _logger is None:
        _logger = setup_logger()

    return _logger
