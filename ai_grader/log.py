"""
Logging setup for the AI Grader CLI.

Library modules only create loggers with `logging.getLogger(__name__)`;
handlers are installed here by the application entry point.
"""

import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "ai_grader"

# Logs go to stderr so command output on stdout stays clean
console = Console(stderr=True)


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    enable_rich: bool = True,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Log level name.
        log_file: Optional file that receives DEBUG and above.
        enable_rich: Use rich console output instead of plain lines.

    Returns:
        The configured `ai_grader` logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if log_file else getattr(logging, level.upper()))
    logger.handlers.clear()
    logger.propagate = False

    if enable_rich:
        console_handler: logging.Handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
        )
        console_handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    console_handler.setLevel(getattr(logging, level.upper()))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
            )
        )
        logger.addHandler(file_handler)

    return logger
