"""Logging and user notifications for Marginalia."""

import logging
import sys
from typing import Optional

# Package logger
logger = logging.getLogger("marginalia")

NOTIFY_LOGGER = "marginalia.notify"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    COLORS = {
        logging.DEBUG: "\033[36m",    # Cyan
        logging.INFO: "\033[32m",     # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",    # Red
        logging.CRITICAL: "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, datefmt: str = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelno, "")
            record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[str] = None,
    use_colors: bool = True,
) -> None:
    """Configure logging for the application.

    Args:
        verbose: If True, set level to DEBUG (includes per-frame render logs)
        quiet: If True, set level to ERROR only
        log_file: Optional path to write logs to file
        use_colors: If True, use colored output in terminal
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.INFO

    logger = logging.getLogger("marginalia")
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_fmt = "%(levelname)s: %(message)s"
    if verbose:
        console_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    console_handler.setFormatter(ColoredFormatter(console_fmt, datefmt="%H:%M:%S", use_colors=use_colors))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)  # Always log everything to file
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
        logger.addHandler(file_handler)

    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(f"marginalia.{name.split('.')[-1]}")


class Notifier:
    """
    Transient user-facing notices (the toast layer).

    Presentation is out of the engine's hands; this default routes notices to
    the log so the CLI prints them. Front ends pass their own object with the
    same three methods.
    """

    def __init__(self, logger_name: str = NOTIFY_LOGGER):
        self._logger = logging.getLogger(logger_name)

    def info(self, message: str) -> None:
        self._logger.info(message)

    def success(self, message: str) -> None:
        self._logger.info(message)

    def error(self, message: str) -> None:
        self._logger.error(message)
