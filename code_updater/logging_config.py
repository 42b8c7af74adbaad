"""
Logging setup for the updater.

Every module logs through ``logging.getLogger(__name__)``, so all records
end up under the ``code_updater`` logger configured here. The console shows
short, symbol-prefixed lines (colored on a terminal); ``--log-file`` adds a
timestamped DEBUG trace of the whole run.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


LOGGER_NAME = "code_updater"

RESET = "\033[0m"

# level -> (color, symbol)
LEVEL_STYLES = {
    logging.DEBUG: ("\033[2m", "·"),
    logging.INFO: ("\033[34m", "›"),
    logging.WARNING: ("\033[33m", "!"),
    logging.ERROR: ("\033[31m", "✗"),
    logging.CRITICAL: ("\033[1;31m", "✗"),
}

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class ConsoleFormatter(logging.Formatter):
    """One line per record: level symbol, then the message; warnings and errors name their level."""

    def __init__(self, use_colors: bool = True):
        super().__init__("%(message)s")
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color, symbol = LEVEL_STYLES.get(record.levelno, ("", "?"))
        if record.levelno >= logging.WARNING:
            message = f"{record.levelname.lower()}: {message}"
        line = f"{symbol} {message}"
        return f"{color}{line}{RESET}" if self.use_colors else line


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[str] = None,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configure the package logger; calling it again replaces the previous setup.

    Args:
        verbose: Show DEBUG records on the console
        quiet: Show only warnings and errors on the console (verbose wins)
        log_file: Also write every record, DEBUG included, to this file
        propagate: Pass records on to the root logger (pytest's caplog needs it)

    Returns:
        The ``code_updater`` logger
    """
    if verbose:
        console_level = logging.DEBUG
    elif quiet:
        console_level = logging.WARNING
    else:
        console_level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(ConsoleFormatter(use_colors=sys.stderr.isatty()))
    logger.addHandler(console)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        trace = logging.FileHandler(path, encoding="utf-8")
        trace.setLevel(logging.DEBUG)
        trace.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(trace)

    logger.setLevel(logging.DEBUG if log_file else console_level)
    logger.propagate = propagate
    return logger


def get_logger() -> logging.Logger:
    """The package logger, set up with defaults on first use."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        setup_logging()
    return logger
