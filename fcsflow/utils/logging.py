"""
Logging utilities for FCSFlow
"""

import logging
import sys
import time
from functools import wraps
from pathlib import Path
from typing import Optional, Union

import colorlog

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}

# Chatty at DEBUG/INFO while plotting or talking to BioMart/KEGG
NOISY_LOGGERS = ["matplotlib", "PIL", "urllib3", "fontTools"]


def _console_handler(format_string: str, use_colors: bool) -> logging.Handler:
    if use_colors and sys.stdout.isatty():
        handler = colorlog.StreamHandler(sys.stdout)
        handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(log_color)s" + format_string,
                datefmt=DATE_FORMAT,
                log_colors=LOG_COLORS,
            )
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(format_string, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    level: Union[str, int] = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    format_string: Optional[str] = None,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Set up logging for FCSFlow

    Replaces the root handlers with a (coloured) console handler and an
    optional file handler, and caps third-party loggers at WARNING.

    Args:
        level: Logging level (INFO, DEBUG, etc.)
        log_file: Optional file to write logs to
        format_string: Custom format string
        use_colors: Colour console output when stdout is a terminal

    Returns:
        Configured package logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    format_string = format_string or DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handlers = [_console_handler(format_string, use_colors)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(format_string, datefmt=DATE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    package_logger = logging.getLogger("fcsflow")
    package_logger.setLevel(level)
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the fcsflow namespace"""
    if name.startswith("fcsflow"):
        return logging.getLogger(name)
    return logging.getLogger(f"fcsflow.{name}")


def log_execution_time(func):
    """Log how long the wrapped analysis took, or when it failed"""

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        start_time = time.time()

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(f"{func.__name__} failed after {time.time() - start_time:.2f}s: {e}")
            raise

        logger.info(f"{func.__name__} completed in {time.time() - start_time:.2f}s")
        return result

    return wrapper
