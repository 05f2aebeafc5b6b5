"""
Logging and timing helpers.

Functions:
    - `setup_logger`: Configures the console logger with custom formatting and log levels.
    - `write_logfile`: Writes logs to a specified file with a custom format.
    - `format_time`: Formats a duration in seconds into a human-readable string.
    - `timer`: Context manager that logs the wall time of a block.
"""

import platform
import sys
import time
from contextlib import contextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from loguru import logger

_LOGGER_INITIALIZED = False


def get_version():
    try:
        return version("redeem-classifiers")
    except PackageNotFoundError:
        return "unknown"


def get_system_info():
    return f"Python {platform.python_version()} on {platform.system()} {platform.machine()}"


def setup_logger(log_level="INFO"):
    """
    Adds a formatted stdout sink to the loguru logger.

    Non-INFO levels include module, function and line number of each record.
    Repeated calls are ignored.

    Returns:
        str: The header written at setup, or None if already set up.
    """

    def formatter(record):
        if log_level.upper() != "INFO":
            mod_func_line = f"{record['name']}::{record['function']}:{record['line']}"
            return (
                f"[ <green>{record['time']:YYYY-MM-DD at HH:mm:ss}</green> | "
                f"<level>{record['level']: <7}</level> | "
                f"{mod_func_line: <50} ] "
                f"<level>{record['message']}</level>\n"
            )
        else:
            mod_func_line = f"{record['module']}::{record['line']}"
            return (
                f"[ <green>{record['time']:YYYY-MM-DD at HH:mm:ss}</green> | "
                f"<level>{record['level']: <7}</level> | "
                f"{mod_func_line: <27} ] "
                f"<level>{record['message']}</level>\n"
            )

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return None

    header = (
        f"redeem-classifiers v{get_version()}\n"
        f"Execution time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"System: {get_system_info()}\n"
    )

    logger.remove()
    logger.add(
        sys.stdout,
        format="{message}",
        level=log_level,
        filter=lambda record: "simple" in record["extra"],
    )
    logger.bind(simple=True).info(header)

    logger.add(
        sys.stdout,
        colorize=True,
        format=formatter,
        level=log_level,
        filter=lambda record: "simple" not in record["extra"],
    )

    _LOGGER_INITIALIZED = True

    return header


def write_logfile(log_level, log_file, log_header=None):
    """
    Adds a file sink to the loguru logger, replacing an existing file.

    Returns:
        int: The loguru handler id, which can be passed to `logger.remove`.
    """

    def formatter(record):
        mod_func_line = f"{record['module']}::{record['function']}:{record['line']}"
        return (
            f"[ {record['time']:YYYY-MM-DD at HH:mm:ss} | "
            f"{record['level']: <7} | "
            f"{mod_func_line: <45} ] "
            f"{record['message']}\n"
        )

    log_file = Path(log_file)
    if log_file.exists():
        log_file.unlink()

    if log_header:
        with log_file.open("w") as f:
            f.write(log_header)

    return logger.add(
        log_file,
        colorize=False,
        format=formatter,
        level=log_level,
        rotation="1000 MB",
    )


def format_time(seconds):
    """Format the time in seconds into a human-readable format."""
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    seconds = seconds % 60
    if days > 0:
        return f"{days} days, {hours} hours, {minutes} minutes, {seconds:.2f} seconds"
    elif hours > 0:
        return f"{hours} hours, {minutes} minutes, {seconds:.2f} seconds"
    elif minutes > 0:
        return f"{minutes} minutes, {seconds:.2f} seconds"
    else:
        return f"{seconds:.2f} seconds"


@contextmanager
def timer(name=""):
    start_at = time.time()

    yield

    needed = time.time() - start_at
    if name:
        logger.info(f"Time needed for {name}: {format_time(needed)}")
    else:
        logger.info(f"Time needed: {format_time(needed)}")
