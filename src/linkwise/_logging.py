"""Logging configuration for linkwise.

Modules log through the standard library:

    import logging
    log = logging.getLogger(__name__)

The level is read from LINKWISE_LOG_LEVEL (DEBUG, INFO, WARNING, ERROR).
INFO is the default. ``--quiet`` on the CLI raises it to ERROR.
"""

import logging
import os
import sys

PACKAGE_LOGGER = "linkwise"


def configure_logging() -> None:
    """Attach a stderr handler to the package logger.

    Call once at startup. Later calls are no-ops.
    """
    root_logger = logging.getLogger(PACKAGE_LOGGER)
    if root_logger.handlers:
        return

    level_name = os.environ.get("LINKWISE_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="[%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    # Keep messages out of the root logger
    root_logger.propagate = False


def set_quiet_mode(quiet: bool) -> None:
    """Show only errors when quiet, otherwise restore the configured level.

    Args:
        quiet: Whether to suppress warnings and info messages.
    """
    configure_logging()
    root_logger = logging.getLogger(PACKAGE_LOGGER)

    if quiet:
        level = logging.ERROR
    else:
        level_name = os.environ.get("LINKWISE_LOG_LEVEL", "INFO").upper()
        level = getattr(logging, level_name, logging.INFO)

    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    Args:
        name: Module name (typically __name__).

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)
