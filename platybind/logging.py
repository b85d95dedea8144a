"""Logging setup for platybind runs."""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "platybind"
_CONSOLE_FORMAT = "[platybind] %(levelname)s %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger below the ``platybind`` namespace (``platybind.scanner``, ...)."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def _level_for(verbose: bool, quiet: bool) -> int:
    if verbose:
        return logging.DEBUG
    if quiet:
        return logging.WARNING
    return logging.INFO


def configure_logging(
    *, verbose: bool = False, quiet: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Attach console (stderr) and optional file handlers to the platybind logger.

    ``verbose`` wins over ``quiet``. Generated bindings go to stdout in
    dry-run mode, so diagnostics never share a stream with them.
    """
    level = _level_for(verbose, quiet)
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Reset handlers so repeated CLI invocations do not duplicate output.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        sink = logging.FileHandler(log_file, encoding="utf-8")
        sink.setLevel(logging.DEBUG)
        sink.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(sink)
        # The file sink records everything even when the console is quieter.
        logger.setLevel(logging.DEBUG)

    return logger


__all__ = ["configure_logging", "get_logger"]
