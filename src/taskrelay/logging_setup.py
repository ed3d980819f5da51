"""Logging configuration for the taskrelay CLI."""

from __future__ import annotations

import logging
import os

PACKAGE_LOGGER = "taskrelay"


def setup_logging(
    log_file: str | None = None,
    verbose: bool = False,
    logger_name: str = PACKAGE_LOGGER,
) -> logging.Logger:
    """
    Configure dual-handler logging (console + file).

    Calling it again replaces the handlers installed by the previous call.

    Args:
        log_file: Path to log file (None for no file logging)
        verbose: Enable DEBUG level on console (default INFO)
        logger_name: Logger to configure (defaults to the package logger)

    Returns:
        Configured logger instance
    """
    # Console handler (stderr, so command output stays clean on stdout)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(
        logging.Formatter("%(levelname)-8s | %(name)s | %(message)s")
    )

    # File handler (if path provided)
    file_handler = None
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(console_handler)
    if file_handler:
        logger.addHandler(file_handler)

    return logger
