"""Console logging for the drift-client command line."""

from __future__ import annotations

import logging

LOGGER_NAME = "drift_client"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def configure_console_log(debug: bool = False) -> logging.Logger:
    """
    Attach a stream handler to the ``drift_client`` logger tree and set its level.

    Safe to call more than once; the handler is only added the first time.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    return logger


__all__ = ["LOGGER_NAME", "configure_console_log"]
