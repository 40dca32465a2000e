from __future__ import annotations

import os
import signal
import sys

from nexus_bridge.logging_abstraction import get_logger

logger = get_logger(__name__)

MIN_PYTHON: tuple[int, int] = (3, 12)


def send_signal(signal_num: int) -> None:
    """Send a signal to the current process."""
    try:
        logger.debug("Sending signal %s to process %s", signal_num, os.getpid())
        os.kill(os.getpid(), signal_num)
    except OSError:
        logger.exception("Failed to send signal %s to process", signal_num)
        raise


def send_sigterm() -> None:
    """Ask the serving loop to shut down, e.g. after the broker connection was lost."""
    logger.info("Requesting shutdown with SIGTERM")
    send_signal(signal.SIGTERM)


def check_python_version() -> None:
    if sys.version_info[:2] < MIN_PYTHON:
        logger.critical(
            "Python %s.%s or newer is required, running %s",
            *MIN_PYTHON,
            sys.version.split()[0],
        )
        sys.exit(1)
