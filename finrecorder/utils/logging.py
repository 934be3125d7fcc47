"""Logging setup shared by the API process, scheduler and CLI."""

import logging
import sys

from finrecorder.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging() -> None:
    """Configure the root logger once; later calls are no-ops."""
    root = logging.getLogger()
    if getattr(root, "_finrecorder_configured", False):
        return

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root.setLevel(level)
    root.addHandler(handler)
    root._finrecorder_configured = True

    # APScheduler logs every job submission at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
