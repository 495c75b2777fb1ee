"""
Logging setup for the app and the engine modules.

Every module logs through ``logging.getLogger(__name__)``; the Streamlit
entry point calls :func:`configure_logging` once per process.
"""

import logging
import sys
from datetime import datetime

from sitecontrol import config


class ReadableFormatter(logging.Formatter):
    """Single-line colored formatter for the terminal running streamlit."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        project = getattr(record, "project_id", None)
        proj_str = f" [{project}]" if project else ""
        base = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}{proj_str}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(level=None):
    """
    Attach a stderr handler to the ``sitecontrol`` logger tree.

    Safe to call on every Streamlit rerun: the handler is only added once.
    """
    root = logging.getLogger("sitecontrol")
    level_name = (level or config.LOG_LEVEL).upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not any(getattr(h, "_sitecontrol", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ReadableFormatter())
        handler._sitecontrol = True
        root.addHandler(handler)
        root.propagate = False
    return root
