"""A print-based logger for interactive simulation sessions.

Standard Python logging disappears in Jupyter notebooks unless carefully
configured, and the simulation worker prints from its own thread. This
module provides a simple alternative: print to stdout with timestamps and
level labels. Unsophisticated, but visible.

Messages below the process-wide threshold are dropped before formatting.
The threshold starts at $DENDRA_LOG_LEVEL (default INFO) and can be moved
with set_level().

Usage:
    from dendra.utils import get_logger, set_level
    log = get_logger("my_module")
    log.info("Built %s compartments", 1000)
    set_level("DEBUG")
"""

import os
import sys
from datetime import datetime

LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}

_threshold = LEVELS.get(os.environ.get("DENDRA_LOG_LEVEL", "INFO").upper(),
                        LEVELS["INFO"])


def set_level(level):
    """Set the lowest level printed by every dendra logger.

    Returns the previous level name.
    """
    global _threshold
    name = str(level).upper()
    if name not in LEVELS:
        raise ValueError(f"Unknown log level {level!r}; expected one of {list(LEVELS)}")
    previous = get_level()
    _threshold = LEVELS[name]
    return previous


def get_level():
    return next(name for name, value in LEVELS.items() if value == _threshold)


def get_logger(name, out=None):
    """Create a print-based logger.

    Parameters
    ----------
    name : str
        Logger name, displayed in every message header.
    out : file-like, optional
        Additional output stream (e.g., an open log file).

    Returns
    -------
    callable
        A log function with .debug, .info, .warning, .error methods.
    """
    prefix = f"dendra:{name}"
    line_length = 72
    outputs = [sys.stdout] + ([out] if out else [])

    def _header(level):
        now = datetime.now().strftime("%H:%M:%S")
        for dest in outputs:
            print(f"{'_' * line_length}", file=dest)
            print(f"{prefix} {level} [{now}]", file=dest)

    def log(level, msg, args):
        if LEVELS[level] < _threshold:
            return
        _header(level)
        for dest in outputs:
            try:
                print(msg % args, file=dest)
            except TypeError:
                print(msg, file=dest)

    log.debug = lambda msg, *args: log("DEBUG", msg, args)
    log.info = lambda msg, *args: log("INFO", msg, args)
    log.warning = lambda msg, *args: log("WARNING", msg, args)
    log.error = lambda msg, *args: log("ERROR", msg, args)

    return log
