"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Custom Logging Utilities
"""

import logging
import sys
from datetime import datetime


def timestamped(message: str, now: datetime | None = None) -> str:
    """Prefixes a session log message with the wall-clock time, `[HH:MM:SS] message`."""
    now = now or datetime.now()
    return f"[{now.strftime('%H:%M:%S')}] {message}"


class SingleLineStatusHandler(logging.StreamHandler):
    """
    Console handler that keeps one status line per segment, e.g.
    "Writing firmware @ 0x10000 ..." followed by "... done" on the same line.

    A record logged with extra={"status": "start"} is written without a
    newline, one with extra={"status": "end"} rewrites that line and ends it.
    Any other record first terminates a pending status line.
    """

    def __init__(self, stream=None):
        super().__init__(stream or sys.stdout)
        self._status_line_active = False

    def emit(self, record):
        status = getattr(record, "status", None)
        if self._status_line_active and status is None:
            self.stream.write(self.terminator)
            self._status_line_active = False

        try:
            msg = self.format(record)
            if status == "start":
                self.stream.write(msg)
                self._status_line_active = True
            elif status == "end":
                self.stream.write("\r" + msg + self.terminator)
                self._status_line_active = False
            else:
                self.stream.write(msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool = False, stream=None) -> SingleLineStatusHandler:
    """Installs a SingleLineStatusHandler as the only root handler."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    handler = SingleLineStatusHandler(stream)
    if verbose:
        formatter = logging.Formatter(
            "%(levelname)-7s:%(name)-13s:%(lineno)4d: %(message)s"
        )
    else:
        formatter = logging.Formatter("%(message)s")
    handler.setFormatter(formatter)
    root_logger.handlers = [handler]
    return handler
