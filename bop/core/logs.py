"""Logging setup for interactive commands and unattended udev runs."""

from __future__ import annotations

import logging

from bop.core import commands

_PRIORITIES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warning",
    logging.ERROR: "err",
    logging.CRITICAL: "crit",
}


class SystemLogHandler(logging.Handler):
    """Forward records to the system log through ``logger(1)``."""

    def __init__(self, tag: str = "bop", level: int = logging.INFO) -> None:
        super().__init__(level)
        self.tag = tag

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            priority = _PRIORITIES.get(record.levelno, "notice")
            commands.run_command(["logger", "-t", self.tag, "-p", f"user.{priority}", message])
        except Exception:
            self.handleError(record)


def configure(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def enable_system_log(tag: str = "bop") -> None:
    """Send INFO and above from every ``bop`` logger to the system log."""
    logger = logging.getLogger("bop")
    if any(isinstance(h, SystemLogHandler) for h in logger.handlers):
        return
    handler = SystemLogHandler(tag)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    if logger.getEffectiveLevel() > logging.INFO:
        logger.setLevel(logging.INFO)
