"""Logging utilities with local timezone support."""

import logging
import time


class LocalTimeFormatter(logging.Formatter):
    """Formatter that uses local time instead of UTC."""

    def formatTime(self, record, datefmt=None):
        """Override to use local time."""
        ct = self.converter(record.created)
        if datefmt:
            s = time.strftime(datefmt, ct)
        else:
            s = time.strftime("%Y-%m-%d %H:%M:%S", ct)
            s = f"{s},{int(record.msecs):03d}"
        return s

    converter = time.localtime  # Use local time instead of gmtime


def configure_logging(level: str = "INFO") -> None:
    """Install a local-time stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if any(isinstance(h.formatter, LocalTimeFormatter) for h in root.handlers):
        root.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setFormatter(LocalTimeFormatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level)

    # Every memory/planner/relay request would otherwise log at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
