"""Process-wide logging configuration for the CLI and API entry points.

Library modules only ever call ``logging.getLogger(__name__)``; handlers
are installed here, once, by whichever entry point starts the process.
"""

from __future__ import annotations

import json
import logging
import sys


class JsonLineFormatter(logging.Formatter):
    """Emit one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON object with severity."""
        entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install a stderr handler on the root logger.

    Args:
        level: Level name (``DEBUG``, ``INFO``, ...). Unknown names fall back to INFO.
        fmt: ``text`` for human-readable lines, ``json`` for one JSON object per line.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if fmt == "json":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonLineFormatter())
        logging.root.handlers.clear()
        logging.root.addHandler(handler)
        logging.root.setLevel(numeric_level)
    else:
        logging.basicConfig(
            level=numeric_level,
            format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stderr,
        )

    # Quieten noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
