"""Logging setup for the deploy engine and its CLI.

Two output modes are supported:

* plain text (default) -- ``%(asctime)s %(levelname)s %(name)s: %(message)s``
* single-line JSON via :class:`JSONFormatter` when ``structured_logging`` is
  enabled, so log aggregators can index records without regex parsing.

Output schema per JSON line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "deploy_engine.snapshots.cloner",
        "message": "Cloned snapshot 4 -> 9 (3 roles)",
        "snapshot": {"id": 9, ...},     // present when passed via extra=
        "exc_info": "Traceback ..."      // present only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from deploy_engine.config import Settings

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Structured snapshot context passed via ``extra={"snapshot": ...}``.
        snapshot_data = getattr(record, "snapshot", None)
        if snapshot_data is not None:
            payload["snapshot"] = snapshot_data

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(settings: Settings) -> None:
    """Replace the root handlers according to *settings*.

    Safe to call more than once; each call clears the previous handlers.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    if settings.structured_logging:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if settings.debug else settings.log_level)
