"""Single-line JSON log output.

Enabled with ``REWIND_STRUCTURED_LOGGING=true``; the application then
replaces the root handlers with one ``StreamHandler`` using
:class:`JSONFormatter`.

Output schema per line::

    {
        "timestamp": "2026-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "rewind.access",
        "message": "request completed",
        "request": { ... },
        "exc_info": "Traceback ..."
    }

``request`` is present on access-log records, ``exc_info`` only when an
exception was attached.
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# Extra attributes copied verbatim into the payload when a record carries them.
_EXTRA_FIELDS = ("request", "group_id", "snapshot_id", "database")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(payload, default=str, ensure_ascii=False)
