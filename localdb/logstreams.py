"""Configure the log output of the server.

All modules log via `logging.getLogger("app")` and may pass a dict with
additional context as the only argument, eg

    logit.error(f"cannot fetch {kind} {nn}", {"kind": kind, "id": str(nn)})

This module emits every record as a single JSON line that includes said
context.

"""

import json
import logging
import sys
from datetime import UTC, datetime


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        out = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Attach the context dict if the caller provided one.
        if isinstance(record.args, dict):
            out["data"] = record.args

        if record.exc_info:
            out["exception"] = self.formatException(record.exc_info)
        return json.dumps(out, default=str)


def setup(level: str) -> None:
    """Send all logs to stdout with the specified `level`, eg "info"."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level.upper())
