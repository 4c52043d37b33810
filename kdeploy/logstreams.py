"""Log setup for the `app` logger.

Code in this package logs a static message and passes the variable parts as a
single dict argument, eg

    logit.info("deployment updated", {"name": "nginx", "namespace": "nginx"})

The formatter below appends that dict as JSON to the message.
"""

import json
import logging
import sys

# Convenience.
logit = logging.getLogger("app")


class DictFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = record.args if isinstance(record.args, dict) else {}

        out = super().format(record)
        if payload:
            out = f"{out} {json.dumps(payload, default=str, sort_keys=True)}"
        return out


def setup(level: str) -> None:
    """Send all `app` log messages at or above `level` to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        DictFormatter("%(asctime)s %(levelname)s %(module)s: %(message)s")
    )

    logit.handlers.clear()
    logit.addHandler(handler)
    logit.setLevel(level.upper())
    logit.propagate = False
