"""
qdb.logger
~~~~~~~~~~
Moderation audit trail (plain ``key=value`` lines, append-only) and the
JSON access log with daily rotation.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_ISO = "%Y-%m-%dT%H:%M:%SZ"

log = logging.getLogger(__name__)


def _now() -> str:  # ISO-8601, UTC, without microseconds
    return datetime.now(tz=timezone.utc).strftime(_ISO)


def _open_file(path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


class _ModerationFormatter(logging.Formatter):
    """ e.g. time=2025-06-19T15:07:02Z name=alice action=:set_flags on=3 -> 17 """

    def format(self, record):  # type: ignore[override]
        d: Dict[str, Any] = record.msg if isinstance(record.msg, dict) else {}
        return "time={ts} name={name} action={action} on={on}".format(
            ts=d.get("ts", _now()),
            name=_one_line(d.get("name", "-")),
            action=_one_line(d.get("action", "-")),
            on=_one_line(d.get("on", "-")),
        )


def _drop_stale(logger: logging.Logger) -> None:
    # a previous owner of this logger name was collected without close()
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()


def _one_line(value: object) -> str:
    # one record, one line
    return str(value).replace("\r", " ").replace("\n", " ")


class _JSONFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        return json.dumps(record.msg, separators=(",", ":"))


class _ModerationFileHandler(logging.FileHandler):
    def handleError(self, record):  # noqa: N802
        log.exception("moderation log write failed")


class ModerationLog:
    """Write-only audit sink for privileged mutations.

    Each ``record`` call is one line, written and flushed under the
    handler's lock, so concurrent callers never interleave and lines land
    in the order the calls are made.  Callers record only after their
    mutation committed.  Nothing here raises to the caller.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        handler: Optional[logging.Handler] = None,
        name: Optional[str] = None,
    ):
        if handler is None:
            if path is None:
                raise ValueError("ModerationLog needs a path or a handler")
            handler = _ModerationFileHandler(_open_file(path), mode="a", encoding="utf-8")
        handler.setFormatter(_ModerationFormatter())

        root = logging.getLogger(name or f"qdb.moderation.{id(self):x}")
        root.setLevel(logging.INFO)
        root.propagate = False
        _drop_stale(root)
        root.addHandler(handler)

        self.log = root
        self.handler = handler

    def record(self, name: str, action: str, on: object) -> None:
        try:
            self.log.info({"ts": _now(), "name": name, "action": action, "on": on})
        except Exception:  # noqa: BLE001
            log.exception("could not record moderation action %s by %s", action, name)

    def close(self) -> None:
        self.log.removeHandler(self.handler)
        self.handler.close()


class AccessLogger:
    def __init__(self, basename: str | Path, name: Optional[str] = None):
        root = logging.getLogger(name or f"qdb.access.{id(self):x}")
        root.setLevel(logging.INFO)
        root.propagate = False
        _drop_stale(root)

        basename = Path(basename).with_suffix("")  # access
        jsonl_file = _open_file(basename.with_suffix(".jsonl"))

        # json lines
        h = logging.handlers.TimedRotatingFileHandler(
            jsonl_file, when="midnight", backupCount=7, encoding="utf-8"
        )
        h.setFormatter(_JSONFormatter())
        root.addHandler(h)

        self.log = root
        self.handler = h
        self.path = jsonl_file

    def end(
        self,
        user: str,
        ip: str,
        method: str,
        path: str,
        status: int,
        duration_ms: int,
    ):
        self.log.info(
            {
                "event": "end",
                "ts": _now(),
                "user": user,
                "ip": ip,
                "method": method,
                "path": path,
                "status": status,
                "ms": duration_ms,
            }
        )

    def deny(self, user: str, method: str, path: str, reason: str):
        self.log.info(
            {
                "event": "deny",
                "ts": _now(),
                "user": user,
                "method": method,
                "path": path,
                "reason": reason,
            }
        )

    def auth_fail(self, ip: str, supplied_user: str | None, reason: str):
        self.log.warning(
            {
                "event": "auth_fail",
                "ts": _now(),
                "ip": ip,
                "user": supplied_user or "-",
                "reason": reason,
            }
        )

    def close(self) -> None:
        self.log.removeHandler(self.handler)
        self.handler.close()
