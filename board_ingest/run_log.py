from __future__ import annotations

import json
import traceback
import uuid
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, TextIO

_MESSAGE_LIMIT = 2000
_TRACEBACK_LIMIT = 12000


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clip(text: str, limit: int) -> str:
    s = str(text or "")
    return s if len(s) <= limit else s[: max(0, limit - 1)] + "…"


def _echo_line(record: dict[str, Any]) -> str:
    parts = [f"[{record['level']}] {record['event']}"]
    if record.get("url"):
        parts.append(record["url"])
    data = record.get("data") or {}
    parts.extend(
        f"{k}={data[k]}" for k in sorted(data) if not isinstance(data[k], (dict, list))
    )
    return " ".join(parts)


class _Sink:
    """Output targets shared by a logger and every logger bound from it."""

    def __init__(self, path: Path | None, *, overwrite: bool, echo: TextIO | None) -> None:
        self.path = path
        self.overwrite = overwrite
        self.echo = echo
        self.lock = Lock()
        self._fp: TextIO | None = None

    def open(self) -> None:
        if self.path is None:
            return
        with self.lock:
            if self._fp is None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._fp = self.path.open("w" if self.overwrite else "a", encoding="utf-8", newline="\n")

    def close(self) -> None:
        with self.lock:
            fp, self._fp = self._fp, None
        if fp is not None:
            fp.flush()
            fp.close()

    def emit(self, record: dict[str, Any]) -> None:
        if self.path is not None:
            self.open()
            line = json.dumps(record, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
            with self.lock:
                if self._fp is not None:
                    self._fp.write(line + "\n")
                    self._fp.flush()
        if self.echo is not None:
            with self.lock:
                self.echo.write(_echo_line(record) + "\n")
                self.echo.flush()


class RunLogger:
    """
    JSON-lines event log for ingestion runs.

    Each record carries ts, level, event, session_id and, when set, run_id,
    url and a data object. With path=None nothing is written to disk; the
    optional echo stream still receives one readable line per event.

    bind() returns a logger that writes to the same targets and adds fixed
    fields (for example board_id) to every record's data.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        overwrite: bool = False,
        run_id: str | None = None,
        session_id: str | None = None,
        echo: TextIO | None = None,
    ) -> None:
        self._sink = _Sink(Path(path) if path is not None else None, overwrite=bool(overwrite), echo=echo)
        self._run_id = (run_id or "").strip() or None
        self._session_id = (session_id or "").strip() or uuid.uuid4().hex
        self._context: dict[str, Any] = {}

    @classmethod
    def open(
        cls,
        path: str | Path | None,
        *,
        overwrite: bool = False,
        run_id: str | None = None,
        echo: TextIO | None = None,
    ) -> "RunLogger":
        logger = cls(path, overwrite=overwrite, run_id=run_id, echo=echo)
        logger._sink.open()
        return logger

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def run_id(self) -> str | None:
        return self._run_id

    def bind(self, **context: Any) -> "RunLogger":
        child = object.__new__(RunLogger)
        child._sink = self._sink
        child._run_id = self._run_id
        child._session_id = self._session_id
        child._context = {**self._context, **{k: v for k, v in context.items() if v is not None}}
        return child

    def close(self) -> None:
        self._sink.close()

    def __enter__(self) -> "RunLogger":
        self._sink.open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def info(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("INFO", event, url=url, **data)

    def warning(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("WARN", event, url=url, **data)

    def error(self, event: str, *, url: str | None = None, **data: Any) -> None:
        self.log("ERROR", event, url=url, **data)

    def exception(self, event: str, *, exc: BaseException, url: str | None = None, **data: Any) -> None:
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        data["error"] = {
            "type": type(exc).__name__,
            "message": _clip(str(exc), _MESSAGE_LIMIT),
            "traceback": _clip(tb, _TRACEBACK_LIMIT),
        }
        self.log("ERROR", event, url=url, **data)

    def log(self, level: str, event: str, *, url: str | None = None, **data: Any) -> None:
        record: dict[str, Any] = {
            "ts": _utc_now_iso(),
            "level": (level or "").strip().upper() or "INFO",
            "event": (event or "").strip() or "event",
            "session_id": self._session_id,
        }
        if self._run_id:
            record["run_id"] = self._run_id

        u = (url or "").strip()
        if u:
            record["url"] = u

        merged = {**self._context, **data}
        if merged:
            record["data"] = merged

        self._sink.emit(record)
