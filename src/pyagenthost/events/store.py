from __future__ import annotations

import dataclasses
import json
import threading
from pathlib import Path

from platformdirs import user_data_dir

from ..util.fs import append_line_durable
from ..util.log import get_logger
from .models import SessionEvent, UnknownEventKind, event_from_dict

logger = get_logger(__name__)

APP_NAME = "pyagenthost"


def default_events_dir() -> Path:
    return Path(user_data_dir(APP_NAME)) / "sessions"


class EventStore:
    """Append-only JSONL event log, one file per session.

    ``append`` assigns the next ``seq`` and writes under a lock, so concurrent
    tool calls in one session keep a total order. Lines that fail to decode are
    skipped on read; the file is never rewritten.
    """

    def __init__(self, session_id: str, path: Path):
        self.session_id = session_id
        self.path = path
        self._lock = threading.Lock()
        self._next_seq: int | None = None

    @staticmethod
    def open(session_id: str, root: Path | None = None) -> "EventStore":
        d = root if root is not None else default_events_dir()
        d.mkdir(parents=True, exist_ok=True)
        return EventStore(session_id=session_id, path=d / f"{session_id}.jsonl")

    @staticmethod
    def list_sessions(root: Path | None = None) -> list[str]:
        d = root if root is not None else default_events_dir()
        if not d.exists():
            return []
        files = sorted(d.glob("*.jsonl"), key=lambda p: p.stat().st_mtime, reverse=True)
        return [p.stem for p in files]

    def append(self, event: SessionEvent) -> SessionEvent:
        with self._lock:
            if self._next_seq is None:
                self._next_seq = max((e.seq for e in self.iter_events()), default=0) + 1
            stamped = dataclasses.replace(event, seq=self._next_seq, session_id=self.session_id)
            append_line_durable(self.path, json.dumps(stamped.to_dict(), ensure_ascii=False, default=str))
            self._next_seq += 1
        return stamped

    def iter_events(self) -> list[SessionEvent]:
        if not self.path.exists():
            return []
        out: list[SessionEvent] = []
        text = self.path.read_text(encoding="utf-8", errors="replace")
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
                if not isinstance(obj, dict):
                    raise ValueError("event line is not an object")
                out.append(event_from_dict(obj))
            except (ValueError, TypeError, UnknownEventKind) as e:
                logger.warning("event_line_skipped", path=str(self.path), line=lineno, error=str(e))
                continue
        return out
