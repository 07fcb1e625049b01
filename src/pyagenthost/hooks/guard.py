from __future__ import annotations

import threading
import time

from .models import HookExecutionRecord


class HookExecutionGuard:
    """At-most-once firing per ``(tool_use_id, event)``.

    ``can_execute`` claims the pair atomically, so concurrent or retried stage
    entries see ``False`` after the first caller. Records are released by
    ``cleanup`` when the owning call's lifecycle ends.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], HookExecutionRecord] = {}
        self._lock = threading.Lock()

    def can_execute(self, tool_use_id: str, event: str) -> bool:
        key = (tool_use_id, event)
        with self._lock:
            if key in self._records:
                return False
            self._records[key] = HookExecutionRecord(tool_use_id, event, claimed_at=time.time())
            return True

    def mark_executed(self, tool_use_id: str, event: str) -> None:
        key = (tool_use_id, event)
        with self._lock:
            rec = self._records.get(key)
            if rec is None:
                rec = HookExecutionRecord(tool_use_id, event, claimed_at=time.time())
                self._records[key] = rec
            rec.executed_at = time.time()

    def has_executed(self, tool_use_id: str, event: str) -> bool:
        with self._lock:
            rec = self._records.get((tool_use_id, event))
            return rec is not None and rec.executed_at is not None

    def cleanup(self, tool_use_id: str) -> None:
        with self._lock:
            for key in [k for k in self._records if k[0] == tool_use_id]:
                del self._records[key]

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
