from __future__ import annotations

import uuid
from typing import Any, Mapping

from .models import MessageCreated, PartCreated, PartUpdated, SessionCreated, SessionUpdated
from .store import EventStore


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class SessionRecorder:
    """Typed writers over an EventStore. Every method appends exactly one event."""

    def __init__(self, store: EventStore):
        self.store = store

    @property
    def session_id(self) -> str:
        return self.store.session_id

    def create_session(self, *, title: str | None = None, cwd: str | None = None, **metadata: Any) -> SessionCreated:
        return self.store.append(SessionCreated(session_id=self.session_id, title=title, cwd=cwd, metadata=metadata))  # type: ignore[return-value]

    def update_session(self, configuration: Mapping[str, Any]) -> SessionUpdated:
        return self.store.append(SessionUpdated(session_id=self.session_id, configuration=dict(configuration)))  # type: ignore[return-value]

    def add_message(self, role: str, message_id: str | None = None) -> str:
        mid = message_id or new_id("msg")
        self.store.append(MessageCreated(session_id=self.session_id, message_id=mid, role=role))
        return mid

    def _part(self, message_id: str, part_type: str, data: dict[str, Any], part_id: str | None = None) -> str:
        pid = part_id or new_id("part")
        self.store.append(
            PartCreated(session_id=self.session_id, message_id=message_id, part_id=pid, part_type=part_type, data=data)
        )
        return pid

    def add_text(self, message_id: str, text: str) -> str:
        return self._part(message_id, "text", {"text": text})

    def update_text(self, message_id: str, part_id: str, text: str) -> None:
        self.store.append(
            PartUpdated(session_id=self.session_id, message_id=message_id, part_id=part_id, part_type="text", data={"text": text})
        )

    def add_tool_call(self, message_id: str, call_id: str, tool_name: str, tool_input: Mapping[str, Any]) -> str:
        return self._part(
            message_id,
            "tool_call",
            {"call_id": call_id, "tool_name": tool_name, "input": dict(tool_input)},
        )

    def add_tool_result(
        self,
        message_id: str,
        call_id: str,
        *,
        tool_name: str,
        output: str,
        success: bool,
        error: Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        return self._part(
            message_id,
            "tool_result",
            {
                "call_id": call_id,
                "tool_name": tool_name,
                "output": output,
                "status": "success" if success else "error",
                "error": dict(error) if error else None,
                "metadata": dict(metadata or {}),
            },
        )

    def add_hook_outcome(self, message_id: str, tool_use_id: str, event: str, outcome: Mapping[str, Any]) -> str:
        return self._part(message_id, "hook", {"tool_use_id": tool_use_id, "event": event, **outcome})

    def add_summary(self, text: str, *, cutoff_message_id: str | None, tokens_before: int | None = None) -> str:
        """Record a compaction summary as its own system message."""
        mid = self.add_message("system")
        self._part(mid, "summary", {"text": text, "cutoff_message_id": cutoff_message_id, "tokens_before": tokens_before})
        return mid
