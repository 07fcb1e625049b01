from __future__ import annotations

import time
from typing import Any, Iterable, Mapping, Sequence

from ..events.models import MessageCreated, PartCreated, PartUpdated, SessionCreated, SessionEvent, SessionUpdated
from .models import (
    AssembledSession,
    ContextMetadata,
    ConversationContext,
    ConversationMessage,
    LayeredContext,
    Priority,
    SessionContext,
    ToolCallRecord,
    ToolLayer,
)
from .tokens import CharTokenEstimator, TokenEstimator, estimate_value

_PATH_KEYS = ("file_path", "path", "notebook_path")


class _Replay:
    """Mutable accumulator for one assemble() call."""

    def __init__(self, first: SessionEvent):
        self.session = SessionContext(session_id=first.session_id, start_time=first.timestamp)
        self.messages: dict[str, ConversationMessage] = {}
        self.summary: str | None = None
        self.summary_cutoff: str | None = None
        self.calls: dict[str, ToolCallRecord] = {}
        self.seen_created = False

    def apply(self, ev: SessionEvent) -> None:
        if isinstance(ev, SessionCreated):
            if not self.seen_created:
                self.seen_created = True
                self.session.session_id = ev.session_id
                self.session.start_time = ev.timestamp
                self.session.title = ev.title
                self.session.cwd = ev.cwd
        elif isinstance(ev, SessionUpdated):
            self.session.configuration = dict(ev.configuration)
        elif isinstance(ev, MessageCreated):
            if ev.message_id not in self.messages:
                self.messages[ev.message_id] = ConversationMessage(ev.message_id, ev.role, "", ev.timestamp)
        elif isinstance(ev, (PartCreated, PartUpdated)):
            self._apply_part(ev)
        else:
            raise TypeError(f"Unhandled session event: {type(ev).__name__}")

    def _apply_part(self, ev: PartCreated | PartUpdated) -> None:
        data = ev.data or {}
        if ev.part_type == "text":
            msg = self.messages.get(ev.message_id)
            if msg is not None:
                msg.content = str(data.get("text") or "")
        elif ev.part_type == "summary":
            self.summary = str(data.get("text") or "")
            self.summary_cutoff = data.get("cutoff_message_id")
        elif ev.part_type == "tool_call":
            key = str(data.get("call_id") or ev.part_id)
            rec = self.calls.get(key)
            if rec is None:
                rec = ToolCallRecord(id=key, name=str(data.get("tool_name") or "unknown"), message_id=ev.message_id)
                self.calls[key] = rec
            if "tool_name" in data:
                rec.name = str(data["tool_name"])
            if isinstance(data.get("input"), dict):
                rec.input = dict(data["input"])
        elif ev.part_type == "tool_result":
            key = str(data.get("call_id") or ev.part_id)
            rec = self.calls.get(key)
            if rec is None:
                # Result without a recorded call (partial log).
                rec = ToolCallRecord(id=key, name=str(data.get("tool_name") or "unknown"), message_id=ev.message_id)
                self.calls[key] = rec
            rec.output = data.get("output")
            rec.error = data.get("error") or None
            status = data.get("status")
            if status not in ("success", "error"):
                status = "error" if rec.error else "success"
            rec.status = status
        elif ev.part_type == "hook":
            rec = self.calls.get(str(data.get("tool_use_id")))
            if rec is not None:
                rec.hooks.append({k: v for k, v in data.items() if k != "tool_use_id"})
        # Other part types carry no state for prompting.


class ContextAssembler:
    """Pure projection of session events into prompting context.

    ``assemble`` depends only on its input, so replaying the same events always
    yields an equal AssembledSession.
    """

    def __init__(self, estimator: TokenEstimator | None = None, recent_calls_limit: int = 20):
        self.estimator = estimator or CharTokenEstimator()
        self.recent_calls_limit = recent_calls_limit

    def assemble(self, events: Sequence[SessionEvent]) -> AssembledSession | None:
        if not events:
            return None
        replay = _Replay(events[0])
        for ev in events:
            replay.apply(ev)
        return AssembledSession(
            session=replay.session,
            conversation=ConversationContext(
                messages=list(replay.messages.values()),
                summary=replay.summary,
                summary_cutoff=replay.summary_cutoff,
            ),
            tool_calls=list(replay.calls.values()),
        )

    def estimate_tokens(self, assembled: AssembledSession, system: str = "") -> int:
        """Tokens of what a prompt would carry: summary plus everything after its cutoff."""
        conv = assembled.conversation
        live = effective_messages(conv)
        summarized = {m.id for m in conv.messages} - {m.id for m in live}
        total = self.estimator.estimate(system)
        total += estimate_value(self.estimator, conv.summary)
        for m in live:
            total += self.estimator.estimate(m.content)
        for c in assembled.tool_calls:
            if c.message_id in summarized:
                continue
            total += estimate_value(self.estimator, c.input) + estimate_value(self.estimator, c.output)
        return total

    def assemble_layered(
        self,
        events: Sequence[SessionEvent],
        *,
        system: str = "",
        workspace: Mapping[str, Any] | None = None,
        priority: Priority = "normal",
    ) -> LayeredContext | None:
        assembled = self.assemble(events)
        if assembled is None:
            return None
        workspace = dict(workspace or {})
        tool_layer = ToolLayer(
            recent_calls=assembled.tool_calls[-self.recent_calls_limit :],
            tool_states=tool_states(assembled.tool_calls),
            dependencies=dependencies(assembled.tool_calls),
        )
        total = self.estimate_tokens(assembled, system) + estimate_value(self.estimator, workspace or None)
        return LayeredContext(
            system=system,
            session=assembled.session,
            conversation=assembled.conversation,
            tool=tool_layer,
            workspace=workspace,
            metadata=ContextMetadata(total_tokens=total, priority=priority, last_updated=time.time()),
        )


def tool_states(calls: Iterable[ToolCallRecord]) -> dict[str, dict[str, Any]]:
    states: dict[str, dict[str, Any]] = {}
    for c in calls:
        st = states.setdefault(c.name, {"calls": 0, "success": 0, "error": 0, "pending": 0, "last_status": None})
        st["calls"] += 1
        st[c.status] += 1
        st["last_status"] = c.status
    return states


def dependencies(calls: Iterable[ToolCallRecord]) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for c in calls:
        paths = [str(c.input[k]) for k in _PATH_KEYS if isinstance(c.input.get(k), str)]
        if paths:
            out[c.id] = paths
    return out


def effective_messages(conversation: ConversationContext) -> list[ConversationMessage]:
    """Messages after the latest summary's cutoff (all of them when there is no summary)."""
    msgs = conversation.messages
    if conversation.summary_cutoff is not None:
        idx = next((i for i, m in enumerate(msgs) if m.id == conversation.summary_cutoff), None)
        if idx is not None:
            msgs = msgs[idx + 1 :]
    return list(msgs)
