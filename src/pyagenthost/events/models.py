"""Session events.

Every fact about a session is one immutable event. The set of kinds is closed:
``EVENT_TYPES`` maps each ``kind`` tag to its class, and decoding an unknown
tag raises ``UnknownEventKind``.

A *part* is an addressable fragment of a message. Part types used by the host:
``text``, ``tool_call``, ``tool_result``, ``summary`` and ``hook``.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar, Union


class UnknownEventKind(ValueError):
    pass


@dataclass(frozen=True, kw_only=True)
class _EventBase:
    kind: ClassVar[str]

    session_id: str
    seq: int = -1
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True, kw_only=True)
class SessionCreated(_EventBase):
    kind: ClassVar[str] = "session_created"

    title: str | None = None
    cwd: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class SessionUpdated(_EventBase):
    kind: ClassVar[str] = "session_updated"

    configuration: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class MessageCreated(_EventBase):
    kind: ClassVar[str] = "message_created"

    message_id: str
    role: str


@dataclass(frozen=True, kw_only=True)
class PartCreated(_EventBase):
    kind: ClassVar[str] = "part_created"

    message_id: str
    part_id: str
    part_type: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class PartUpdated(_EventBase):
    kind: ClassVar[str] = "part_updated"

    message_id: str
    part_id: str
    part_type: str
    data: dict[str, Any] = field(default_factory=dict)


SessionEvent = Union[SessionCreated, SessionUpdated, MessageCreated, PartCreated, PartUpdated]

EVENT_TYPES: dict[str, type] = {
    cls.kind: cls for cls in (SessionCreated, SessionUpdated, MessageCreated, PartCreated, PartUpdated)
}


def event_from_dict(obj: dict[str, Any]) -> SessionEvent:
    kind = obj.get("kind")
    cls = EVENT_TYPES.get(kind)  # type: ignore[arg-type]
    if cls is None:
        raise UnknownEventKind(f"Unknown event kind: {kind!r}")
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in obj.items() if k in names})
