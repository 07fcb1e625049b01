from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

ToolCallStatus = Literal["pending", "success", "error"]
Priority = Literal["low", "normal", "high"]


@dataclass
class SessionContext:
    session_id: str
    start_time: float
    title: str | None = None
    cwd: str | None = None
    configuration: dict[str, Any] = field(default_factory=dict)


@dataclass
class ConversationMessage:
    id: str
    role: str
    content: str
    timestamp: float


@dataclass
class ConversationContext:
    messages: list[ConversationMessage] = field(default_factory=list)
    summary: str | None = None
    # Last message covered by ``summary``; later messages are kept verbatim.
    summary_cutoff: str | None = None


@dataclass
class ToolCallRecord:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    output: str | None = None
    status: ToolCallStatus = "pending"
    error: dict[str, Any] | None = None
    message_id: str | None = None
    hooks: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class AssembledSession:
    session: SessionContext
    conversation: ConversationContext
    tool_calls: list[ToolCallRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ToolLayer:
    recent_calls: list[ToolCallRecord] = field(default_factory=list)
    tool_states: dict[str, dict[str, Any]] = field(default_factory=dict)
    dependencies: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class ContextMetadata:
    total_tokens: int
    priority: Priority
    last_updated: float


@dataclass
class LayeredContext:
    system: str
    session: SessionContext
    conversation: ConversationContext
    tool: ToolLayer
    workspace: dict[str, Any]
    metadata: ContextMetadata

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
