from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Union

from ..cancellation import CancellationToken
from ..errors import ExecutionStateError, ToolErrorType
from ..hooks.models import HookOutcome
from ..permissions.models import PermissionDecision, PermissionMode
from ..permissions.signature import Signature
from ..tools.base import Tool, ToolResult


def new_tool_use_id() -> str:
    return f"toolu_{uuid.uuid4().hex[:16]}"


@dataclass
class ToolCallRequest:
    tool_name: str
    params: dict[str, Any]
    session_id: str
    message_id: str | None = None
    tool_use_id: str = field(default_factory=new_tool_use_id)
    # Snapshot of the session mode; filled in by the pipeline when None.
    mode: PermissionMode | None = None
    cancel: CancellationToken = field(default_factory=CancellationToken)


@dataclass(frozen=True)
class Completed:
    result: ToolResult


@dataclass(frozen=True)
class Aborted:
    result: ToolResult
    error_type: ToolErrorType
    reason: str
    stage: str | None = None


Terminal = Union[Completed, Aborted]


@dataclass(eq=False)
class ToolExecution:
    """Per-call state threaded through the stages.

    Fields are grouped by the stage that sets them. The execution ends in
    exactly one terminal outcome; setting a second one raises.
    """

    request: ToolCallRequest
    execution_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")
    started_at: float = field(default_factory=time.monotonic)
    current_stage: str | None = None
    stages_run: list[str] = field(default_factory=list)

    # Discovery
    tool: Tool | None = None
    # Permission
    args: dict[str, Any] | None = None
    signature: Signature | None = None
    decision: PermissionDecision | None = None
    # Permission / Hook(Pre)
    needs_confirmation: bool = False
    confirmation_reason: str | None = None
    # Hook(Pre)
    pre_hook: HookOutcome | None = None
    # Confirmation
    confirmed: bool = False
    # Execution
    raw_result: ToolResult | None = None
    # Hook(Post)
    post_hook: HookOutcome | None = None
    modified_output: str | None = None
    # Hooks, both events
    hook_warnings: list[str] = field(default_factory=list)
    additional_context: list[str] = field(default_factory=list)

    _terminal: Terminal | None = field(default=None, repr=False)

    @property
    def hook_correlation_id(self) -> str:
        return self.request.tool_use_id

    @property
    def mode(self) -> PermissionMode:
        return self.request.mode or "default"

    @property
    def terminal(self) -> Terminal | None:
        return self._terminal

    @property
    def is_terminal(self) -> bool:
        return self._terminal is not None

    @property
    def result(self) -> ToolResult:
        if self._terminal is None:
            raise ExecutionStateError(f"Execution {self.execution_id} has no result yet")
        return self._terminal.result

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    def base_metadata(self) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "tool_name": self.request.tool_name,
            "tool_use_id": self.request.tool_use_id,
            "execution_id": self.execution_id,
            "duration_ms": self.duration_ms,
        }
        if self.signature is not None:
            meta["signature"] = str(self.signature)
        if self.hook_warnings:
            meta["warnings"] = list(self.hook_warnings)
        return meta

    def _set_terminal(self, terminal: Terminal) -> None:
        if self._terminal is not None:
            raise ExecutionStateError(
                f"Execution {self.execution_id} already terminated ({type(self._terminal).__name__})"
            )
        self._terminal = terminal

    def abort(self, error_type: ToolErrorType, reason: str, **metadata: Any) -> Aborted:
        meta = self.base_metadata()
        meta["stage"] = self.current_stage
        if self.decision is not None and self.decision.matched_rule:
            meta.setdefault("matched_rule", self.decision.matched_rule)
        meta.update({k: v for k, v in metadata.items() if v is not None})
        result = ToolResult.failure(reason, type=error_type, **meta)
        result.display_content = f"{self.request.tool_name}: {reason}"
        aborted = Aborted(result=result, error_type=error_type, reason=reason, stage=self.current_stage)
        self._set_terminal(aborted)
        return aborted

    def complete(self, result: ToolResult) -> Completed:
        done = Completed(result=result)
        self._set_terminal(done)
        return done
