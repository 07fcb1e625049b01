from __future__ import annotations

from pathlib import Path
from typing import Literal

# Closed set of error kinds surfaced in ToolResult.error.type
ToolErrorType = Literal[
    "validation_error",
    "permission_denied",
    "execution_error",
    "hook_failure",
    "hook_timeout",
    "aborted",
    "config_parse_error",
]


class AgentHostError(RuntimeError):
    """Base class for errors raised by pyagenthost."""


class ConfigParseError(AgentHostError):
    """A settings source, permission pattern or hook definition is malformed."""

    def __init__(self, path: Path | str | None, detail: str):
        self.path = str(path) if path is not None else None
        self.detail = detail
        where = self.path or "<inline>"
        super().__init__(f"{where}: {detail}")


class ToolValidationError(AgentHostError):
    """Tool parameters are missing or have the wrong type."""


class HookPayloadTooLarge(AgentHostError):
    """The JSON payload for a hook exceeds the configured stdin cap."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Hook input is {size} bytes, limit is {limit} bytes")


class PermissionRequestNotFound(AgentHostError):
    """No pending permission request matches (session_id, permission_id)."""

    def __init__(self, session_id: str, permission_id: str):
        self.session_id = session_id
        self.permission_id = permission_id
        super().__init__(f"Permission request not found: {session_id}/{permission_id}")


class ExecutionStateError(AgentHostError):
    """A ToolExecution was mutated after reaching its terminal result."""


class CancelledByUser(AgentHostError):
    """Raised from cancellation checkpoints when the token has been cancelled."""

    def __init__(self, reason: str = "Cancelled"):
        self.reason = reason
        super().__init__(reason)
