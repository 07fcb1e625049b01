from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Protocol

from ..cancellation import CancellationToken
from ..errors import ToolErrorType, ToolValidationError
from ..permissions.models import ToolKind

if TYPE_CHECKING:
    from .background import BackgroundShellManager


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]   # JSONSchema
    kind: ToolKind               # "readonly" | "write" | "execute"
    signature_key: str | None = None  # param holding the salient content for permission matching

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


class Tool(Protocol):
    spec: ToolSpec
    async def execute(self, ctx: "ToolContext", args: dict[str, Any]) -> "ToolResult": ...


@dataclass(frozen=True)
class ToolError:
    type: ToolErrorType
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "message": self.message}


@dataclass
class ToolResult:
    success: bool
    llm_content: str
    display_content: str | None = None
    error: ToolError | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def ok(llm_content: str, display_content: str | None = None, **metadata: Any) -> "ToolResult":
        return ToolResult(True, llm_content, display_content, metadata=dict(metadata))

    @staticmethod
    def failure(message: str, type: ToolErrorType = "execution_error", **metadata: Any) -> "ToolResult":
        return ToolResult(False, message, None, ToolError(type, message), dict(metadata))

    @property
    def is_error(self) -> bool:
        return not self.success

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "llm_content": self.llm_content,
            "display_content": self.display_content,
            "metadata": self.metadata,
        }
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out


@dataclass
class ToolContext:
    cwd: str
    session_id: str | None = None
    tool_use_id: str | None = None
    cancel: CancellationToken = field(default_factory=CancellationToken)
    shells: "BackgroundShellManager | None" = None
    # Where per-session state (todo lists) is persisted; None uses the user data dir.
    state_dir: Path | None = None


_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


def _type_ok(value: Any, expected: str | list[str]) -> bool:
    names = expected if isinstance(expected, list) else [expected]
    for name in names:
        if name == "null" and value is None:
            return True
        py = _JSON_TYPES.get(name)
        if py is None:
            return True
        if isinstance(value, bool) and name in ("integer", "number"):
            continue
        if isinstance(value, py):
            return True
    return False


def validate_params(spec: ToolSpec, params: Mapping[str, Any]) -> dict[str, Any]:
    """Check required keys, primitive types and enums; fill in defaults."""
    if not isinstance(params, Mapping):
        raise ToolValidationError(f"{spec.name}: parameters must be an object")
    schema = spec.parameters or {}
    props: dict[str, Any] = schema.get("properties") or {}
    out = dict(params)

    missing = [k for k in schema.get("required", []) if out.get(k) is None]
    if missing:
        raise ToolValidationError(f"{spec.name}: missing required parameter(s): {', '.join(missing)}")

    for key, prop in props.items():
        if key not in out or out[key] is None:
            if "default" in prop:
                out[key] = prop["default"]
            continue
        value = out[key]
        expected = prop.get("type")
        if expected is not None and not _type_ok(value, expected):
            raise ToolValidationError(
                f"{spec.name}: parameter '{key}' must be {expected}, got {type(value).__name__}"
            )
        enum = prop.get("enum")
        if enum is not None and value not in enum:
            raise ToolValidationError(f"{spec.name}: parameter '{key}' must be one of {enum}")
    return out
