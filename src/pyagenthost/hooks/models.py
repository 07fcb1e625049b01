from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from ..errors import ConfigParseError, ToolErrorType
from .matcher import HookMatcher

HookEvent = Literal["PreToolUse", "PostToolUse", "Stop"]
HOOK_EVENTS: tuple[str, ...] = ("PreToolUse", "PostToolUse", "Stop")

FailureBehavior = Literal["ignore", "block"]
HookDecisionKind = Literal["allow", "ask", "deny"]

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_STDIN_BYTES = 1024 * 1024
DEFAULT_MAX_OUTPUT_BYTES = 256 * 1024
DEFAULT_MAX_CONCURRENT_HOOKS = 4


@dataclass(frozen=True)
class HookDefinition:
    event: HookEvent
    matcher: HookMatcher
    command: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    source: str | None = None


@dataclass
class HookExecutionRecord:
    """Dedupe marker for one ``(tool_use_id, event)`` pair."""

    tool_use_id: str
    event: str
    claimed_at: float
    executed_at: float | None = None


@dataclass(frozen=True)
class HookExecutionResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    duration_ms: int = 0


@dataclass(frozen=True)
class HookDecision:
    kind: HookDecisionKind = "allow"
    reason: str | None = None
    modified_input: dict[str, Any] | None = None
    modified_output: str | None = None
    additional_context: str | None = None
    warning: str | None = None
    # Set when a block came from a timeout/failure policy rather than the hook's own choice.
    error_type: ToolErrorType | None = None


@dataclass
class HookRun:
    command: str
    decision: HookDecision
    result: HookExecutionResult | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "command": self.command,
            "decision": self.decision.kind,
            "reason": self.decision.reason,
        }
        if self.result is not None:
            out.update(
                exit_code=self.result.exit_code,
                timed_out=self.result.timed_out,
                cancelled=self.result.cancelled,
                duration_ms=self.result.duration_ms,
            )
        return out


@dataclass
class HookOutcome:
    """Combined result of every hook that fired for one event."""

    event: HookEvent
    decision: HookDecisionKind = "allow"
    reason: str | None = None
    error_type: ToolErrorType | None = None
    modified_input: dict[str, Any] | None = None
    modified_output: str | None = None
    additional_context: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    runs: list[HookRun] = field(default_factory=list)
    skipped: bool = False

    @property
    def fired(self) -> bool:
        return bool(self.runs)


_BEHAVIORS = {"ignore", "block"}


def _number(obj: dict[str, Any], key: str, default: float, source: str | None, *, minimum: float = 0) -> float:
    v = obj.get(key, default)
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v <= minimum:
        raise ConfigParseError(source, f"hooks.{key} must be a number > {minimum:g}")
    return float(v)


@dataclass
class HookSettings:
    enabled: bool = True
    default_timeout: float = DEFAULT_TIMEOUT_SECONDS
    timeout_behavior: FailureBehavior = "ignore"
    failure_behavior: FailureBehavior = "ignore"
    max_concurrent_hooks: int = DEFAULT_MAX_CONCURRENT_HOOKS
    max_stdin_bytes: int = DEFAULT_MAX_STDIN_BYTES
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    definitions: list[HookDefinition] = field(default_factory=list)

    def for_event(self, event: str) -> list[HookDefinition]:
        return [d for d in self.definitions if d.event == event]

    @staticmethod
    def from_obj(obj: Any, source: str | None = None, base: "HookSettings | None" = None) -> "HookSettings":
        """Parse a ``hooks`` settings block, layering on top of ``base``.

        Each event key holds a list of groups::

            {"matcher": "Edit|Write", "path": "src/**", "hooks": [{"command": "...", "timeout": 5}]}

        A group may also carry ``command`` directly instead of a ``hooks`` list.
        """
        if not isinstance(obj, dict):
            raise ConfigParseError(source, "hooks must be an object")
        cur = base or HookSettings()
        out = HookSettings(
            enabled=cur.enabled,
            default_timeout=cur.default_timeout,
            timeout_behavior=cur.timeout_behavior,
            failure_behavior=cur.failure_behavior,
            max_concurrent_hooks=cur.max_concurrent_hooks,
            max_stdin_bytes=cur.max_stdin_bytes,
            max_output_bytes=cur.max_output_bytes,
            definitions=list(cur.definitions),
        )

        if "enabled" in obj:
            if not isinstance(obj["enabled"], bool):
                raise ConfigParseError(source, "hooks.enabled must be a boolean")
            out.enabled = obj["enabled"]
        for key in ("timeout_behavior", "failure_behavior"):
            camel = "timeoutBehavior" if key == "timeout_behavior" else "failureBehavior"
            v = obj.get(key, obj.get(camel))
            if v is None:
                continue
            if v not in _BEHAVIORS:
                raise ConfigParseError(source, f"hooks.{key} must be 'ignore' or 'block', got {v!r}")
            setattr(out, key, v)
        if "default_timeout" in obj:
            out.default_timeout = _number(obj, "default_timeout", out.default_timeout, source)
        for key in ("max_concurrent_hooks", "max_stdin_bytes", "max_output_bytes"):
            if key in obj:
                setattr(out, key, int(_number(obj, key, getattr(out, key), source)))

        for event in HOOK_EVENTS:
            groups = obj.get(event)
            if groups is None:
                continue
            if not isinstance(groups, list):
                raise ConfigParseError(source, f"hooks.{event} must be a list")
            for group in groups:
                out.definitions.extend(_parse_group(event, group, out.default_timeout, source))
        return out


def _parse_group(event: str, group: Any, default_timeout: float, source: str | None) -> list[HookDefinition]:
    if not isinstance(group, dict):
        raise ConfigParseError(source, f"hooks.{event} entries must be objects")
    matcher_raw = group.get("matcher", "*")
    if not isinstance(matcher_raw, str):
        raise ConfigParseError(source, f"hooks.{event}.matcher must be a string")
    path_glob = group.get("path", group.get("paths"))
    command_regex = group.get("command_regex", group.get("commandRegex"))
    matcher = HookMatcher.compile(matcher_raw, path_glob=path_glob, command_regex=command_regex, source=source)

    entries = group.get("hooks")
    if entries is None:
        entries = [group]
    if not isinstance(entries, list):
        raise ConfigParseError(source, f"hooks.{event}.hooks must be a list")

    defs: list[HookDefinition] = []
    for h in entries:
        if not isinstance(h, dict):
            raise ConfigParseError(source, f"hooks.{event} hook must be an object")
        if h.get("type", "command") != "command":
            raise ConfigParseError(source, f"unsupported hook type {h.get('type')!r}")
        cmd = h.get("command")
        if not isinstance(cmd, str) or not cmd.strip():
            raise ConfigParseError(source, f"hooks.{event} hook requires a non-empty command")
        timeout = _number(h, "timeout", default_timeout, source) if "timeout" in h else default_timeout
        defs.append(HookDefinition(event=event, matcher=matcher, command=cmd, timeout=timeout, source=source))  # type: ignore[arg-type]
    return defs
