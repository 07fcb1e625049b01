from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from .patterns import CompiledPattern
    from .signature import Signature

PermissionMode = Literal["default", "auto_edit", "plan", "yolo"]
Disposition = Literal["allow", "ask", "deny"]
ToolKind = Literal["readonly", "write", "execute"]
RuleOrigin = Literal["config", "session"]

PERMISSION_MODES: tuple[str, ...] = ("default", "auto_edit", "plan", "yolo")
DISPOSITIONS: tuple[str, ...] = ("deny", "ask", "allow")

_MODE_ALIASES = {
    "autoedit": "auto_edit",
    "accept_edits": "auto_edit",
    "acceptedits": "auto_edit",
    "bypass": "yolo",
}


def parse_mode(value: Any) -> PermissionMode:
    """Normalize a user-supplied mode name (``auto-edit``, ``autoEdit``...)."""
    if not isinstance(value, str):
        raise ValueError(f"Permission mode must be a string, got {type(value).__name__}")
    key = value.strip().replace("-", "_")
    key = re.sub(r"(?<=[a-z])([A-Z])", r"_\1", key).lower()
    key = _MODE_ALIASES.get(key, key)
    if key not in PERMISSION_MODES:
        raise ValueError(f"Unknown permission mode: {value!r}")
    return key  # type: ignore[return-value]


@dataclass(frozen=True)
class PermissionRule:
    pattern: "CompiledPattern"
    disposition: Disposition
    origin: RuleOrigin = "config"
    source: str | None = None

    @property
    def raw(self) -> str:
        return self.pattern.raw

    def matches(self, signature: "Signature") -> bool:
        return self.pattern.matches(signature)


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    requires_confirmation: bool
    reason: str
    disposition: Disposition
    matched_rule: str | None = None

    @staticmethod
    def allow(reason: str, rule: PermissionRule | None = None) -> "PermissionDecision":
        return PermissionDecision(True, False, reason, "allow", rule.raw if rule else None)

    @staticmethod
    def ask(reason: str, rule: PermissionRule | None = None) -> "PermissionDecision":
        return PermissionDecision(False, True, reason, "ask", rule.raw if rule else None)

    @staticmethod
    def deny(reason: str, rule: PermissionRule | None = None) -> "PermissionDecision":
        return PermissionDecision(False, False, reason, "deny", rule.raw if rule else None)
