from __future__ import annotations

import threading
from typing import Iterable

from ..util.log import get_logger
from .models import PermissionDecision, PermissionMode, PermissionRule, ToolKind
from .patterns import CompiledPattern, compile_pattern
from .signature import Signature, parse_signature

logger = get_logger(__name__)


def mode_default(kind: ToolKind, mode: PermissionMode) -> PermissionDecision:
    """Disposition used when no rule matches."""
    if kind == "readonly":
        return PermissionDecision.allow(f"read-only tool allowed in {mode} mode")
    if mode == "yolo":
        return PermissionDecision.allow("yolo mode allows all tools")
    if mode == "plan":
        return PermissionDecision.deny("plan mode does not allow mutating tools")
    if mode == "auto_edit" and kind == "write":
        return PermissionDecision.allow("auto_edit mode allows file edits")
    return PermissionDecision.ask(f"{kind} tool requires confirmation in {mode} mode")


class PermissionEngine:
    """Rule-based allow/ask/deny evaluation.

    Config rules are fixed at construction. Session rules are added with
    ``remember`` and live only in memory. ``evaluate`` never mutates.
    """

    def __init__(self, rules: Iterable[PermissionRule] = ()):
        self._config_rules: list[PermissionRule] = list(rules)
        self._session_rules: list[PermissionRule] = []
        self._lock = threading.Lock()

    @classmethod
    def from_patterns(
        cls,
        *,
        allow: Iterable[str] = (),
        ask: Iterable[str] = (),
        deny: Iterable[str] = (),
        source: str | None = None,
    ) -> "PermissionEngine":
        rules: list[PermissionRule] = []
        for disposition, patterns in (("deny", deny), ("ask", ask), ("allow", allow)):
            for raw in patterns:
                rules.append(PermissionRule(compile_pattern(raw, source), disposition, "config", source))  # type: ignore[arg-type]
        return cls(rules)

    def rules(self) -> list[PermissionRule]:
        with self._lock:
            return [*self._config_rules, *self._session_rules]

    @property
    def session_rules(self) -> list[PermissionRule]:
        with self._lock:
            return list(self._session_rules)

    def evaluate(self, signature: Signature, kind: ToolKind, mode: PermissionMode) -> PermissionDecision:
        rules = self.rules()

        def first(disposition: str) -> PermissionRule | None:
            for r in rules:
                if r.disposition == disposition and r.matches(signature):
                    return r
            return None

        deny = first("deny")
        if deny is not None:
            return PermissionDecision.deny(f"Denied by rule {deny.raw}", deny)

        ask = first("ask")
        allow = first("allow") if ask is None else None
        matched = ask or allow

        if mode == "plan" and kind != "readonly":
            return PermissionDecision.deny("plan mode does not allow mutating tools", matched)

        if ask is not None:
            if mode == "yolo":
                return PermissionDecision.allow(f"Rule {ask.raw} auto-approved in yolo mode", ask)
            return PermissionDecision.ask(f"Rule {ask.raw} requires confirmation", ask)
        if allow is not None:
            return PermissionDecision.allow(f"Allowed by rule {allow.raw}", allow)
        return mode_default(kind, mode)

    def allow_rule_for(self, signature: Signature) -> PermissionRule | None:
        """First allow rule, config or remembered, that matches ``signature``."""
        for r in self.rules():
            if r.disposition == "allow" and r.matches(signature):
                return r
        return None

    def remembers(self, signature: Signature) -> bool:
        """Whether a session rule added by ``remember`` covers ``signature``."""
        return any(r.matches(signature) for r in self.session_rules)

    def remember(self, signature: Signature | str) -> PermissionRule:
        """Add an exact-literal allow rule for the rest of the session."""
        sig = parse_signature(signature) if isinstance(signature, str) else signature
        rule = PermissionRule(CompiledPattern.literal(sig), "allow", "session")
        with self._lock:
            if not any(r.raw == rule.raw for r in self._session_rules):
                self._session_rules.append(rule)
        logger.info("permission_remembered", signature=str(sig))
        return rule

    def clear_session_rules(self) -> None:
        with self._lock:
            self._session_rules.clear()
