from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from ..permissions.models import PermissionMode, parse_mode

ConfirmationScope = Literal["once", "session"]


@dataclass(frozen=True)
class ConfirmationDetails:
    title: str
    message: str
    tool_name: str
    tool_use_id: str
    session_id: str
    signature: str
    params: dict[str, Any] = field(default_factory=dict)
    risks: list[str] = field(default_factory=list)
    affected_files: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ConfirmationResponse:
    approved: bool
    scope: ConfirmationScope = "once"
    feedback: str | None = None
    target_mode: PermissionMode | None = None
    answers: dict[str, Any] | None = None

    @staticmethod
    def from_obj(obj: Any) -> "ConfirmationResponse":
        """Parse a response posted by a remote surface (camelCase accepted)."""
        if not isinstance(obj, dict):
            raise ValueError("confirmation response must be an object")
        approved = obj.get("approved")
        if not isinstance(approved, bool):
            raise ValueError("confirmation response requires boolean 'approved'")
        scope = obj.get("scope") or "once"
        if scope not in ("once", "session"):
            raise ValueError(f"invalid scope: {scope!r}")
        target = obj.get("target_mode", obj.get("targetMode"))
        feedback = obj.get("feedback")
        answers = obj.get("answers")
        if answers is not None and not isinstance(answers, dict):
            raise ValueError("answers must be an object")
        return ConfirmationResponse(
            approved=approved,
            scope=scope,
            feedback=str(feedback) if feedback is not None else None,
            target_mode=parse_mode(target) if target is not None else None,
            answers=answers,
        )
