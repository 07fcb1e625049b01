from __future__ import annotations

import json
from typing import Any

from ..util.log import get_logger
from ..util.subprocess import TIMEOUT_EXIT_CODE
from .models import FailureBehavior, HookDecision, HookExecutionResult

logger = get_logger(__name__)

DENY_EXIT_CODE = 2

_DECISIONS = {
    None: "allow",
    "allow": "allow",
    "approve": "allow",
    "ask": "ask",
    "deny": "deny",
    "block": "deny",
}


def _pick(obj: dict[str, Any], snake: str, camel: str) -> Any:
    return obj[snake] if snake in obj else obj.get(camel)


class HookOutputParser:
    """Maps a finished hook process to a HookDecision.

    - exit 0: allow; stdout may be a JSON object with ``decision``, ``reason``,
      ``modified_input``, ``modified_output``, ``additional_context``, ``warning``
      (camelCase keys accepted). Plain-text stdout is kept as context.
    - exit 2: deny, stderr is the reason.
    - timeout (124): ``timeout_behavior``.
    - cancelled: allow with a warning; failure policy does not apply.
    - anything else or malformed JSON: ``failure_behavior``.
    """

    def __init__(self, timeout_behavior: FailureBehavior = "ignore", failure_behavior: FailureBehavior = "ignore"):
        self.timeout_behavior = timeout_behavior
        self.failure_behavior = failure_behavior

    def parse(self, result: HookExecutionResult, command: str = "") -> HookDecision:
        if result.timed_out or result.exit_code == TIMEOUT_EXIT_CODE:
            return self.timeout(command)
        if result.cancelled:
            # Not a hook failure; the caller reports the cancellation itself.
            return HookDecision(kind="allow", warning=f"Hook cancelled: {command}")
        if result.exit_code == DENY_EXIT_CODE:
            reason = result.stderr.strip() or result.stdout.strip() or f"Blocked by hook: {command}"
            return HookDecision(kind="deny", reason=reason)
        if result.exit_code != 0:
            detail = result.stderr.strip()[:500]
            msg = f"Hook exited with code {result.exit_code}: {command}"
            return self.failure(f"{msg}\n{detail}" if detail else msg)
        return self._parse_stdout(result.stdout, command)

    def timeout(self, command: str) -> HookDecision:
        reason = f"Hook timed out: {command}"
        if self.timeout_behavior == "block":
            return HookDecision(kind="deny", reason=reason, error_type="hook_timeout")
        return HookDecision(kind="allow", warning=reason)

    def failure(self, reason: str) -> HookDecision:
        logger.warning("hook_failure", reason=reason, behavior=self.failure_behavior)
        if self.failure_behavior == "block":
            return HookDecision(kind="deny", reason=reason, error_type="hook_failure")
        return HookDecision(kind="allow", warning=reason)

    def _parse_stdout(self, stdout: str, command: str) -> HookDecision:
        text = stdout.strip()
        if not text:
            return HookDecision()
        if not text.startswith("{"):
            return HookDecision(additional_context=text)
        try:
            obj = json.loads(text)
        except json.JSONDecodeError as e:
            return self.failure(f"Hook printed invalid JSON ({e}): {command}")
        if not isinstance(obj, dict):
            return self.failure(f"Hook output must be a JSON object: {command}")

        raw_decision = obj.get("decision")
        if isinstance(raw_decision, str):
            raw_decision = raw_decision.lower()
        kind = _DECISIONS.get(raw_decision)
        if kind is None:
            return self.failure(f"Hook returned unknown decision {raw_decision!r}: {command}")

        modified_input = _pick(obj, "modified_input", "modifiedInput")
        if modified_input is not None and not isinstance(modified_input, dict):
            return self.failure(f"Hook modified_input must be an object: {command}")

        modified_output = _pick(obj, "modified_output", "modifiedOutput")
        if modified_output is not None and not isinstance(modified_output, str):
            modified_output = json.dumps(modified_output, ensure_ascii=False)

        context = _pick(obj, "additional_context", "additionalContext")
        warning = obj.get("warning")
        reason = obj.get("reason")
        return HookDecision(
            kind=kind,  # type: ignore[arg-type]
            reason=str(reason) if reason is not None else None,
            modified_input=modified_input,
            modified_output=modified_output,
            additional_context=str(context) if context else None,
            warning=str(warning) if warning else None,
        )
