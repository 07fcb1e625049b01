from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from ..cancellation import CancellationToken
from ..compaction.builder import truncate_text
from ..confirmation.handlers import ConfirmationHandler
from ..confirmation.models import ConfirmationDetails
from ..errors import CancelledByUser
from ..hooks.manager import HookManager
from ..permissions.engine import PermissionEngine
from ..permissions.models import PermissionMode
from ..permissions.sensitive import affected_paths, check_sensitive, dangerous_reason
from ..permissions.signature import build_signature
from ..tools.background import BackgroundShellManager
from ..tools.base import ToolContext, ToolError, ToolResult, validate_params
from ..tools.registry import ToolRegistry
from ..util.log import get_logger
from .execution import ToolExecution

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_OUTPUT_CHARS = 30000


class PipelineStage(Protocol):
    name: str

    async def process(self, execution: ToolExecution) -> None: ...


async def until_cancelled(awaitable: Awaitable[T], cancel: CancellationToken) -> T:
    """Await ``awaitable`` unless ``cancel`` fires first, in which case raise CancelledByUser."""
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
    if not task.done():
        task.cancel()
        raise CancelledByUser(cancel.reason or "Cancelled")
    return task.result()


def apply_permission(engine: PermissionEngine, execution: ToolExecution, cwd: str) -> None:
    """Sign the validated args and evaluate them; deny aborts, ask flags confirmation.

    Path checks run after the rules: dangerous paths are always denied, high
    sensitivity files need an explicit allow rule and medium ones are
    confirmed even when allowed, unless the session remembered the call or
    runs in yolo mode.
    """
    tool = execution.tool
    assert tool is not None and execution.args is not None
    execution.signature = build_signature(tool.spec.name, execution.args, tool.spec.signature_key)
    decision = engine.evaluate(execution.signature, tool.spec.kind, execution.mode)
    execution.decision = decision
    logger.info(
        "permission_evaluated",
        tool_use_id=execution.request.tool_use_id,
        signature=str(execution.signature),
        disposition=decision.disposition,
        matched_rule=decision.matched_rule,
    )
    if decision.disposition == "deny":
        execution.abort("permission_denied", decision.reason, matched_rule=decision.matched_rule)
        return

    paths = affected_paths(execution.args)
    dangerous = []
    for p in paths:
        why = dangerous_reason(p, cwd)
        if why is not None:
            dangerous.append(f"{p} ({why})")
    if dangerous:
        logger.warning("dangerous_path_denied", tool_use_id=execution.request.tool_use_id, paths=dangerous)
        execution.abort("permission_denied", "Access to dangerous path denied: " + ", ".join(dangerous))
        return

    sensitive = [m for m in (check_sensitive(p) for p in paths) if m is not None]
    if any(m.level == "high" for m in sensitive) and engine.allow_rule_for(execution.signature) is None:
        listing = ", ".join(str(m) for m in sensitive)
        execution.abort(
            "permission_denied",
            f"Access to highly sensitive file denied: {listing}. Add an explicit allow rule to permit it.",
            sensitive=[m.path for m in sensitive],
        )
        return

    medium = [m for m in sensitive if m.level == "medium"]
    if decision.requires_confirmation:
        execution.needs_confirmation = True
        execution.confirmation_reason = decision.reason
    elif medium and execution.mode != "yolo" and not engine.remembers(execution.signature):
        execution.needs_confirmation = True
        execution.confirmation_reason = "Sensitive file access: " + ", ".join(str(m) for m in medium)
    else:
        execution.needs_confirmation = False
        execution.confirmation_reason = None


class DiscoveryStage:
    name = "discovery"

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def process(self, execution: ToolExecution) -> None:
        tool = self.registry.get_optional(execution.request.tool_name)
        if tool is None:
            available = ", ".join(sorted(self.registry.names()))
            execution.abort("validation_error", f"Unknown tool: {execution.request.tool_name}. Available: {available}")
            return
        execution.tool = tool


class PermissionStage:
    name = "permission"

    def __init__(self, engine: PermissionEngine, cwd: str):
        self.engine = engine
        self.cwd = cwd

    async def process(self, execution: ToolExecution) -> None:
        assert execution.tool is not None
        execution.args = validate_params(execution.tool.spec, execution.request.params)
        apply_permission(self.engine, execution, self.cwd)


class PreHookStage:
    name = "hook_pre"

    def __init__(self, hooks: HookManager | None, engine: PermissionEngine, cwd: str):
        self.hooks = hooks
        self.engine = engine
        self.cwd = cwd

    async def process(self, execution: ToolExecution) -> None:
        if self.hooks is None:
            return
        req = execution.request
        assert execution.tool is not None and execution.args is not None
        outcome = await self.hooks.run_pre(
            session_id=req.session_id,
            tool_name=execution.tool.spec.name,
            tool_use_id=execution.hook_correlation_id,
            tool_input=execution.args,
            permission_mode=execution.mode,
            cancel=req.cancel,
        )
        execution.pre_hook = outcome
        req.cancel.raise_if_cancelled()
        execution.hook_warnings.extend(outcome.warnings)
        execution.additional_context.extend(outcome.additional_context)

        if outcome.decision == "deny":
            execution.abort(outcome.error_type or "permission_denied", outcome.reason or "Blocked by hook")
            return

        hook_ask = outcome.decision == "ask"
        if hook_ask and execution.mode == "yolo":
            hook_ask = False

        if outcome.modified_input:
            execution.args = validate_params(execution.tool.spec, {**execution.args, **outcome.modified_input})
            apply_permission(self.engine, execution, self.cwd)
            if execution.is_terminal:
                return

        if hook_ask:
            execution.needs_confirmation = True
            execution.confirmation_reason = outcome.reason


def _risks(execution: ToolExecution) -> list[str]:
    assert execution.tool is not None
    kind = execution.tool.spec.kind
    risks = []
    if kind == "execute":
        risks.append("Runs a command with your user's privileges")
    elif kind == "write":
        risks.append("Modifies files in the project")
    if execution.mode == "plan":
        risks.append("Session is in plan mode")
    return risks


class ConfirmationStage:
    name = "confirmation"

    def __init__(
        self,
        handler: ConfirmationHandler | None,
        engine: PermissionEngine,
        on_mode_change: Callable[[PermissionMode], None] | None = None,
    ):
        self.handler = handler
        self.engine = engine
        self.on_mode_change = on_mode_change

    def details(self, execution: ToolExecution) -> ConfirmationDetails:
        assert execution.tool is not None and execution.args is not None
        args = execution.args
        files = affected_paths(args)
        return ConfirmationDetails(
            title=f"Allow {execution.tool.spec.name}?",
            message=execution.confirmation_reason or f"{execution.signature}",
            tool_name=execution.tool.spec.name,
            tool_use_id=execution.request.tool_use_id,
            session_id=execution.request.session_id,
            signature=str(execution.signature),
            params=dict(args),
            risks=_risks(execution),
            affected_files=files,
        )

    async def process(self, execution: ToolExecution) -> None:
        if not execution.needs_confirmation:
            return
        if self.handler is None:
            execution.abort("permission_denied", "Confirmation required but no confirmation handler is configured")
            return

        response = await until_cancelled(self.handler.request_confirmation(self.details(execution)), execution.request.cancel)

        if response.target_mode is not None and self.on_mode_change is not None:
            self.on_mode_change(response.target_mode)
        if not response.approved:
            execution.abort("permission_denied", response.feedback or "User denied the tool call", scope=response.scope)
            return
        if response.scope == "session" and execution.signature is not None:
            self.engine.remember(execution.signature)
        execution.confirmed = True


class ExecutionStage:
    name = "execution"

    def __init__(self, *, cwd: str, shells: BackgroundShellManager | None = None, state_dir: Path | None = None):
        self.cwd = cwd
        self.shells = shells
        self.state_dir = state_dir

    async def process(self, execution: ToolExecution) -> None:
        assert execution.tool is not None and execution.args is not None
        req = execution.request
        ctx = ToolContext(
            cwd=self.cwd,
            session_id=req.session_id,
            tool_use_id=req.tool_use_id,
            cancel=req.cancel,
            shells=self.shells,
            state_dir=self.state_dir,
        )
        result = await execution.tool.execute(ctx, execution.args)
        if not isinstance(result, ToolResult):
            raise TypeError(f"{execution.tool.spec.name} returned {type(result).__name__}, expected ToolResult")
        execution.raw_result = result


class PostHookStage:
    name = "hook_post"

    def __init__(self, hooks: HookManager | None):
        self.hooks = hooks

    async def process(self, execution: ToolExecution) -> None:
        # Only genuine results reach PostToolUse.
        if self.hooks is None or execution.raw_result is None:
            return
        req = execution.request
        assert execution.tool is not None and execution.args is not None
        outcome = await self.hooks.run_post(
            session_id=req.session_id,
            tool_name=execution.tool.spec.name,
            tool_use_id=execution.hook_correlation_id,
            tool_input=execution.args,
            tool_response=execution.raw_result.to_dict(),
            permission_mode=execution.mode,
            cancel=req.cancel,
        )
        execution.post_hook = outcome
        req.cancel.raise_if_cancelled()
        execution.hook_warnings.extend(outcome.warnings)
        execution.additional_context.extend(outcome.additional_context)
        if outcome.modified_output is not None:
            execution.modified_output = outcome.modified_output
        if outcome.decision == "deny":
            # The side effect already happened; surface the block instead.
            execution.hook_warnings.append(f"PostToolUse hook blocked: {outcome.reason}")


class FormattingStage:
    name = "formatting"

    def __init__(self, max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS):
        self.max_output_chars = max_output_chars

    async def process(self, execution: ToolExecution) -> None:
        raw = execution.raw_result
        if raw is None:
            execution.abort("execution_error", "Tool produced no result")
            return
        llm = execution.modified_output if execution.modified_output is not None else raw.llm_content
        if execution.additional_context:
            llm = llm + "\n\n" + "\n".join(execution.additional_context)
        truncated = len(llm) > self.max_output_chars
        llm = truncate_text(llm, self.max_output_chars)

        meta: dict[str, Any] = {**raw.metadata, **execution.base_metadata()}
        if truncated:
            meta["truncated"] = True
        error = raw.error
        if not raw.success and error is None:
            lines = raw.llm_content.strip().splitlines()
            error = ToolError("execution_error", lines[-1] if lines else "Tool failed")
        execution.complete(
            ToolResult(
                success=raw.success,
                llm_content=llm,
                display_content=raw.display_content or llm,
                error=error,
                metadata=meta,
            )
        )
