from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Iterable, Sequence

from ..confirmation.handlers import ConfirmationHandler
from ..errors import CancelledByUser, ExecutionStateError, ToolValidationError
from ..events.recorder import SessionRecorder
from ..hooks.manager import HookManager
from ..permissions.engine import PermissionEngine
from ..permissions.models import PermissionMode
from ..tools.background import BackgroundShellManager
from ..tools.base import ToolResult
from ..tools.registry import ToolRegistry
from ..util.log import get_logger
from .execution import Aborted, ToolCallRequest, ToolExecution
from .stages import (
    DEFAULT_MAX_OUTPUT_CHARS,
    ConfirmationStage,
    DiscoveryStage,
    ExecutionStage,
    FormattingStage,
    PermissionStage,
    PipelineStage,
    PostHookStage,
    PreHookStage,
)

logger = get_logger(__name__)


class ToolExecutionPipeline:
    """Runs tool calls through Discovery, Permission, Hook(Pre), Confirmation,
    Execution, Hook(Post) and Formatting, in that order.

    Every call ends with exactly one terminal result. Stages are skipped once
    the execution is terminal, and a set cancellation token aborts it at the
    next stage boundary. Unexpected exceptions become ``execution_error``.
    """

    def __init__(
        self,
        *,
        registry: ToolRegistry,
        engine: PermissionEngine,
        cwd: str,
        hooks: HookManager | None = None,
        confirmation: ConfirmationHandler | None = None,
        recorder: SessionRecorder | None = None,
        shells: BackgroundShellManager | None = None,
        state_dir: Path | None = None,
        mode: PermissionMode = "default",
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    ):
        self.registry = registry
        self.engine = engine
        self.hooks = hooks
        self.recorder = recorder
        self._mode: PermissionMode = mode
        self.stages: list[PipelineStage] = [
            DiscoveryStage(registry),
            PermissionStage(engine, cwd),
            PreHookStage(hooks, engine, cwd),
            ConfirmationStage(confirmation, engine, on_mode_change=self.set_mode),
            ExecutionStage(cwd=cwd, shells=shells, state_dir=state_dir),
            PostHookStage(hooks),
            FormattingStage(max_output_chars),
        ]

    @property
    def mode(self) -> PermissionMode:
        return self._mode

    def set_mode(self, mode: PermissionMode) -> None:
        if mode != self._mode:
            logger.info("permission_mode_changed", old=self._mode, new=mode)
            self._mode = mode
            if self.recorder is not None:
                self.recorder.update_session({"permission_mode": mode})

    async def execute(self, request: ToolCallRequest) -> ToolResult:
        execution = await self.run(request)
        return execution.result

    async def execute_many(self, requests: Iterable[ToolCallRequest]) -> list[ToolResult]:
        """Run several calls concurrently, each with its own ToolExecution."""
        return list(await asyncio.gather(*(self.execute(r) for r in requests)))

    async def run(self, request: ToolCallRequest) -> ToolExecution:
        if request.mode is None:
            request.mode = self._mode
        execution = ToolExecution(request=request)
        log = logger.bind(tool=request.tool_name, tool_use_id=request.tool_use_id, execution_id=execution.execution_id)
        message_id = self._record_call(request)
        try:
            await self._run_stages(execution, self.stages, log)
            if not execution.is_terminal:
                execution.abort("execution_error", "Pipeline finished without a result")
        finally:
            if self.hooks is not None:
                self.hooks.guard.cleanup(request.tool_use_id)

        self._record_result(execution, message_id)
        result = execution.result
        log.info(
            "tool_call_finished",
            success=result.success,
            error_type=result.error.type if result.error else None,
            duration_ms=execution.duration_ms,
        )
        return execution

    async def _run_stages(self, execution: ToolExecution, stages: Sequence[PipelineStage], log) -> None:
        cancel = execution.request.cancel
        for stage in stages:
            if execution.is_terminal:
                return
            execution.current_stage = stage.name
            if cancel.cancelled:
                execution.abort("aborted", cancel.reason or "Cancelled")
                return
            log.debug("stage_started", stage=stage.name)
            try:
                await stage.process(execution)
            except CancelledByUser as e:
                self._abort_if_open(execution, "aborted", e.reason, log)
            except ToolValidationError as e:
                self._abort_if_open(execution, "validation_error", str(e), log)
            except ExecutionStateError:
                raise
            except Exception as e:
                log.exception("stage_failed", stage=stage.name)
                self._abort_if_open(execution, "execution_error", f"{type(e).__name__}: {e}", log)
            execution.stages_run.append(stage.name)

    @staticmethod
    def _abort_if_open(execution: ToolExecution, error_type, reason: str, log) -> None:
        if execution.is_terminal:
            log.warning("late_stage_error", error_type=error_type, reason=reason)
            return
        execution.abort(error_type, reason)

    def _record_call(self, request: ToolCallRequest) -> str | None:
        if self.recorder is None:
            return None
        if request.message_id is None:
            request.message_id = self.recorder.add_message("assistant")
        self.recorder.add_tool_call(request.message_id, request.tool_use_id, request.tool_name, request.params)
        return request.message_id

    def _record_result(self, execution: ToolExecution, message_id: str | None) -> None:
        if self.recorder is None or message_id is None:
            return
        req = execution.request
        for outcome in (execution.pre_hook, execution.post_hook):
            if outcome is not None and outcome.fired:
                self.recorder.add_hook_outcome(
                    message_id,
                    req.tool_use_id,
                    outcome.event,
                    {
                        "decision": outcome.decision,
                        "reason": outcome.reason,
                        "warnings": outcome.warnings,
                        "runs": [r.to_dict() for r in outcome.runs],
                    },
                )
        result = execution.result
        meta = dict(result.metadata)
        if isinstance(execution.terminal, Aborted):
            meta["aborted_at"] = execution.terminal.stage
        self.recorder.add_tool_result(
            message_id,
            req.tool_use_id,
            tool_name=req.tool_name,
            output=result.llm_content,
            success=result.success,
            error=result.error.to_dict() if result.error else None,
            metadata=meta,
        )
