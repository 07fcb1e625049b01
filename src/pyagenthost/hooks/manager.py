from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping

from ..cancellation import CancellationToken
from ..errors import HookPayloadTooLarge
from ..util.log import get_logger
from .executor import SecureProcessExecutor, build_hook_env
from .guard import HookExecutionGuard
from .models import HookDecision, HookDefinition, HookEvent, HookOutcome, HookRun, HookSettings
from .parser import HookOutputParser

logger = get_logger(__name__)

_RANK = {"allow": 0, "ask": 1, "deny": 2}


class HookManager:
    """Selects, dispatches and combines hooks for one session.

    All hook processes share ``semaphore``; pass the same one to every manager
    in the process to keep a global ceiling.
    """

    def __init__(
        self,
        settings: HookSettings | None = None,
        *,
        project_dir: str,
        guard: HookExecutionGuard | None = None,
        executor: SecureProcessExecutor | None = None,
        semaphore: asyncio.Semaphore | None = None,
    ):
        self.settings = settings or HookSettings()
        self.project_dir = project_dir
        self.guard = guard or HookExecutionGuard()
        self.executor = executor or SecureProcessExecutor(
            max_stdin_bytes=self.settings.max_stdin_bytes,
            max_output_bytes=self.settings.max_output_bytes,
        )
        self.parser = HookOutputParser(self.settings.timeout_behavior, self.settings.failure_behavior)
        self._semaphore = semaphore
        self._enabled = self.settings.enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def reset(self) -> None:
        self.guard.reset()
        self._enabled = self.settings.enabled

    @property
    def semaphore(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the running loop.
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_hooks)
        return self._semaphore

    def hooks_for(self, event: str, tool_name: str | None, tool_input: Mapping[str, Any] | None = None) -> list[HookDefinition]:
        if not self._enabled:
            return []
        defs = self.settings.for_event(event)
        if tool_name is None:
            return defs
        return [d for d in defs if d.matcher.matches(tool_name, tool_input)]

    async def run_pre(
        self,
        *,
        session_id: str,
        tool_name: str,
        tool_use_id: str,
        tool_input: Mapping[str, Any],
        permission_mode: str,
        cancel: CancellationToken | None = None,
    ) -> HookOutcome:
        return await self._run(
            "PreToolUse",
            session_id=session_id,
            tool_name=tool_name,
            tool_use_id=tool_use_id,
            permission_mode=permission_mode,
            extra={"tool_input": dict(tool_input)},
            match_input=tool_input,
            cancel=cancel,
        )

    async def run_post(
        self,
        *,
        session_id: str,
        tool_name: str,
        tool_use_id: str,
        tool_input: Mapping[str, Any],
        tool_response: Mapping[str, Any],
        permission_mode: str,
        cancel: CancellationToken | None = None,
    ) -> HookOutcome:
        return await self._run(
            "PostToolUse",
            session_id=session_id,
            tool_name=tool_name,
            tool_use_id=tool_use_id,
            permission_mode=permission_mode,
            extra={"tool_input": dict(tool_input), "tool_response": dict(tool_response)},
            match_input=tool_input,
            cancel=cancel,
        )

    async def run_stop(
        self,
        *,
        session_id: str,
        permission_mode: str,
        turn_id: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> HookOutcome:
        stop_id = turn_id or f"stop-{uuid.uuid4().hex}"
        try:
            return await self._run(
                "Stop",
                session_id=session_id,
                tool_name=None,
                tool_use_id=stop_id,
                permission_mode=permission_mode,
                extra={},
                match_input=None,
                cancel=cancel,
            )
        finally:
            # Generated ids are never reused.
            if turn_id is None:
                self.guard.cleanup(stop_id)

    async def _run(
        self,
        event: HookEvent,
        *,
        session_id: str,
        tool_name: str | None,
        tool_use_id: str,
        permission_mode: str,
        extra: dict[str, Any],
        match_input: Mapping[str, Any] | None,
        cancel: CancellationToken | None,
    ) -> HookOutcome:
        defs = self.hooks_for(event, tool_name, match_input)
        if not defs:
            return HookOutcome(event=event)
        if not self.guard.can_execute(tool_use_id, event):
            logger.info("hook_deduplicated", hook_event=event, tool_use_id=tool_use_id)
            return HookOutcome(event=event, skipped=True)

        env = build_hook_env(
            project_dir=self.project_dir,
            session_id=session_id,
            event=event,
            tool_name=tool_name,
            tool_use_id=tool_use_id,
        )
        base_payload = {
            "project_dir": self.project_dir,
            "session_id": session_id,
            "hook_event_name": event,
            "tool_name": tool_name,
            "tool_use_id": tool_use_id,
            "permission_mode": permission_mode,
            **extra,
        }
        tasks = [asyncio.ensure_future(self._dispatch(d, base_payload, env, cancel)) for d in defs]
        try:
            runs = await asyncio.gather(*tasks)
        except BaseException:
            # Kill sibling hooks still running.
            for t in tasks:
                t.cancel()
            raise
        finally:
            self.guard.mark_executed(tool_use_id, event)
        return combine(event, list(runs))

    async def _dispatch(
        self,
        definition: HookDefinition,
        base_payload: dict[str, Any],
        env: dict[str, str],
        cancel: CancellationToken | None,
    ) -> HookRun:
        payload = {
            **base_payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "hook_execution_id": uuid.uuid4().hex,
        }
        async with self.semaphore:
            try:
                result = await self.executor.execute(
                    definition.command,
                    payload,
                    env=env,
                    cwd=self.project_dir,
                    timeout=definition.timeout,
                    cancel=cancel,
                )
            except HookPayloadTooLarge as e:
                return HookRun(definition.command, self.parser.failure(str(e)))
            except OSError as e:
                return HookRun(definition.command, self.parser.failure(f"Hook failed to start: {e}"))
        decision = self.parser.parse(result, definition.command)
        logger.info(
            "hook_finished",
            hook_event=definition.event,
            command=definition.command,
            exit_code=result.exit_code,
            decision=decision.kind,
            duration_ms=result.duration_ms,
        )
        return HookRun(definition.command, decision, result)


def combine(event: HookEvent, runs: list[HookRun]) -> HookOutcome:
    """deny > ask > allow; input patches merge in order, last output wins."""
    out = HookOutcome(event=event, runs=runs)
    winner: HookDecision | None = None
    for run in runs:
        d = run.decision
        if winner is None or _RANK[d.kind] > _RANK[winner.kind]:
            winner = d
        if d.warning:
            out.warnings.append(d.warning)
        if d.additional_context:
            out.additional_context.append(d.additional_context)
        if d.kind == "allow":
            if d.modified_input:
                out.modified_input = {**(out.modified_input or {}), **d.modified_input}
            if d.modified_output is not None:
                out.modified_output = d.modified_output
    if winner is not None and winner.kind != "allow":
        out.decision = winner.kind
        out.error_type = winner.error_type
        if winner.reason:
            out.reason = winner.reason
        elif winner.kind == "deny":
            out.reason = "Blocked by hook"
        else:
            out.reason = "Hook requested confirmation"
    return out
