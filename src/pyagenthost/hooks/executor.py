from __future__ import annotations

import json
import os
from typing import Any, Mapping

from ..cancellation import CancellationToken
from ..errors import HookPayloadTooLarge
from ..util.log import get_logger
from ..util.subprocess import CANCELLED_EXIT_CODE, communicate_capped, spawn_shell
from .models import DEFAULT_MAX_OUTPUT_BYTES, DEFAULT_MAX_STDIN_BYTES, HookExecutionResult

logger = get_logger(__name__)

# Inherited from the host environment; nothing else leaks into hook processes.
INHERITED_ENV_KEYS = ("PATH", "HOME", "USER", "SHELL")


def build_hook_env(
    *,
    project_dir: str,
    session_id: str,
    event: str,
    tool_name: str | None = None,
    tool_use_id: str | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    src = os.environ if base_env is None else base_env
    env = {k: src[k] for k in INHERITED_ENV_KEYS if k in src}
    env["AGENTHOST_PROJECT_DIR"] = project_dir
    env["AGENTHOST_SESSION_ID"] = session_id
    env["AGENTHOST_HOOK_EVENT"] = event
    env["AGENTHOST_TOOL_NAME"] = tool_name or ""
    env["AGENTHOST_TOOL_USE_ID"] = tool_use_id or ""
    return env


def encode_payload(payload: Mapping[str, Any] | bytes | str) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")


class SecureProcessExecutor:
    """Runs one hook command as a resource-capped subprocess."""

    def __init__(
        self,
        max_stdin_bytes: int = DEFAULT_MAX_STDIN_BYTES,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ):
        self.max_stdin_bytes = max_stdin_bytes
        self.max_output_bytes = max_output_bytes

    async def execute(
        self,
        command: str,
        payload: Mapping[str, Any] | bytes | str,
        *,
        env: Mapping[str, str],
        cwd: str,
        timeout: float,
        cancel: CancellationToken | None = None,
    ) -> HookExecutionResult:
        data = encode_payload(payload)
        if len(data) > self.max_stdin_bytes:
            raise HookPayloadTooLarge(len(data), self.max_stdin_bytes)

        if cancel is not None and cancel.cancelled:
            return HookExecutionResult(exit_code=CANCELLED_EXIT_CODE, cancelled=True)

        proc = await spawn_shell(command, cwd=cwd, env=env, with_stdin=True)
        logger.debug("hook_spawned", pid=proc.pid, command=command, timeout=timeout)
        res = await communicate_capped(
            proc,
            stdin_data=data,
            timeout=timeout,
            cancel=cancel,
            max_stdout_bytes=self.max_output_bytes,
            max_stderr_bytes=self.max_output_bytes,
        )
        if res.timed_out:
            logger.warning("hook_timeout", command=command, timeout=timeout)
        elif res.cancelled:
            logger.info("hook_cancelled", command=command)
        return HookExecutionResult(
            exit_code=res.returncode,
            stdout=res.stdout,
            stderr=res.stderr,
            timed_out=res.timed_out,
            cancelled=res.cancelled,
            stdout_truncated=res.stdout_truncated,
            stderr_truncated=res.stderr_truncated,
            duration_ms=res.duration_ms,
        )
