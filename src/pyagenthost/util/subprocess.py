from __future__ import annotations

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from typing import Mapping, Optional

from ..cancellation import CancellationToken
from .log import get_logger

logger = get_logger(__name__)

# Synthetic exit codes reported when we terminate the child ourselves.
TIMEOUT_EXIT_CODE = 124
CANCELLED_EXIT_CODE = 130

DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
_READ_CHUNK = 64 * 1024
# After the child exits, grandchildren may still hold the pipes open.
_DRAIN_GRACE_SECONDS = 2.0


@dataclass
class CmdResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False
    stdout_truncated: bool = False
    stderr_truncated: bool = False
    duration_ms: int = 0


async def read_capped(stream: Optional[asyncio.StreamReader], limit: int) -> tuple[bytes, bool]:
    """Read a stream to EOF, keeping at most ``limit`` bytes.

    Excess output is drained and discarded so the child never blocks on a full pipe.
    """
    if stream is None:
        return b"", False
    buf = bytearray()
    truncated = False
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        room = limit - len(buf)
        if room > 0:
            buf.extend(chunk[:room])
        if len(chunk) > max(room, 0):
            truncated = True
    return bytes(buf), truncated


def kill_process(proc: asyncio.subprocess.Process) -> None:
    """Force-kill the child and its process group. Never waits."""
    if proc.returncode is not None:
        return
    if hasattr(os, "killpg"):
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def spawn_shell(
    command: str,
    *,
    cwd: str | None,
    env: Mapping[str, str] | None = None,
    with_stdin: bool = False,
) -> asyncio.subprocess.Process:
    return await asyncio.create_subprocess_shell(
        command,
        stdin=asyncio.subprocess.PIPE if with_stdin else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        start_new_session=(os.name != "nt"),
    )


async def communicate_capped(
    proc: asyncio.subprocess.Process,
    *,
    stdin_data: bytes | None = None,
    timeout: float | None = None,
    cancel: CancellationToken | None = None,
    max_stdout_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    max_stderr_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
) -> CmdResult:
    """Feed stdin, capture capped output and wait for exit.

    On timeout or cancellation the process group is killed immediately and a
    synthetic exit code is reported instead of raising.
    """
    started = time.monotonic()

    async def _feed() -> None:
        if proc.stdin is None:
            return
        try:
            if stdin_data:
                proc.stdin.write(stdin_data)
                await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            pass
        finally:
            try:
                proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

    feed_task = asyncio.create_task(_feed())
    out_task = asyncio.create_task(read_capped(proc.stdout, max_stdout_bytes))
    err_task = asyncio.create_task(read_capped(proc.stderr, max_stderr_bytes))
    wait_task = asyncio.create_task(proc.wait())
    cancel_task = asyncio.create_task(cancel.wait()) if cancel is not None else None

    timed_out = False
    cancelled = False
    try:
        waiters = {wait_task} if cancel_task is None else {wait_task, cancel_task}
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        if wait_task not in done:
            if cancel_task is not None and cancel_task in done:
                cancelled = True
            else:
                timed_out = True
            kill_process(proc)
            await wait_task
        try:
            await asyncio.wait_for(asyncio.gather(out_task, err_task), timeout=_DRAIN_GRACE_SECONDS)
        except asyncio.TimeoutError:
            # Something outside the process group kept the pipes open.
            kill_process(proc)
            out_task.cancel()
            err_task.cancel()
    except asyncio.CancelledError:
        kill_process(proc)
        raise
    finally:
        for t in (feed_task, cancel_task, out_task, err_task, wait_task):
            if t is not None and not t.done():
                t.cancel()

    stdout, out_trunc = out_task.result() if out_task.done() and not out_task.cancelled() else (b"", True)
    stderr, err_trunc = err_task.result() if err_task.done() and not err_task.cancelled() else (b"", True)

    if timed_out:
        code = TIMEOUT_EXIT_CODE
    elif cancelled:
        code = CANCELLED_EXIT_CODE
    else:
        code = proc.returncode if proc.returncode is not None else -1

    return CmdResult(
        returncode=code,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        timed_out=timed_out,
        cancelled=cancelled,
        stdout_truncated=out_trunc,
        stderr_truncated=err_trunc,
        duration_ms=int((time.monotonic() - started) * 1000),
    )


async def run_cmd(
    command: str,
    cwd: str,
    timeout: Optional[float] = 120,
    *,
    env: Mapping[str, str] | None = None,
    cancel: CancellationToken | None = None,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
) -> CmdResult:
    if cancel is not None and cancel.cancelled:
        return CmdResult(CANCELLED_EXIT_CODE, "", "", cancelled=True)
    proc = await spawn_shell(command, cwd=cwd, env=env)
    logger.debug("process_spawned", pid=proc.pid, command=command[:200])
    return await communicate_capped(
        proc,
        timeout=timeout,
        cancel=cancel,
        max_stdout_bytes=max_output_bytes,
        max_stderr_bytes=max_output_bytes,
    )
