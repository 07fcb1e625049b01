from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ...errors import CancelledByUser
from ...util.subprocess import run_cmd


def _format_output(stdout: str, stderr: str, exit_code: int | None) -> str:
    out = ""
    if stdout:
        out += f"STDOUT:\n{stdout}\n"
    if stderr:
        out += f"STDERR:\n{stderr}\n"
    if exit_code is not None:
        out += f"EXIT_CODE: {exit_code}"
    return out.rstrip("\n")


@dataclass
class BashTool:
    spec: ToolSpec = ToolSpec(
        name="Bash",
        description=(
            "Run a shell command in the working directory. Returns stdout/stderr and exit code. "
            "Set run_in_background for long-running commands and poll with BashOutput."
        ),
        kind="execute",
        signature_key="command",
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to run."},
                "timeout": {"type": "number", "default": 120, "description": "Timeout seconds."},
                "run_in_background": {"type": "boolean", "default": False},
                "description": {"type": "string", "description": "Short description of what the command does."},
            },
            "required": ["command"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cmd = (args.get("command") or "").strip()
        if not cmd:
            return ToolResult.failure("Empty command.", type="validation_error")

        if args.get("run_in_background"):
            shells = ctx.shells
            if shells is None:
                return ToolResult.failure("Background shells are not available in this context.")
            shell = await shells.start(cmd, cwd=ctx.cwd)
            return ToolResult.ok(
                f"Started background shell {shell.shell_id}. Use BashOutput to read its output.",
                shell_id=shell.shell_id,
            )

        timeout = float(args.get("timeout") or 120)
        res = await run_cmd(cmd, cwd=ctx.cwd, timeout=timeout, cancel=ctx.cancel)
        if res.cancelled:
            raise CancelledByUser(ctx.cancel.reason or "Command cancelled")

        out = _format_output(res.stdout, res.stderr, res.returncode)
        meta = {"exit_code": res.returncode, "duration_ms": res.duration_ms, "timed_out": res.timed_out}
        if res.stdout_truncated or res.stderr_truncated:
            meta["output_truncated"] = True
        if res.timed_out:
            return ToolResult.failure(f"Command timed out after {timeout:g}s\n{out}", **meta)
        if res.returncode != 0:
            return ToolResult(False, out, None, None, meta)
        return ToolResult.ok(out, **meta)


@dataclass
class BashOutputTool:
    spec: ToolSpec = ToolSpec(
        name="BashOutput",
        description="Read new output from a background shell since the last read.",
        kind="readonly",
        signature_key="shell_id",
        parameters={
            "type": "object",
            "properties": {
                "shell_id": {"type": "string"},
                "filter": {"type": "string", "description": "Optional regex; only matching stdout lines are returned."},
            },
            "required": ["shell_id"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        shells = ctx.shells
        if shells is None:
            return ToolResult.failure("Background shells are not available in this context.")
        try:
            out = shells.read_output(args["shell_id"], args.get("filter"))
        except KeyError as e:
            return ToolResult.failure(str(e.args[0]))
        except re.error as e:
            return ToolResult.failure(f"Invalid filter regex: {e}", type="validation_error")
        text = _format_output(out.stdout, out.stderr, out.exit_code) or "(no new output)"
        return ToolResult.ok(
            f"[{out.status}] {text}",
            shell_id=out.shell_id,
            status=out.status,
            exit_code=out.exit_code,
        )


@dataclass
class KillShellTool:
    spec: ToolSpec = ToolSpec(
        name="KillShell",
        description="Terminate a background shell started with Bash(run_in_background).",
        kind="execute",
        signature_key="shell_id",
        parameters={
            "type": "object",
            "properties": {"shell_id": {"type": "string"}},
            "required": ["shell_id"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        shells = ctx.shells
        if shells is None:
            return ToolResult.failure("Background shells are not available in this context.")
        sid = args["shell_id"]
        try:
            killed = await shells.kill(sid)
        except KeyError as e:
            return ToolResult.failure(str(e.args[0]))
        if not killed:
            return ToolResult.ok(f"Shell {sid} had already exited.", shell_id=sid, killed=False)
        return ToolResult.ok(f"Killed shell {sid}.", shell_id=sid, killed=True)
