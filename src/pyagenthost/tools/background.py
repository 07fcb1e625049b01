from __future__ import annotations

import asyncio
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Literal, Mapping

from ..util.log import get_logger
from ..util.subprocess import kill_process, spawn_shell

logger = get_logger(__name__)

ShellStatus = Literal["running", "completed", "failed", "killed"]

DEFAULT_MAX_BUFFER_BYTES = 8 * 1024 * 1024
_READ_CHUNK = 64 * 1024
_KILL_GRACE_SECONDS = 2.0


@dataclass
class _Buffer:
    data: bytearray = field(default_factory=bytearray)
    offset: int = 0
    dropped: int = 0

    def take_new(self) -> str:
        chunk = bytes(self.data[self.offset :])
        self.offset = len(self.data)
        return chunk.decode("utf-8", errors="replace")


@dataclass
class BackgroundShell:
    shell_id: str
    command: str
    cwd: str
    process: asyncio.subprocess.Process = field(repr=False)
    started_at: float
    stdout: _Buffer = field(default_factory=_Buffer, repr=False)
    stderr: _Buffer = field(default_factory=_Buffer, repr=False)
    exit_code: int | None = None
    killed: bool = False
    finished_at: float | None = None
    _tasks: list[asyncio.Task] = field(default_factory=list, repr=False)

    @property
    def status(self) -> ShellStatus:
        if self.killed:
            return "killed"
        if self.exit_code is None:
            return "running"
        return "completed" if self.exit_code == 0 else "failed"

    def to_dict(self) -> dict:
        return {
            "shell_id": self.shell_id,
            "command": self.command,
            "status": self.status,
            "exit_code": self.exit_code,
            "started_at": self.started_at,
            "pid": self.process.pid,
        }


@dataclass
class ShellOutput:
    shell_id: str
    status: ShellStatus
    stdout: str
    stderr: str
    exit_code: int | None
    dropped_bytes: int = 0


class BackgroundShellManager:
    """Long-running shells keyed by id, independent of the call that started them.

    ``read_output`` only returns output produced since the previous read.
    """

    def __init__(self, max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES):
        self.max_buffer_bytes = max_buffer_bytes
        self._shells: dict[str, BackgroundShell] = {}

    async def start(self, command: str, *, cwd: str, env: Mapping[str, str] | None = None) -> BackgroundShell:
        proc = await spawn_shell(command, cwd=cwd, env=env)
        shell = BackgroundShell(
            shell_id=f"shell_{uuid.uuid4().hex[:8]}",
            command=command,
            cwd=cwd,
            process=proc,
            started_at=time.time(),
        )
        shell._tasks = [
            asyncio.create_task(self._pump(proc.stdout, shell.stdout)),
            asyncio.create_task(self._pump(proc.stderr, shell.stderr)),
            asyncio.create_task(self._wait(shell)),
        ]
        self._shells[shell.shell_id] = shell
        logger.info("background_shell_started", shell_id=shell.shell_id, pid=proc.pid, command=command[:200])
        return shell

    async def _pump(self, stream: asyncio.StreamReader | None, buf: _Buffer) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                return
            room = self.max_buffer_bytes - len(buf.data)
            if room > 0:
                buf.data.extend(chunk[:room])
            buf.dropped += max(0, len(chunk) - max(room, 0))

    async def _wait(self, shell: BackgroundShell) -> None:
        code = await shell.process.wait()
        shell.exit_code = code
        shell.finished_at = time.time()
        logger.info("background_shell_exited", shell_id=shell.shell_id, exit_code=code)

    def get(self, shell_id: str) -> BackgroundShell | None:
        return self._shells.get(shell_id)

    def list(self) -> list[BackgroundShell]:
        return list(self._shells.values())

    def read_output(self, shell_id: str, filter_regex: str | None = None) -> ShellOutput:
        shell = self._shells.get(shell_id)
        if shell is None:
            raise KeyError(f"Unknown shell: {shell_id}")
        # Compile before consuming output.
        rx = re.compile(filter_regex) if filter_regex else None
        out = shell.stdout.take_new()
        err = shell.stderr.take_new()
        if rx is not None:
            out = "\n".join(line for line in out.splitlines() if rx.search(line))
        return ShellOutput(
            shell_id=shell_id,
            status=shell.status,
            stdout=out,
            stderr=err,
            exit_code=shell.exit_code,
            dropped_bytes=shell.stdout.dropped + shell.stderr.dropped,
        )

    async def kill(self, shell_id: str) -> bool:
        shell = self._shells.get(shell_id)
        if shell is None:
            raise KeyError(f"Unknown shell: {shell_id}")
        if shell.exit_code is not None:
            return False
        shell.killed = True
        kill_process(shell.process)
        await asyncio.wait(shell._tasks, timeout=_KILL_GRACE_SECONDS)
        logger.info("background_shell_killed", shell_id=shell_id)
        return True

    async def shutdown(self) -> None:
        for shell in list(self._shells.values()):
            if shell.exit_code is None:
                shell.killed = True
                kill_process(shell.process)
        tasks = [t for s in self._shells.values() for t in s._tasks]
        if tasks:
            await asyncio.wait(tasks, timeout=_KILL_GRACE_SECONDS)
        for t in tasks:
            if not t.done():
                t.cancel()
