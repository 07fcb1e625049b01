"""Shared fixtures: a throwaway project dir, a session log, and fake tools."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from pyagenthost.confirmation.models import ConfirmationDetails, ConfirmationResponse
from pyagenthost.events.recorder import SessionRecorder
from pyagenthost.events.store import EventStore
from pyagenthost.hooks.manager import HookManager
from pyagenthost.hooks.models import HookSettings
from pyagenthost.permissions.engine import PermissionEngine
from pyagenthost.pipeline.pipeline import ToolExecutionPipeline
from pyagenthost.tools.base import ToolContext, ToolResult, ToolSpec
from pyagenthost.tools.registry import ToolRegistry


@dataclass
class EchoTool:
    spec: ToolSpec = ToolSpec(
        name="Echo",
        description="Echo text back.",
        kind="write",
        signature_key="text",
        parameters={
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    )
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        self.calls.append(dict(args))
        return ToolResult.ok(f"echo: {args['text']}")


@dataclass
class FailingTool:
    """Returns a genuine failure result (like a non-zero exit)."""

    spec: ToolSpec = ToolSpec(
        name="Fail",
        description="Always fails.",
        kind="readonly",
        parameters={"type": "object", "properties": {}},
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        return ToolResult(False, "step 1\nsomething broke")


@dataclass
class BoomTool:
    """Raises instead of returning a result."""

    spec: ToolSpec = ToolSpec(
        name="Boom",
        description="Raises.",
        kind="readonly",
        parameters={"type": "object", "properties": {}},
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        raise RuntimeError("kaboom")


class ScriptedConfirmation:
    """Answers confirmation requests from a queue and records what it was asked."""

    def __init__(self, *responses: ConfirmationResponse, on_request=None):
        self.responses = list(responses)
        self.requests: list[ConfirmationDetails] = []
        self.on_request = on_request

    async def request_confirmation(self, details: ConfirmationDetails) -> ConfirmationResponse:
        self.requests.append(details)
        if self.on_request is not None:
            self.on_request(details)
        if not self.responses:
            return ConfirmationResponse(approved=False, feedback="no scripted answer")
        return self.responses.pop(0)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    d = tmp_path / "project"
    d.mkdir()
    return d


@pytest.fixture
def store(tmp_path: Path) -> EventStore:
    return EventStore.open("ses_test", tmp_path / "sessions")


@pytest.fixture
def recorder(store: EventStore, project: Path) -> SessionRecorder:
    rec = SessionRecorder(store)
    rec.create_session(title="test", cwd=str(project))
    return rec


@pytest.fixture
def echo() -> EchoTool:
    return EchoTool()


@pytest.fixture
def registry(echo: EchoTool) -> ToolRegistry:
    reg = ToolRegistry()
    reg.register(echo)
    reg.register(FailingTool())
    reg.register(BoomTool())
    return reg


@pytest.fixture
def make_pipeline(project: Path, registry: ToolRegistry, tmp_path: Path):
    def _make(
        *,
        allow=(),
        ask=(),
        deny=(),
        hooks: dict[str, Any] | None = None,
        confirmation=None,
        recorder: SessionRecorder | None = None,
        mode: str = "default",
    ) -> ToolExecutionPipeline:
        engine = PermissionEngine.from_patterns(allow=allow, ask=ask, deny=deny)
        manager = None
        if hooks is not None:
            manager = HookManager(HookSettings.from_obj(hooks), project_dir=str(project))
        return ToolExecutionPipeline(
            registry=registry,
            engine=engine,
            hooks=manager,
            confirmation=confirmation,
            recorder=recorder,
            cwd=str(project),
            state_dir=tmp_path / "state",
            mode=mode,  # type: ignore[arg-type]
        )

    return _make
