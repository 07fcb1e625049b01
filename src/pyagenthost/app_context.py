from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .compaction.compactor import Compactor
from .config.loader import load_settings
from .config.models import Settings
from .confirmation.handlers import (
    AutoApproveHandler,
    ConfirmationHandler,
    ConsoleConfirmationHandler,
    RemoteConfirmationHandler,
)
from .confirmation.pending import PendingPermissionRegistry
from .context.assembler import ContextAssembler
from .events.recorder import SessionRecorder, new_id
from .events.store import EventStore
from .hooks.manager import HookManager
from .permissions.engine import PermissionEngine
from .permissions.models import PermissionMode, parse_mode
from .pipeline.pipeline import ToolExecutionPipeline
from .tools.background import BackgroundShellManager
from .tools.builtin import register_builtin_tools
from .tools.registry import ToolRegistry
from .util.log import get_logger

logger = get_logger(__name__)


def recorded_mode(store: EventStore) -> PermissionMode | None:
    """Permission mode from the latest ``session_updated`` in an existing log."""
    assembled = ContextAssembler().assemble(store.iter_events())
    if assembled is None:
        return None
    raw = assembled.session.configuration.get("permission_mode")
    if raw is None:
        return None
    try:
        return parse_mode(raw)
    except ValueError:
        logger.warning("recorded_mode_ignored", session_id=store.session_id, permission_mode=raw)
        return None


@dataclass
class AppContext:
    cwd: Path
    settings: Settings
    tools: ToolRegistry
    engine: PermissionEngine
    hooks: HookManager
    shells: BackgroundShellManager
    recorder: SessionRecorder
    pipeline: ToolExecutionPipeline
    compactor: Compactor
    pending: PendingPermissionRegistry

    @property
    def session_id(self) -> str:
        return self.recorder.session_id

    async def close(self) -> None:
        """Kill background shells, deny parked permission requests and drop per-session state."""
        await self.shells.shutdown()
        self.pending.cancel_session(self.session_id)
        self.hooks.reset()
        self.engine.clear_session_rules()

    @staticmethod
    def from_env(
        cwd: Path,
        session_id: str | None = None,
        *,
        mode: PermissionMode | None = None,
        auto_approve: bool = False,
        remote_confirmation: bool = False,
        settings_path: Path | None = None,
        events_root: Path | None = None,
        state_dir: Path | None = None,
        confirmation: ConfirmationHandler | None = None,
    ) -> "AppContext":
        """Wire every component for one session.

        The permission mode is, in order: ``mode``, the last mode recorded in
        the session log when resuming, the settings value.
        With ``remote_confirmation`` approvals are parked in ``pending`` until
        something calls ``pending.respond``.
        """
        settings = load_settings(cwd, settings_path)

        tools = ToolRegistry()
        register_builtin_tools(tools)

        engine = settings.permission_engine()
        hooks = HookManager(settings.hooks, project_dir=str(cwd))
        shells = BackgroundShellManager()
        pending = PendingPermissionRegistry()

        if session_id is None:
            session_id = new_id("ses")
        store = EventStore.open(session_id, events_root)
        recorder = SessionRecorder(store)
        if store.path.exists():
            if mode is None:
                mode = recorded_mode(store)
        else:
            recorder.create_session(cwd=str(cwd), permission_mode=mode or settings.permission_mode)

        if confirmation is None:
            if remote_confirmation:
                confirmation = RemoteConfirmationHandler(pending)
            elif auto_approve:
                confirmation = AutoApproveHandler()
            else:
                confirmation = ConsoleConfirmationHandler()

        pipeline = ToolExecutionPipeline(
            registry=tools,
            engine=engine,
            hooks=hooks,
            confirmation=confirmation,
            recorder=recorder,
            cwd=str(cwd),
            shells=shells,
            state_dir=state_dir,
            mode=mode or settings.permission_mode,
        )
        compactor = Compactor(recorder, settings.compaction)

        logger.info(
            "app_context_ready",
            cwd=str(cwd),
            session_id=session_id,
            permission_mode=pipeline.mode,
            settings=[str(p) for p in settings.loaded_from],
        )
        return AppContext(
            cwd=cwd,
            settings=settings,
            tools=tools,
            engine=engine,
            hooks=hooks,
            shells=shells,
            recorder=recorder,
            pipeline=pipeline,
            compactor=compactor,
            pending=pending,
        )
