from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

from rich.console import Console
from rich.panel import Panel

from .models import ConfirmationDetails, ConfirmationResponse
from .pending import PendingPermission, PendingPermissionRegistry


class ConfirmationHandler(Protocol):
    async def request_confirmation(self, details: ConfirmationDetails) -> ConfirmationResponse: ...


class AutoApproveHandler:
    """Approves everything once. For unattended runs (``--yes``)."""

    async def request_confirmation(self, details: ConfirmationDetails) -> ConfirmationResponse:
        return ConfirmationResponse(approved=True, scope="once")


class ConsoleConfirmationHandler:
    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    async def request_confirmation(self, details: ConfirmationDetails) -> ConfirmationResponse:
        body = [details.message]
        if details.affected_files:
            body.append("\n[bold]Files:[/bold] " + ", ".join(details.affected_files))
        for risk in details.risks:
            body.append(f"[red]![/red] {risk}")
        self.console.print(Panel("\n".join(body), title=f"[yellow]{details.title}[/yellow]", border_style="yellow"))

        resp = (await asyncio.to_thread(self.console.input, "Approve? [y]es / [a]lways this session / [N]o ")).strip().lower()
        if resp in {"y", "yes"}:
            return ConfirmationResponse(approved=True, scope="once")
        if resp in {"a", "always"}:
            return ConfirmationResponse(approved=True, scope="session")
        feedback = (await asyncio.to_thread(self.console.input, "Reason (optional): ")).strip()
        return ConfirmationResponse(approved=False, feedback=feedback or None)


class RemoteConfirmationHandler:
    """Parks the request in a PendingPermissionRegistry until a remote surface responds.

    ``on_pending`` is called with the new request so the caller can notify the
    remote side (push to a websocket, print the id...).
    """

    def __init__(
        self,
        registry: PendingPermissionRegistry,
        on_pending: Optional[Callable[[PendingPermission], Awaitable[None] | None]] = None,
    ):
        self.registry = registry
        self.on_pending = on_pending

    async def request_confirmation(self, details: ConfirmationDetails) -> ConfirmationResponse:
        pending = self.registry.create(details.session_id, details)
        if self.on_pending is not None:
            res = self.on_pending(pending)
            if asyncio.iscoroutine(res):
                await res
        return await self.registry.wait(pending)
