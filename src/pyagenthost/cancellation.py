from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from .errors import CancelledByUser


@dataclass(eq=False)
class CancellationToken:
    """Cooperative cancellation for one turn or session.

    A token is created by whoever owns the turn and passed explicitly into every
    stage, hook subprocess and tool invocation.
    """

    _reason: str | None = field(default=None, init=False)
    _event: asyncio.Event | None = field(default=None, init=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "Cancelled by user") -> None:
        if self._reason is not None:
            return
        self._reason = reason
        if self._event is not None:
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledByUser(self.reason or "Cancelled")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        if self._event is None:
            self._event = asyncio.Event()
        if self.cancelled:
            self._event.set()
        await self._event.wait()
