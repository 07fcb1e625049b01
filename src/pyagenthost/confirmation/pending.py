from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable

from ..errors import PermissionRequestNotFound
from ..util.log import get_logger
from .models import ConfirmationDetails, ConfirmationResponse

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass
class PendingPermission:
    permission_id: str
    session_id: str
    details: ConfirmationDetails
    created_at: float
    expires_at: float
    future: asyncio.Future = field(repr=False)

    def to_dict(self) -> dict:
        return {
            "permission_id": self.permission_id,
            "session_id": self.session_id,
            "details": self.details.to_dict(),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }


class PendingPermissionRegistry:
    """Permission requests awaiting an answer from a remote surface.

    Keyed by ``(session_id, permission_id)``. A request that is not answered
    within ``ttl_seconds`` expires and resolves as a denial.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._pending: dict[tuple[str, str], PendingPermission] = {}

    def create(self, session_id: str, details: ConfirmationDetails) -> PendingPermission:
        now = self._clock()
        pending = PendingPermission(
            permission_id=f"perm_{uuid.uuid4().hex[:12]}",
            session_id=session_id,
            details=details,
            created_at=now,
            expires_at=now + self.ttl_seconds,
            future=asyncio.get_running_loop().create_future(),
        )
        self._pending[(session_id, pending.permission_id)] = pending
        logger.info("permission_pending", session_id=session_id, permission_id=pending.permission_id, tool=details.tool_name)
        return pending

    async def wait(self, pending: PendingPermission) -> ConfirmationResponse:
        remaining = max(0.0, pending.expires_at - self._clock())
        try:
            return await asyncio.wait_for(asyncio.shield(pending.future), timeout=remaining)
        except asyncio.TimeoutError:
            logger.info("permission_expired", session_id=pending.session_id, permission_id=pending.permission_id)
            return ConfirmationResponse(approved=False, feedback="Permission request expired")
        finally:
            self._pending.pop((pending.session_id, pending.permission_id), None)

    def respond(self, session_id: str, permission_id: str, response: ConfirmationResponse) -> None:
        self._purge_expired()
        pending = self._pending.pop((session_id, permission_id), None)
        if pending is None or pending.future.done():
            raise PermissionRequestNotFound(session_id, permission_id)
        pending.future.set_result(response)

    def list_pending(self, session_id: str | None = None) -> list[PendingPermission]:
        self._purge_expired()
        return [p for (sid, _), p in self._pending.items() if session_id is None or sid == session_id]

    def cancel_session(self, session_id: str, reason: str = "Session closed") -> int:
        keys = [k for k in self._pending if k[0] == session_id]
        for k in keys:
            p = self._pending.pop(k)
            if not p.future.done():
                p.future.set_result(ConfirmationResponse(approved=False, feedback=reason))
        return len(keys)

    def _purge_expired(self) -> None:
        now = self._clock()
        for k in [k for k, p in self._pending.items() if p.expires_at <= now]:
            p = self._pending.pop(k)
            if not p.future.done():
                p.future.set_result(ConfirmationResponse(approved=False, feedback="Permission request expired"))
