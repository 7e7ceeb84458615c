from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum


class ModeState(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    DEGRADED = "degraded"


@dataclass
class ModeStatus:
    state: ModeState
    reason: str | None = None

    @property
    def online(self) -> bool:
        return self.state == ModeState.ONLINE

    @property
    def local_only(self) -> bool:
        return self.state == ModeState.OFFLINE


@dataclass
class ModeManager:
    """Tracks whether the board runs against the hosted backend.

    ``offline`` means local-only storage and is never left by backend
    feedback; ``online`` and ``degraded`` follow the outcome of backend calls.
    """

    _status: ModeStatus = field(
        default_factory=lambda: ModeStatus(ModeState.OFFLINE, "backend not configured"),
    )
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    async def set_online(self, reason: str | None = None) -> ModeStatus:
        async with self._lock:
            self._status = ModeStatus(ModeState.ONLINE, reason)
            return self._status

    async def set_degraded(self, reason: str) -> ModeStatus:
        async with self._lock:
            self._status = ModeStatus(ModeState.DEGRADED, reason)
            return self._status

    async def set_offline(self, reason: str) -> ModeStatus:
        async with self._lock:
            self._status = ModeStatus(ModeState.OFFLINE, reason)
            return self._status

    async def backend_succeeded(self) -> None:
        if self._status.state != ModeState.DEGRADED:
            return
        async with self._lock:
            if self._status.state == ModeState.DEGRADED:
                self._status = ModeStatus(ModeState.ONLINE, "backend recovered")

    async def backend_failed(self, reason: str) -> None:
        if self._status.state == ModeState.OFFLINE:
            return
        async with self._lock:
            if self._status.state != ModeState.OFFLINE:
                self._status = ModeStatus(ModeState.DEGRADED, reason)

    async def get_status(self) -> ModeStatus:
        async with self._lock:
            return self._status

    def snapshot(self) -> ModeStatus:
        return self._status
