from __future__ import annotations

import pytest

from backend.app.services.modes import ModeManager, ModeState


@pytest.mark.anyio
async def test_mode_manager_transitions() -> None:
    manager = ModeManager()

    status = await manager.get_status()
    assert status.state == ModeState.OFFLINE
    assert status.local_only

    await manager.set_online("ready")
    assert manager.snapshot().state == ModeState.ONLINE

    await manager.set_degraded("issues")
    assert manager.snapshot().state == ModeState.DEGRADED

    await manager.set_offline("manual")
    assert manager.snapshot().state == ModeState.OFFLINE


@pytest.mark.anyio
async def test_backend_feedback_moves_between_online_and_degraded() -> None:
    manager = ModeManager()
    await manager.set_online("configured")

    await manager.backend_failed("list_feed failed")
    assert manager.snapshot().state == ModeState.DEGRADED
    assert manager.snapshot().reason == "list_feed failed"

    await manager.backend_succeeded()
    assert manager.snapshot().online


@pytest.mark.anyio
async def test_backend_feedback_never_leaves_local_mode() -> None:
    manager = ModeManager()

    await manager.backend_failed("boom")
    assert manager.snapshot().state == ModeState.OFFLINE

    await manager.backend_succeeded()
    assert manager.snapshot().state == ModeState.OFFLINE
