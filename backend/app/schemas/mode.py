from __future__ import annotations

from pydantic import BaseModel

from ..services.modes import ModeState


class ModeResponse(BaseModel):
    mode: ModeState
    online: bool
    backend: str
    reason: str | None = None
