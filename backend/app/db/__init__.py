"""Database models for local-only mode."""

from .models import (
    Base,
    Confession,
    ConfessionLike,
    SettingEntry,
)

__all__ = [
    "Base",
    "Confession",
    "ConfessionLike",
    "SettingEntry",
]
