from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SchoolTag:
    id: str
    label: str


SCHOOL_TAGS: tuple[SchoolTag, ...] = (
    SchoolTag("ucr", "#ucr"),
    SchoolTag("ucla", "#ucla"),
    SchoolTag("ucsd", "#ucsd"),
    SchoolTag("uci", "#uci"),
    SchoolTag("ucb", "#ucb"),
    SchoolTag("ucd", "#ucd"),
    SchoolTag("ucsb", "#ucsb"),
    SchoolTag("ucsc", "#ucsc"),
)

SCHOOL_IDS: frozenset[str] = frozenset(tag.id for tag in SCHOOL_TAGS)

DEFAULT_SCHOOL_ID = "ucr"
_DEFAULT_LABEL = "#ucr"

_LABELS_BY_ID = {tag.id: tag.label for tag in SCHOOL_TAGS}
_IDS_BY_LABEL = {tag.label: tag.id for tag in SCHOOL_TAGS}


def school_id_to_label(school_id: str | None) -> str:
    return _LABELS_BY_ID.get(school_id or "", _DEFAULT_LABEL)


def school_label_to_id(label: str | None) -> str:
    return _IDS_BY_LABEL.get(label or "", DEFAULT_SCHOOL_ID)


def is_valid_school_id(value: object) -> bool:
    return isinstance(value, str) and value in SCHOOL_IDS


def empty_counts() -> dict[str, int]:
    """Zero count for every known school, in display order."""

    return {tag.id: 0 for tag in SCHOOL_TAGS}


__all__ = [
    "DEFAULT_SCHOOL_ID",
    "SCHOOL_IDS",
    "SCHOOL_TAGS",
    "SchoolTag",
    "empty_counts",
    "is_valid_school_id",
    "school_id_to_label",
    "school_label_to_id",
]
