"""POW activity fields and their display metadata."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldInfo:
    key: str
    emoji: str
    label: str


POW_FIELDS: dict[str, FieldInfo] = {
    "video": FieldInfo("video", "🎬", "Video"),
    "art": FieldInfo("art", "🎨", "Art"),
    "music": FieldInfo("music", "🎵", "Music"),
    "writing": FieldInfo("writing", "✒️", "Writing"),
    "study": FieldInfo("study", "📝", "Study"),
    "reading": FieldInfo("reading", "📚", "Reading"),
    "volunteer": FieldInfo("volunteer", "✝️", "Volunteer"),
}

FIELD_KEYS = tuple(POW_FIELDS)


def get_field(key: str) -> FieldInfo:
    """Look up a field, raising ValueError for unknown keys."""
    try:
        return POW_FIELDS[key]
    except KeyError:
        msg = f"Unknown POW field: {key}"
        raise ValueError(msg) from None
