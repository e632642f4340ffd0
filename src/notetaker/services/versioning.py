"""Version recorder: decides when a write produces a history entry."""

from datetime import datetime
from typing import Optional

from notetaker.models.note import Note, NoteVersion


def content_changed(old: Note, new: Note) -> bool:
    """True if a write from ``old`` to ``new`` changes title or content."""
    return old.content != new.content or old.title != new.title


def record_if_changed(old: Note, new: Note, saved_at: datetime) -> Optional[NoteVersion]:
    """Snapshot the pre-write state of a note if the write changes it.

    The version holds what the note looked like *before* this edit, stamped
    with the time of the write. The caller must persist it in the same
    transaction as ``new``.

    Args:
        old: The currently persisted note
        new: The note about to be written
        saved_at: Time of the write

    Returns:
        The version to store, or None if title and content are unchanged
    """
    if not content_changed(old, new):
        return None
    return NoteVersion(
        note_id=old.id,
        title=old.title,
        content=old.content,
        saved_at=saved_at,
    )
