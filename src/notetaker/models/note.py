"""Note and version models for NoteTaker."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid.uuid4())


@dataclass
class Attachment:
    """An image attached to a note."""

    id: str
    data: str  # base64 data URL
    mime_type: str


@dataclass
class Note:
    """A single note.

    ``project_id`` and ``subject_id`` always point at an existing taxonomy
    entry. The enrichment pipeline owns ``summary`` through ``graph_data``;
    the user owns title, content and attachments.
    """

    # Core fields
    id: str
    title: str
    content: str
    project_id: str
    subject_id: str

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # Enrichment-derived fields
    summary: str = ""
    detailed_summary: str = ""
    todos: list[str] = field(default_factory=list)
    key_people: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    graph_data: Optional[dict[str, Any]] = None

    attachments: list[Attachment] = field(default_factory=list)

    # Flags
    is_archived: bool = False
    is_template: bool = False
    disable_ai_sync: bool = False  # opt out of enrichment

    def __post_init__(self) -> None:
        """Convert raw attachment dicts and keep timestamps ordered."""
        self.attachments = [
            Attachment(**a) if isinstance(a, dict) else a for a in self.attachments
        ]
        if self.updated_at < self.created_at:
            self.updated_at = self.created_at

    @classmethod
    def new(
        cls,
        title: str,
        content: str,
        project_id: str,
        subject_id: str,
        **fields: Any,
    ) -> "Note":
        """Create a note with a fresh id and matching timestamps."""
        now = utc_now()
        return cls(
            id=new_id(),
            title=title,
            content=content,
            project_id=project_id,
            subject_id=subject_id,
            created_at=now,
            updated_at=now,
            **fields,
        )


@dataclass
class NoteVersion:
    """Immutable snapshot of a note's title and content before a write."""

    note_id: str
    title: str
    content: str
    saved_at: datetime

    @property
    def id(self) -> str:
        """Composite identity of note id and save time."""
        return f"{self.note_id}-{self.saved_at.astimezone(timezone.utc).isoformat()}"
