"""Data models for NoteTaker."""

from notetaker.models.enrichment import (
    AiTask,
    ChatAnswer,
    GraphData,
    OrganizedNote,
    ResultKind,
    SearchResults,
    TaskKind,
    TaskResult,
)
from notetaker.models.note import Attachment, Note, NoteVersion, new_id, utc_now
from notetaker.models.settings import PerformanceProfile, Theme, UserSettings
from notetaker.models.taxonomy import Project, Subject, TaxonomyRef, fold_name

__all__ = [
    "AiTask",
    "Attachment",
    "ChatAnswer",
    "GraphData",
    "Note",
    "NoteVersion",
    "OrganizedNote",
    "PerformanceProfile",
    "Project",
    "ResultKind",
    "SearchResults",
    "Subject",
    "TaskKind",
    "TaskResult",
    "TaxonomyRef",
    "Theme",
    "UserSettings",
    "fold_name",
    "new_id",
    "utc_now",
]
