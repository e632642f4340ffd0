"""Snapshot export and import.

A snapshot is the whole notebook (notes, projects, settings and version
history) as one JSON document. Importing merges it into the local store
without ever leaving a note pointing at a project or subject that does
not exist.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from pydantic import TypeAdapter, ValidationError

from notetaker.database.store import Collection, ObjectStore, Op, Put
from notetaker.errors import InvalidSnapshotError
from notetaker.models.note import Note, NoteVersion, new_id
from notetaker.models.settings import SETTINGS_ID, UserSettings
from notetaker.models.taxonomy import Project, Subject, TaxonomyRef, fold_name
from notetaker.services.taxonomy import DEFAULT_PROJECT, DEFAULT_SUBJECT, TaxonomyResolver

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """Portable copy of every collection."""

    notes: list[Note] = field(default_factory=list)
    projects: list[Project] = field(default_factory=list)
    settings: Optional[UserSettings] = None
    versions: list[NoteVersion] = field(default_factory=list)


@dataclass
class ImportSummary:
    """Counts reported after an import."""

    notes: int = 0
    versions: int = 0
    projects_created: int = 0
    subjects_created: int = 0
    refiled_notes: int = 0  # notes whose category could not be matched


_snapshot_adapter = TypeAdapter(Snapshot)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ==================== Export ====================


async def export_snapshot(store: ObjectStore) -> Snapshot:
    """Read every collection into a snapshot."""
    return Snapshot(
        notes=await store.get_all(Collection.NOTES),
        projects=await store.get_all(Collection.PROJECTS),
        settings=await store.get(Collection.SETTINGS, SETTINGS_ID),
        versions=await store.get_all(Collection.VERSIONS),
    )


def dumps(snapshot: Snapshot) -> str:
    """Serialize a snapshot to JSON."""
    return _snapshot_adapter.dump_json(snapshot, indent=2).decode("utf-8")


def loads(text: str) -> Snapshot:
    """Parse a snapshot from JSON.

    Raises:
        InvalidSnapshotError: The text is not a valid snapshot
    """
    try:
        snapshot = _snapshot_adapter.validate_json(text)
    except ValidationError as e:
        raise InvalidSnapshotError(
            f"The file is not a valid NoteTaker export ({e.error_count()} problems found)."
        ) from e

    for note in snapshot.notes:
        note.created_at = _as_utc(note.created_at)
        note.updated_at = max(_as_utc(note.updated_at), note.created_at)
    for version in snapshot.versions:
        version.saved_at = _as_utc(version.saved_at)
    return snapshot


# ==================== Import ====================


async def import_snapshot(
    store: ObjectStore, resolver: TaxonomyResolver, snapshot: Snapshot
) -> ImportSummary:
    """Merge a snapshot into the store in a single transaction.

    Projects are matched to local ones by case-insensitive name, and
    subjects by name within the matched project. Anything unmatched is
    created with a fresh id. Notes are re-pointed at the local ids; a note
    whose original category is missing from the snapshot is filed under
    the default project and subject.

    Args:
        store: Target store
        resolver: Resolver whose locks guard the touched projects
        snapshot: Parsed snapshot

    Returns:
        ImportSummary with what was written
    """
    summary = ImportSummary()
    names = [p.name for p in snapshot.projects] + [DEFAULT_PROJECT]

    async with resolver.hold(*names):
        local = {fold_name(p.name): p for p in await store.get_all(Collection.PROJECTS)}
        touched: dict[str, Project] = {}

        def local_ref(
            project_name: str, subject_name: str, description: Optional[str] = None
        ) -> TaxonomyRef:
            project = local.get(fold_name(project_name))
            if project is None:
                project = Project(id=new_id(), name=project_name.strip(), description=description)
                local[fold_name(project_name)] = project
                summary.projects_created += 1
            subject = project.find_subject(subject_name)
            if subject is None:
                subject = Subject(id=new_id(), name=subject_name.strip())
                project.subjects.append(subject)
                summary.subjects_created += 1
            touched[project.id] = project
            return TaxonomyRef(project.id, subject.id)

        refs: dict[tuple[str, str], TaxonomyRef] = {}
        for imported in snapshot.projects:
            for subject in imported.subjects:
                refs[(imported.id, subject.id)] = local_ref(
                    imported.name, subject.name, imported.description
                )
            if not imported.subjects:
                local_ref(imported.name, DEFAULT_SUBJECT, imported.description)

        ops: list[Op] = []
        notes: list[Note] = []
        for note in snapshot.notes:
            ref = refs.get((note.project_id, note.subject_id))
            if ref is None:
                ref = local_ref(DEFAULT_PROJECT, DEFAULT_SUBJECT)
                summary.refiled_notes += 1
            notes.append(replace(note, project_id=ref.project_id, subject_id=ref.subject_id))

        ops.extend(Put(Collection.PROJECTS, p) for p in touched.values())
        ops.extend(Put(Collection.NOTES, n) for n in notes)
        ops.extend(Put(Collection.VERSIONS, v) for v in snapshot.versions)

        if snapshot.settings is not None:
            current = await store.get(Collection.SETTINGS, SETTINGS_ID)
            api_key = snapshot.settings.api_key or (current.api_key if current else None)
            ops.append(
                Put(
                    Collection.SETTINGS,
                    replace(snapshot.settings, id=SETTINGS_ID, api_key=api_key),
                )
            )

        await store.transact(ops)

    summary.notes = len(notes)
    summary.versions = len(snapshot.versions)
    logger.info(
        "Imported %d notes, %d versions (%d projects created, %d notes refiled)",
        summary.notes,
        summary.versions,
        summary.projects_created,
        summary.refiled_notes,
    )
    return summary
