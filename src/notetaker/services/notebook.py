"""Notebook: the in-memory working set of notes wired to both pipelines.

Edits are applied to the in-memory note immediately and persisted later by
the persistence scheduler. A persisted change to a note's title or content
schedules enrichment; merged enrichments are folded back into the
in-memory note so the next write does not overwrite them.
"""

import logging
from collections import deque
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Optional

from notetaker.config import Config, get_config
from notetaker.database.store import Collection, Delete, DeleteWhere, ObjectStore
from notetaker.errors import (
    ConfigurationRequiredError,
    InvalidResponseError,
    NoteNotFoundError,
    StoreError,
)
from notetaker.models.enrichment import (
    AiTask,
    ChatAnswer,
    OrganizedNote,
    ResultKind,
    TaskKind,
)
from notetaker.models.note import Note, NoteVersion, utc_now
from notetaker.models.settings import SETTINGS_ID, UserSettings
from notetaker.models.taxonomy import TaxonomyRef
from notetaker.services.coordination import KeyedLocks
from notetaker.services.enrichment import (
    EnrichmentOrchestrator,
    TaskProcessor,
    apply_enrichment,
)
from notetaker.services.gemini_service import GeminiTaskProcessor
from notetaker.services.scheduler import PersistenceScheduler
from notetaker.services.starter_content import (
    STARTER_TEMPLATES,
    TODAY_PLACEHOLDER,
    WELCOME_NOTE,
    StarterNote,
)
from notetaker.services.taxonomy import DEFAULT_PROJECT, DEFAULT_SUBJECT, TaxonomyResolver
from notetaker.services.transfer import ImportSummary, Snapshot, export_snapshot, import_snapshot

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "title",
    "content",
    "attachments",
    "tags",
    "todos",
    "is_archived",
    "is_template",
    "disable_ai_sync",
})

SETTINGS_FIELDS = frozenset({
    "ui_language",
    "ai_language",
    "api_key",
    "theme",
    "performance_profile",
})

TEXT_ACTIONS = frozenset({
    TaskKind.CONTINUE_WRITING,
    TaskKind.TRANSLATE,
    TaskKind.CHANGE_TONE,
    TaskKind.SUMMARIZE_SELECTION,
})

MAX_REPORTED_ERRORS = 100

MISSING_KEY_MESSAGE = "{feature} requires a Gemini API key. Add one with `notetaker settings --api-key`."


class Notebook:
    """Application service over the store, pipelines and task processor."""

    def __init__(
        self,
        store: ObjectStore,
        processor: Optional[TaskProcessor] = None,
        config: Optional[Config] = None,
        on_error: Optional[Callable[[str, Exception], None]] = None,
    ):
        """Initialize the notebook.

        Args:
            store: Open object store
            processor: Task processor (default: Gemini)
            config: Configuration (default: environment)
            on_error: Called with (note_id, error) for background failures
        """
        self.store = store
        self.config = config or get_config()
        self.processor = processor or GeminiTaskProcessor(self.config.gemini_model)
        self.on_error = on_error
        self.errors: deque[tuple[str, Exception]] = deque(maxlen=MAX_REPORTED_ERRORS)

        self.settings = UserSettings()
        self._notes: dict[str, Note] = {}

        self.locks = KeyedLocks()
        self.resolver = TaxonomyResolver(store, references=self._references)
        self.scheduler = PersistenceScheduler(
            store,
            load_latest=lambda note_id: self._notes.get(note_id),
            delay=self.config.save_debounce_seconds,
            on_written=self._on_written,
            on_error=self._report,
            locks=self.locks,
        )
        self.enrichment = EnrichmentOrchestrator(
            store,
            self.resolver,
            self.processor,
            settings_provider=lambda: self.settings,
            delay=self.config.enrichment_debounce_seconds,
            locks=self.locks,
            on_merged=self._on_merged,
            on_error=self._report,
        )

    @classmethod
    async def open(
        cls,
        config: Optional[Config] = None,
        processor: Optional[TaskProcessor] = None,
        on_error: Optional[Callable[[str, Exception], None]] = None,
    ) -> "Notebook":
        """Open the store described by ``config`` and load the notebook."""
        config = config or get_config()
        config.database_path.parent.mkdir(parents=True, exist_ok=True)
        store = await ObjectStore.open(config.database_url)
        notebook = cls(store, processor, config, on_error)
        await notebook.load()
        return notebook

    async def load(self) -> bool:
        """Load settings and notes, seeding a brand new notebook.

        Returns:
            True if this was the first run
        """
        settings = await self.store.get(Collection.SETTINGS, SETTINGS_ID)
        first_run = settings is None
        if settings is None:
            settings = UserSettings()
            await self.store.put(Collection.SETTINGS, settings)
        self.settings = settings

        notes = await self.store.get_all(Collection.NOTES)
        if first_run and not notes:
            notes = await self._seed()
        self._notes = {note.id: note for note in notes}
        logger.debug("Loaded %d notes", len(self._notes))
        return first_run

    async def _seed(self) -> list[Note]:
        notes = []
        for starter in [WELCOME_NOTE, *STARTER_TEMPLATES]:
            ref = await self.resolver.resolve(
                starter.project, starter.subject, starter.project_description
            )
            notes.append(self._from_starter(starter, ref))
        await self.store.bulk_put(Collection.NOTES, notes)
        logger.info("Created welcome note and %d templates", len(STARTER_TEMPLATES))
        return notes

    @staticmethod
    def _from_starter(starter: StarterNote, ref: TaxonomyRef) -> Note:
        return Note.new(
            starter.title,
            starter.content,
            ref.project_id,
            ref.subject_id,
            summary=starter.summary,
            todos=list(starter.todos),
            key_people=list(starter.key_people),
            tags=list(starter.tags),
            is_template=starter.is_template,
        )

    async def flush(self) -> None:
        """Wait until both pipelines are idle."""
        await self.scheduler.drain()
        await self.enrichment.drain()
        await self.scheduler.drain()

    async def close(self) -> None:
        """Flush pending work and close the store."""
        try:
            await self.flush()
        finally:
            await self.store.close()

    # ==================== Pipeline callbacks ====================

    def _references(self, field: str, category_id: str) -> bool:
        return any(getattr(note, field) == category_id for note in self._notes.values())

    def _report(self, note_id: str, error: Exception) -> None:
        self.errors.append((note_id, error))
        if self.on_error is not None:
            self.on_error(note_id, error)

    def take_errors(self) -> list[tuple[str, Exception]]:
        """Return and clear the background failures reported so far."""
        errors = list(self.errors)
        self.errors.clear()
        return errors

    def _on_written(self, previous: Optional[Note], note: Note, content_changed: bool) -> None:
        if content_changed:
            self.enrichment.schedule(note)

    def _on_merged(self, merged: Note, organized: OrganizedNote, ref: TaxonomyRef) -> None:
        cached = self._notes.get(merged.id)
        if cached is not None:
            self._notes[merged.id] = apply_enrichment(
                cached, organized, ref, merged.updated_at
            )

    # ==================== Reading ====================

    @property
    def notes(self) -> list[Note]:
        """All notes, most recently updated first."""
        return sorted(self._notes.values(), key=lambda n: n.updated_at, reverse=True)

    def get_note(self, note_id: str) -> Note:
        note = self._notes.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def find_notes(
        self,
        tag: Optional[str] = None,
        project_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        text: Optional[str] = None,
        include_archived: bool = False,
    ) -> list[Note]:
        """Filter notes, most recently updated first."""
        needle = text.casefold() if text else None
        results = []
        for note in self.notes:
            if note.is_archived and not include_archived:
                continue
            if tag is not None and tag not in note.tags:
                continue
            if project_id is not None and note.project_id != project_id:
                continue
            if subject_id is not None and note.subject_id != subject_id:
                continue
            if needle and needle not in note.title.casefold() and needle not in note.content.casefold():
                continue
            results.append(note)
        return results

    def all_tags(self) -> list[str]:
        return sorted({tag for note in self._notes.values() for tag in note.tags})

    # ==================== Editing ====================

    async def create_note(
        self,
        title: str = "New Note",
        content: str = "",
        project_name: Optional[str] = None,
        subject_name: str = DEFAULT_SUBJECT,
        from_template_id: Optional[str] = None,
    ) -> Note:
        """Create and persist a note, optionally from a template.

        A template's ``{{Today}}`` placeholders are replaced with today's
        date, and its category, tags, to-dos, people, decisions and
        attachments are copied.
        """
        fields: dict[str, Any] = {}
        if from_template_id is not None:
            template = self.get_note(from_template_id)
            project = await self.store.get(Collection.PROJECTS, template.project_id)
            subject = project.get_subject(template.subject_id) if project else None
            title = f"New from {template.title}"
            content = template.content.replace(TODAY_PLACEHOLDER, date.today().isoformat())
            project_name = project.name if project else DEFAULT_PROJECT
            subject_name = subject.name if subject else DEFAULT_SUBJECT
            fields = {
                "attachments": list(template.attachments),
                "tags": list(template.tags),
                "todos": list(template.todos),
                "key_people": list(template.key_people),
                "decisions": list(template.decisions),
            }

        async with self.resolver.filing(project_name or DEFAULT_PROJECT, subject_name) as ref:
            note = Note.new(title or "Untitled", content, ref.project_id, ref.subject_id, **fields)
            await self.store.add(Collection.NOTES, note)
            self._notes[note.id] = note
        logger.info("Created note %s", note.id)

        if note.content.strip():
            self.enrichment.schedule(note)
        return note

    def update_note(self, note_id: str, **changes: Any) -> Note:
        """Apply user edits in memory now and schedule their persistence.

        Raises:
            NoteNotFoundError: No such note
            ValueError: A field is unknown or not editable
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        note = self.get_note(note_id)
        updated = replace(note, **changes, updated_at=max(utc_now(), note.updated_at))
        self._notes[note_id] = updated
        self.scheduler.schedule(note_id)
        return updated

    async def move_note(self, note_id: str, project_name: str, subject_name: str) -> Note:
        """File a note under another project and subject, creating them if needed."""
        self.get_note(note_id)
        async with self.resolver.filing(project_name, subject_name) as ref:
            note = self.get_note(note_id)
            updated = replace(
                note,
                project_id=ref.project_id,
                subject_id=ref.subject_id,
                updated_at=max(utc_now(), note.updated_at),
            )
            self._notes[note_id] = updated
        self.scheduler.schedule(note_id)
        return updated

    async def delete_note(self, note_id: str) -> None:
        """Delete a note and its history.

        The note disappears from memory first; if the store rejects the
        deletion it is put back and the error is raised.
        """
        note = self._notes.pop(note_id, None)
        if note is None:
            raise NoteNotFoundError(note_id)
        self.scheduler.discard(note_id)
        self.enrichment.forget(note_id)

        try:
            async with self.locks.lock_for(note_id):
                await self.store.transact([
                    Delete(Collection.NOTES, note_id),
                    DeleteWhere(Collection.VERSIONS, "note_id", note_id),
                ])
        except StoreError:
            self._notes[note_id] = note
            raise
        logger.info("Deleted note %s", note_id)

    # ==================== History ====================

    async def get_versions(self, note_id: str) -> list[NoteVersion]:
        """Versions of a note, newest first."""
        versions = await self.store.scan_by_index(Collection.VERSIONS, "note_id", note_id)
        return sorted(versions, key=lambda v: v.saved_at, reverse=True)

    def restore_version(self, version: NoteVersion) -> Note:
        """Bring back an old title and content as a normal edit."""
        return self.update_note(version.note_id, title=version.title, content=version.content)

    async def clear_history(self) -> None:
        await self.store.clear(Collection.VERSIONS)
        logger.info("Cleared version history")

    # ==================== AI ====================

    def _require_credential(self, feature: str) -> None:
        if not self.settings.has_credential:
            raise ConfigurationRequiredError(MISSING_KEY_MESSAGE.format(feature=feature))

    async def ask(self, question: str) -> ChatAnswer:
        """Answer a question from the notes."""
        self._require_credential("Chat")
        result = await self.processor.process(
            AiTask(kind=TaskKind.CHAT_QUERY, question=question, notes=self.notes),
            self.settings,
            await self.resolver.list_projects(),
        )
        if result.kind is not ResultKind.CHAT_RESPONSE:
            raise InvalidResponseError("The AI service returned an invalid response.")
        return result.data

    async def semantic_search(self, query: str) -> list[Note]:
        """Notes most relevant to a query, best match first."""
        self._require_credential("Semantic search")
        result = await self.processor.process(
            AiTask(kind=TaskKind.SEMANTIC_SEARCH, query=query, notes=self.notes),
            self.settings,
            await self.resolver.list_projects(),
        )
        if result.kind is not ResultKind.SEARCH_RESULTS:
            raise InvalidResponseError("The AI service returned an invalid response.")
        return [self._notes[i] for i in result.data if i in self._notes]

    async def run_action(self, note_id: str, kind: TaskKind, **params: str) -> Note:
        """Run a text action on a note and apply the result as an edit.

        Args:
            note_id: Target note
            kind: One of the text actions (continue, translate, tone, summarize)
            **params: ``content`` (defaults to the note's content),
                ``target_language`` or ``tone``
        """
        kind = TaskKind(kind)
        if kind not in TEXT_ACTIONS:
            raise ValueError(f"{kind.value} is not a text action.")
        self._require_credential("AI quick actions")

        note = self.get_note(note_id)
        task = AiTask(
            kind=kind,
            note=note,
            content=params.get("content") or note.content,
            target_language=params.get("target_language", ""),
            tone=params.get("tone", ""),
        )
        result = await self.processor.process(
            task, self.settings, await self.resolver.list_projects()
        )

        current = self.get_note(note_id)
        if result.kind is ResultKind.TEXT:
            return self.update_note(note_id, content=result.data)
        if result.kind is ResultKind.TEXT_APPEND:
            return self.update_note(note_id, content=current.content + result.data)
        raise InvalidResponseError("The AI service returned an invalid response.")

    # ==================== Settings and data ====================

    async def update_settings(self, **changes: Any) -> UserSettings:
        unknown = set(changes) - SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        settings = replace(self.settings, **changes)
        await self.store.put(Collection.SETTINGS, settings)
        self.settings = settings
        return settings

    async def export_data(self) -> Snapshot:
        await self.flush()
        return await export_snapshot(self.store)

    async def import_data(self, snapshot: Snapshot) -> ImportSummary:
        """Merge a snapshot into the notebook and reload it."""
        await self.flush()
        summary = await import_snapshot(self.store, self.resolver, snapshot)
        await self.load()
        return summary
