"""Enrichment orchestrator: sends settled notes for analysis and merges results.

Per note the orchestrator runs a small state machine::

    IDLE -> SCHEDULED -> IN_FLIGHT -> MERGED | FAILED

A result is never applied to the snapshot that was submitted. The merge
re-reads the note as currently persisted and only replaces the fields the
enrichment pipeline owns, so edits made while the call was in flight survive.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence

from notetaker.database.store import Collection, ObjectStore
from notetaker.errors import (
    ConfigurationRequiredError,
    InvalidResponseError,
    NoteNotFoundError,
)
from notetaker.models.enrichment import (
    AiTask,
    OrganizedNote,
    ResultKind,
    TaskKind,
    TaskResult,
)
from notetaker.models.note import Note, utc_now
from notetaker.models.settings import UserSettings
from notetaker.models.taxonomy import Project, TaxonomyRef
from notetaker.services.coordination import KeyedLocks
from notetaker.services.taxonomy import TaxonomyResolver

logger = logging.getLogger(__name__)

DEFAULT_ENRICHMENT_DELAY = 3.0

MISSING_CREDENTIAL_MESSAGE = (
    "A Gemini API key is required for automatic enrichment. Add one in settings."
)


class TaskProcessor(Protocol):
    """External service turning tasks into structured results."""

    async def process(
        self, task: AiTask, settings: UserSettings, projects: Sequence[Project]
    ) -> TaskResult: ...


class EnrichmentState(str, Enum):
    """Lifecycle of one note's enrichment."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"
    MERGED = "merged"
    FAILED = "failed"


@dataclass
class EnrichmentStatus:
    """State machine instance for one note."""

    state: EnrichmentState = EnrichmentState.IDLE
    timer: Optional[asyncio.TimerHandle] = None
    task: Optional["asyncio.Task[Optional[Note]]"] = None
    rerun: bool = False  # qualifying edit arrived while in flight
    last_error: Optional[Exception] = None


def merge_tags(existing: Sequence[str], incoming: Sequence[str]) -> list[str]:
    """Union of two tag lists, keeping first-seen order and dropping blanks."""
    merged: list[str] = []
    seen: set[str] = set()
    for tag in [*existing, *incoming]:
        if tag and tag not in seen:
            seen.add(tag)
            merged.append(tag)
    return merged


def apply_enrichment(
    note: Note, organized: OrganizedNote, ref: TaxonomyRef, now: datetime
) -> Note:
    """Lay an analysis result over a note.

    Title, content, attachments and flags are left alone. Owned fields are
    replaced, except tags, which are unioned with the note's own.

    Args:
        note: The note as it is now
        organized: The analysis result
        ref: Resolved taxonomy for the result's project and subject
        now: Time of the merge

    Returns:
        A new Note with the enrichment applied
    """
    return replace(
        note,
        project_id=ref.project_id,
        subject_id=ref.subject_id,
        summary=organized.summary,
        detailed_summary=organized.detailed_summary,
        todos=list(organized.todos),
        key_people=list(organized.key_people),
        decisions=list(organized.decisions),
        graph_data=(
            organized.graph_data.model_dump() if organized.graph_data is not None else None
        ),
        tags=merge_tags(note.tags, organized.tags),
        updated_at=max(now, note.updated_at),
    )


class EnrichmentOrchestrator:
    """Schedules, runs and merges note enrichment.

    Enrichments for different notes are independent. There is no retry and
    no timeout: a failure is reported once, and the next qualifying edit
    starts a new cycle.
    """

    def __init__(
        self,
        store: ObjectStore,
        resolver: TaxonomyResolver,
        processor: TaskProcessor,
        settings_provider: Callable[[], UserSettings],
        delay: float = DEFAULT_ENRICHMENT_DELAY,
        locks: Optional[KeyedLocks] = None,
        on_merged: Optional[Callable[[Note, OrganizedNote, TaxonomyRef], None]] = None,
        on_error: Optional[Callable[[str, Exception], None]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Store holding the notes
            resolver: Resolver for the result's project / subject names
            processor: External task processor
            settings_provider: Returns the current user settings
            delay: Quiet period in seconds before a note is submitted
            locks: Per-note locks shared with the persistence scheduler
            on_merged: Called inside the note lock after a merge is stored
            on_error: Called with (note_id, error) when a cycle fails
        """
        self.store = store
        self.resolver = resolver
        self.processor = processor
        self.settings_provider = settings_provider
        self.delay = delay
        self.locks = locks or KeyedLocks()
        self.on_merged = on_merged
        self.on_error = on_error
        self._table: dict[str, EnrichmentStatus] = {}

    def status(self, note_id: str) -> EnrichmentStatus:
        return self._table.get(note_id) or EnrichmentStatus()

    def state(self, note_id: str) -> EnrichmentState:
        return self.status(note_id).state

    # ==================== Transitions ====================

    def schedule(self, note: Note) -> bool:
        """Start (or restart) the quiet period for a note that just changed.

        Returns:
            True if an enrichment is now scheduled or queued behind the
            in-flight one
        """
        if note.disable_ai_sync:
            logger.debug("Note %s opted out of enrichment", note.id)
            return False

        status = self._table.setdefault(note.id, EnrichmentStatus())
        if not self.settings_provider().has_credential:
            self._fail(note.id, status, ConfigurationRequiredError(MISSING_CREDENTIAL_MESSAGE))
            return False

        if status.state is EnrichmentState.IN_FLIGHT:
            status.rerun = True
            return True

        self._arm(note.id, status)
        return True

    def forget(self, note_id: str) -> None:
        """Cancel a scheduled enrichment for a note that was deleted."""
        status = self._table.get(note_id)
        if status is None:
            return
        if status.timer is not None:
            status.timer.cancel()
        if status.task is None:
            del self._table[note_id]
        else:
            status.rerun = False

    def _arm(self, note_id: str, status: EnrichmentStatus) -> None:
        if status.timer is not None:
            status.timer.cancel()
        status.state = EnrichmentState.SCHEDULED
        status.timer = asyncio.get_running_loop().call_later(
            self.delay, self._fire, note_id
        )

    def _fire(self, note_id: str) -> None:
        status = self._table.get(note_id)
        if status is None or status.state is not EnrichmentState.SCHEDULED:
            return
        status.timer = None
        self._start(note_id, status)

    def _start(self, note_id: str, status: EnrichmentStatus) -> None:
        status.state = EnrichmentState.IN_FLIGHT
        status.task = asyncio.get_running_loop().create_task(self._run(note_id, status))

    def _fail(self, note_id: str, status: EnrichmentStatus, error: Exception) -> None:
        status.state = EnrichmentState.FAILED
        status.last_error = error
        logger.warning("Enrichment of note %s failed: %s", note_id, error)
        if self.on_error is not None:
            self.on_error(note_id, error)

    async def _run(self, note_id: str, status: EnrichmentStatus) -> Optional[Note]:
        merged: Optional[Note] = None
        try:
            merged = await self._enrich(note_id)
        except Exception as exc:
            self._fail(note_id, status, exc)
        else:
            status.state = EnrichmentState.MERGED if merged else EnrichmentState.IDLE
            status.last_error = None
        finally:
            status.task = None
            if status.rerun:
                status.rerun = False
                self._arm(note_id, status)
        return merged

    # ==================== Work ====================

    async def _enrich(self, note_id: str) -> Optional[Note]:
        note = await self.store.get(Collection.NOTES, note_id)
        if note is None or not note.content.strip() or note.disable_ai_sync:
            logger.debug("Skipping enrichment of note %s", note_id)
            return None

        settings = self.settings_provider()
        if not settings.has_credential:
            raise ConfigurationRequiredError(MISSING_CREDENTIAL_MESSAGE)

        projects = await self.store.get_all(Collection.PROJECTS)
        logger.info("Submitting note %s for enrichment", note_id)
        result = await self.processor.process(
            AiTask(kind=TaskKind.FULL_ANALYSIS, note=note), settings, projects
        )
        if result.kind is not ResultKind.ORGANIZED_NOTE or not isinstance(
            result.data, OrganizedNote
        ):
            raise InvalidResponseError("The AI service returned an invalid response.")

        return await self.merge(note_id, result.data)

    async def merge(self, note_id: str, organized: OrganizedNote) -> Note:
        """Apply an analysis result to the note as currently persisted.

        The result's project stays locked until the note is stored under it,
        so the category cannot be deleted in between.

        Raises:
            NoteNotFoundError: The note was deleted while the call was in flight
        """
        if await self.store.get(Collection.NOTES, note_id) is None:
            raise NoteNotFoundError(note_id)

        async with self.resolver.filing(organized.project, organized.subject) as ref:
            async with self.locks.lock_for(note_id):
                current = await self.store.get(Collection.NOTES, note_id)
                if current is None:
                    raise NoteNotFoundError(note_id)
                merged = apply_enrichment(current, organized, ref, utc_now())
                await self.store.put(Collection.NOTES, merged)
                if self.on_merged is not None:
                    self.on_merged(merged, organized, ref)

        logger.info("Merged enrichment into note %s", note_id)
        return merged

    # ==================== Flushing ====================

    async def enrich_now(self, note_id: str) -> Optional[Note]:
        """Run an enrichment cycle immediately and wait for it.

        Returns:
            The merged note, or None if the note was skipped

        Raises:
            Exception: Whatever made the cycle fail
        """
        status = self._table.setdefault(note_id, EnrichmentStatus())
        if status.task is not None:
            await status.task
        if status.timer is not None:
            status.timer.cancel()
            status.timer = None

        self._start(note_id, status)
        merged = await status.task
        if merged is None and status.last_error is not None:
            raise status.last_error
        return merged

    async def drain(self) -> None:
        """Submit every scheduled enrichment now and wait for all of them."""
        while True:
            pending = [
                (note_id, status)
                for note_id, status in self._table.items()
                if status.timer is not None or status.task is not None
            ]
            if not pending:
                return
            for note_id, status in pending:
                if status.timer is not None:
                    status.timer.cancel()
                    status.timer = None
                    self._fire(note_id)
            tasks = [status.task for _, status in pending if status.task is not None]
            await asyncio.gather(*tasks, return_exceptions=True)
