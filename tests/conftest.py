"""Pytest fixtures for NoteTaker tests."""

import asyncio
import tempfile
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio

from notetaker.config import Config
from notetaker.database.store import Collection, ObjectStore
from notetaker.models.enrichment import (
    AiTask,
    ChatAnswer,
    OrganizedNote,
    ResultKind,
    TaskKind,
    TaskResult,
)
from notetaker.models.note import Note
from notetaker.models.taxonomy import Project, Subject
from notetaker.services.notebook import Notebook
from notetaker.services.taxonomy import TaxonomyResolver


class FakeProcessor:
    """Task processor returning canned results.

    Set ``gate`` to hold calls until the event is set, or ``error`` to make
    every call fail.
    """

    def __init__(self) -> None:
        self.organized = OrganizedNote(
            project="Work",
            subject="Meetings",
            summary="Summary",
            todos=["Follow up"],
            tags=["ai"],
        )
        self.calls: list[AiTask] = []
        self.started = asyncio.Event()
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[Exception] = None
        self.result: Optional[TaskResult] = None

    async def process(self, task, settings, projects) -> TaskResult:
        self.calls.append(task)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result

        if task.kind is TaskKind.FULL_ANALYSIS:
            return TaskResult(ResultKind.ORGANIZED_NOTE, self.organized)
        if task.kind is TaskKind.CHAT_QUERY:
            return TaskResult(ResultKind.CHAT_RESPONSE, ChatAnswer(answer="42"))
        if task.kind is TaskKind.SEMANTIC_SEARCH:
            return TaskResult(ResultKind.SEARCH_RESULTS, [n.id for n in task.notes[:1]])
        if task.kind is TaskKind.SUMMARIZE_SELECTION:
            return TaskResult(ResultKind.TEXT_APPEND, "\n\nsummary")
        if task.kind is TaskKind.CONTINUE_WRITING:
            return TaskResult(ResultKind.TEXT_APPEND, "\ncontinued")
        return TaskResult(ResultKind.TEXT, "rewritten")


@pytest.fixture
def temp_db_path():
    """Provide a temporary database path."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def config(temp_db_path):
    """Configuration with short debounce delays."""
    return Config(
        database_path=temp_db_path,
        save_debounce_seconds=0.01,
        enrichment_debounce_seconds=0.02,
        error_log_path=temp_db_path.parent / "errors.log",
        _env_file=None,
    )


@pytest_asyncio.fixture
async def store(temp_db_path):
    """Provide an object store on a temporary database."""
    store = await ObjectStore.open(f"sqlite+aiosqlite:///{temp_db_path}")
    yield store
    await store.close()


@pytest.fixture
def resolver(store):
    return TaxonomyResolver(store)


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest_asyncio.fixture
async def notebook(store, processor, config):
    """A loaded notebook with an API key configured."""
    notebook = Notebook(store, processor, config)
    await notebook.load()
    await notebook.update_settings(api_key="test-key")
    yield notebook
    await notebook.flush()


@pytest_asyncio.fixture
async def filed_note(store):
    """A persisted note filed under Personal / General."""
    project = Project(
        id="p-personal", name="Personal", subjects=[Subject(id="s-general", name="General")]
    )
    await store.add(Collection.PROJECTS, project)
    note = Note.new("Title", "First draft", project.id, "s-general")
    await store.add(Collection.NOTES, note)
    return note
