"""Transactional object store for NoteTaker.

Four collections (notes, projects, note versions, settings) sit on one
SQLite database. Each public call is a single transaction: it either
commits completely or leaves the store untouched.
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Sequence, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from notetaker.database.schema import (
    Base,
    NoteRecord,
    NoteVersionRecord,
    ProjectRecord,
    UserSettingsRecord,
    init_database,
)
from notetaker.errors import DeletionGuardError, DuplicateKeyError, StoreError
from notetaker.models.note import Attachment, Note, NoteVersion
from notetaker.models.settings import UserSettings
from notetaker.models.taxonomy import Project, Subject

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    """Logical collections held by the store."""

    NOTES = "notes"
    PROJECTS = "projects"
    VERSIONS = "note_versions"
    SETTINGS = "user_settings"


# ==================== Transaction operations ====================


@dataclass(frozen=True)
class Put:
    """Insert or replace an entity."""

    collection: Collection
    entity: Any


@dataclass(frozen=True)
class Add:
    """Insert an entity; fails if its key already exists."""

    collection: Collection
    entity: Any


@dataclass(frozen=True)
class Delete:
    """Delete an entity by key (no-op if absent)."""

    collection: Collection
    key: str


@dataclass(frozen=True)
class DeleteWhere:
    """Delete every entity whose indexed field equals ``value``."""

    collection: Collection
    index: str
    value: Any


@dataclass(frozen=True)
class Clear:
    collection: Collection


@dataclass(frozen=True)
class RequireAbsent:
    """Abort the transaction if any entity's indexed field equals ``value``."""

    collection: Collection
    index: str
    value: Any
    message: str
    error: type[DeletionGuardError] = field(default=DeletionGuardError)


Op = Union[Put, Add, Delete, DeleteWhere, Clear, RequireAbsent]


# ==================== Record mapping ====================


def _to_db_time(value: datetime) -> datetime:
    """SQLite stores naive datetimes; store everything as naive UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_time(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


def _note_to_record(note: Note) -> NoteRecord:
    return NoteRecord(
        id=note.id,
        title=note.title,
        content=note.content,
        project_id=note.project_id,
        subject_id=note.subject_id,
        created_at=_to_db_time(note.created_at),
        updated_at=_to_db_time(note.updated_at),
        summary=note.summary,
        detailed_summary=note.detailed_summary,
        todos=list(note.todos),
        key_people=list(note.key_people),
        tags=list(note.tags),
        decisions=list(note.decisions),
        graph_data=note.graph_data,
        attachments=[asdict(a) for a in note.attachments],
        is_archived=note.is_archived,
        is_template=note.is_template,
        disable_ai_sync=note.disable_ai_sync,
    )


def _record_to_note(record: NoteRecord) -> Note:
    return Note(
        id=record.id,
        title=record.title,
        content=record.content,
        project_id=record.project_id,
        subject_id=record.subject_id,
        created_at=_from_db_time(record.created_at),
        updated_at=_from_db_time(record.updated_at),
        summary=record.summary or "",
        detailed_summary=record.detailed_summary or "",
        todos=list(record.todos or []),
        key_people=list(record.key_people or []),
        tags=list(record.tags or []),
        decisions=list(record.decisions or []),
        graph_data=record.graph_data,
        attachments=[Attachment(**a) for a in record.attachments or []],
        is_archived=record.is_archived,
        is_template=record.is_template,
        disable_ai_sync=record.disable_ai_sync,
    )


def _project_to_record(project: Project) -> ProjectRecord:
    return ProjectRecord(
        id=project.id,
        name=project.name,
        description=project.description,
        subjects=[asdict(s) for s in project.subjects],
    )


def _record_to_project(record: ProjectRecord) -> Project:
    return Project(
        id=record.id,
        name=record.name,
        description=record.description,
        subjects=[Subject(**s) for s in record.subjects or []],
    )


def _version_to_record(version: NoteVersion) -> NoteVersionRecord:
    return NoteVersionRecord(
        id=version.id,
        note_id=version.note_id,
        title=version.title,
        content=version.content,
        saved_at=_to_db_time(version.saved_at),
    )


def _record_to_version(record: NoteVersionRecord) -> NoteVersion:
    return NoteVersion(
        note_id=record.note_id,
        title=record.title,
        content=record.content,
        saved_at=_from_db_time(record.saved_at),
    )


def _settings_to_record(settings: UserSettings) -> UserSettingsRecord:
    return UserSettingsRecord(
        id=settings.id,
        ui_language=settings.ui_language,
        ai_language=settings.ai_language,
        api_key=settings.api_key,
        theme=settings.theme,
        performance_profile=settings.performance_profile,
    )


def _record_to_settings(record: UserSettingsRecord) -> UserSettings:
    return UserSettings(
        id=record.id,
        ui_language=record.ui_language,
        ai_language=record.ai_language,
        api_key=record.api_key,
        theme=getattr(record.theme, "value", record.theme),
        performance_profile=getattr(
            record.performance_profile, "value", record.performance_profile
        ),
    )


@dataclass(frozen=True)
class _Mapping:
    record: type[Base]
    key_of: Callable[[Any], str]
    to_record: Callable[[Any], Base]
    from_record: Callable[[Any], Any]
    indexes: dict[str, Any]


_MAPPINGS: dict[Collection, _Mapping] = {
    Collection.NOTES: _Mapping(
        record=NoteRecord,
        key_of=lambda note: note.id,
        to_record=_note_to_record,
        from_record=_record_to_note,
        indexes={
            "project_id": NoteRecord.project_id,
            "subject_id": NoteRecord.subject_id,
        },
    ),
    Collection.PROJECTS: _Mapping(
        record=ProjectRecord,
        key_of=lambda project: project.id,
        to_record=_project_to_record,
        from_record=_record_to_project,
        indexes={"name": ProjectRecord.name},
    ),
    Collection.VERSIONS: _Mapping(
        record=NoteVersionRecord,
        key_of=lambda version: version.id,
        to_record=_version_to_record,
        from_record=_record_to_version,
        indexes={"note_id": NoteVersionRecord.note_id},
    ),
    Collection.SETTINGS: _Mapping(
        record=UserSettingsRecord,
        key_of=lambda settings: settings.id,
        to_record=_settings_to_record,
        from_record=_record_to_settings,
        indexes={},
    ),
}


def _index_column(collection: Collection, index: str) -> Any:
    try:
        return _MAPPINGS[collection].indexes[index]
    except KeyError:
        raise ValueError(f"Collection '{collection.value}' has no index '{index}'") from None


def _is_locked_error(exc: BaseException) -> bool:
    """True for SQLite's transient lock contention errors."""
    return isinstance(exc, OperationalError) and "locked" in str(exc).lower()


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Translate database driver errors into StoreError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("Store failure while trying to %s: %s", action, e)
        raise StoreError(f"Could not {action}: {e}") from e


# ==================== Store ====================


class ObjectStore:
    """Async key-value style store over SQLAlchemy.

    Create one instance per process with :meth:`open` and pass it to every
    component that needs it; close it once at shutdown.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        """Initialize the store around an existing engine."""
        self.engine = engine
        self.session_factory = session_factory
        self._write_lock = asyncio.Lock()

    @classmethod
    async def open(cls, database_url: str) -> "ObjectStore":
        """Create the schema if needed and return a ready store."""
        engine, session_factory = await init_database(database_url)
        logger.debug("Opened object store at %s", database_url)
        return cls(engine, session_factory)

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        await self.engine.dispose()

    # ==================== Reads ====================

    async def get(self, collection: Collection, key: str) -> Optional[Any]:
        """Get an entity by key, or None if absent."""
        mapping = _MAPPINGS[collection]
        with _store_errors(f"read {collection.value} '{key}'"):
            async with self.session_factory() as session:
                record = await session.get(mapping.record, key)
                return mapping.from_record(record) if record is not None else None

    async def get_all(self, collection: Collection) -> list[Any]:
        """Get every entity in a collection."""
        mapping = _MAPPINGS[collection]
        with _store_errors(f"read {collection.value}"):
            async with self.session_factory() as session:
                records = (await session.scalars(select(mapping.record))).all()
                return [mapping.from_record(r) for r in records]

    async def scan_by_index(
        self, collection: Collection, index: str, value: Any
    ) -> list[Any]:
        """Get all entities whose indexed field equals ``value``."""
        mapping = _MAPPINGS[collection]
        column = _index_column(collection, index)
        with _store_errors(f"scan {collection.value} by {index}"):
            async with self.session_factory() as session:
                stmt = select(mapping.record).where(column == value)
                records = (await session.scalars(stmt)).all()
                return [mapping.from_record(r) for r in records]

    # ==================== Writes ====================

    async def put(self, collection: Collection, entity: Any) -> None:
        """Insert or replace an entity."""
        await self.transact([Put(collection, entity)])

    async def add(self, collection: Collection, entity: Any) -> None:
        """Insert an entity, raising DuplicateKeyError if the key exists."""
        await self.transact([Add(collection, entity)])

    async def delete(self, collection: Collection, key: str) -> None:
        """Delete an entity by key."""
        await self.transact([Delete(collection, key)])

    async def bulk_put(self, collection: Collection, entities: Sequence[Any]) -> None:
        """Insert or replace many entities in one transaction."""
        await self.transact([Put(collection, e) for e in entities])

    async def clear(self, collection: Collection) -> None:
        """Remove every entity from a collection."""
        await self.transact([Clear(collection)])

    async def transact(self, ops: Sequence[Op]) -> None:
        """Apply operations across collections atomically.

        Operations run in order inside one database transaction. If any of
        them fails (including a RequireAbsent guard) nothing is committed.

        Args:
            ops: Operations to apply

        Raises:
            StoreError: The transaction was rolled back
        """
        if not ops:
            return
        with _store_errors("complete the transaction"):
            async with self._write_lock:
                await self._run_transaction(ops)

    @retry(
        retry=retry_if_exception(_is_locked_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, max=1),
        reraise=True,
    )
    async def _run_transaction(self, ops: Sequence[Op]) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                for op in ops:
                    await self._apply(session, op)

    async def _apply(self, session: AsyncSession, op: Op) -> None:
        """Apply one operation inside an open transaction."""
        mapping = _MAPPINGS[op.collection]

        if isinstance(op, RequireAbsent):
            column = _index_column(op.collection, op.index)
            stmt = select(column).where(column == op.value).limit(1)
            if (await session.execute(stmt)).first() is not None:
                raise op.error(op.message)
        elif isinstance(op, Add):
            key = mapping.key_of(op.entity)
            if await session.get(mapping.record, key) is not None:
                raise DuplicateKeyError(
                    f"An entry '{key}' already exists in {op.collection.value}."
                )
            session.add(mapping.to_record(op.entity))
            await session.flush()
        elif isinstance(op, Put):
            await session.merge(mapping.to_record(op.entity))
        elif isinstance(op, Delete):
            await session.execute(
                delete(mapping.record).where(mapping.record.id == op.key)
            )
        elif isinstance(op, DeleteWhere):
            column = _index_column(op.collection, op.index)
            await session.execute(delete(mapping.record).where(column == op.value))
        elif isinstance(op, Clear):
            await session.execute(delete(mapping.record))
        else:
            raise TypeError(f"Unsupported store operation: {op!r}")
