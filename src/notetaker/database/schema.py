"""SQLAlchemy database schema for NoteTaker."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, String, Text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from notetaker.models.settings import PerformanceProfile, Theme


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class NoteRecord(Base):
    """Database record for a note."""

    __tablename__ = "notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    summary: Mapped[str] = mapped_column(Text, default="", nullable=False)
    detailed_summary: Mapped[str] = mapped_column(Text, default="", nullable=False)
    todos: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    key_people: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    decisions: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    graph_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    attachments: Mapped[list[dict[str, str]]] = mapped_column(
        JSON, default=list, nullable=False
    )

    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_template: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    disable_ai_sync: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_notes_project_id", "project_id"),
        Index("idx_notes_subject_id", "subject_id"),
    )


class ProjectRecord(Base):
    """Database record for a project; its subjects are stored inline."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    subjects: Mapped[list[dict[str, str]]] = mapped_column(
        JSON, default=list, nullable=False
    )

    # Name uniqueness is case-insensitive and enforced by the resolver.
    __table_args__ = (Index("idx_projects_name", "name"),)


class NoteVersionRecord(Base):
    """Append-only snapshot of a note before a content-changing write."""

    __tablename__ = "note_versions"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    note_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    saved_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_note_versions_note_id", "note_id"),)


class UserSettingsRecord(Base):
    """The single user settings row."""

    __tablename__ = "user_settings"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    ui_language: Mapped[str] = mapped_column(String(16), nullable=False)
    ai_language: Mapped[str] = mapped_column(String(64), nullable=False)
    api_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    theme: Mapped[str] = mapped_column(Enum(Theme), default=Theme.DARK, nullable=False)
    performance_profile: Mapped[str] = mapped_column(
        Enum(PerformanceProfile),
        default=PerformanceProfile.MAX_QUALITY,
        nullable=False,
    )


def get_engine(database_url: str) -> AsyncEngine:
    """Create async database engine."""
    return create_async_engine(database_url, echo=False)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory."""
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def init_database(
    database_url: str,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Initialize database and return the engine with its session factory."""
    engine = get_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, get_session_factory(engine)
