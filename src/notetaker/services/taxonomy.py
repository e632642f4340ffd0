"""Taxonomy resolver: turns project / subject names into stable ids."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from notetaker.database.store import (
    Collection,
    Delete,
    ObjectStore,
    Put,
    RequireAbsent,
)
from notetaker.errors import (
    CategoryInUseError,
    CategoryNotFoundError,
    DuplicateCategoryError,
)
from notetaker.models.note import new_id
from notetaker.models.taxonomy import Project, Subject, TaxonomyRef, fold_name
from notetaker.services.coordination import KeyedLocks, SingleFlight

logger = logging.getLogger(__name__)

DEFAULT_PROJECT = "Personal"
DEFAULT_SUBJECT = "General"

PROJECT_IN_USE = "Cannot delete a project that contains notes."
SUBJECT_IN_USE = "Cannot delete a subject that contains notes."

ReferenceCheck = Callable[[str, str], bool]


class TaxonomyResolver:
    """Finds or creates projects and subjects by case-insensitive name.

    A project and its subjects are one stored entity, so adding a subject is
    a read-modify-write of the whole project. Every mutation of a project
    runs under a lock keyed by its folded name, and identical concurrent
    resolutions share a single in-flight call.

    Deleting a category is refused while any note refers to it. Persisted
    notes are checked in the delete transaction; notes that only exist in
    memory are reported by the ``references`` callback.
    """

    def __init__(self, store: ObjectStore, references: Optional[ReferenceCheck] = None):
        """Initialize the resolver.

        Args:
            store: Store holding the projects collection
            references: Called with ("project_id" | "subject_id", id); returns
                True if an unsaved note refers to that category
        """
        self.store = store
        self.references = references
        self._locks = KeyedLocks()
        self._flights = SingleFlight()

    # ==================== Resolution ====================

    async def resolve(
        self,
        project_name: str,
        subject_name: str,
        project_description: Optional[str] = None,
    ) -> TaxonomyRef:
        """Get ids for a (project, subject) pair, creating missing entries once.

        Args:
            project_name: Project name, matched case-insensitively
            subject_name: Subject name, matched case-insensitively within the project
            project_description: Description used only if the project is created

        Returns:
            TaxonomyRef with the project and subject ids
        """
        project_name = project_name.strip() or DEFAULT_PROJECT
        subject_name = subject_name.strip() or DEFAULT_SUBJECT
        key = (fold_name(project_name), fold_name(subject_name))
        return await self._flights.do(
            key,
            lambda: self._resolve(project_name, subject_name, project_description),
        )

    async def _resolve(
        self,
        project_name: str,
        subject_name: str,
        project_description: Optional[str],
    ) -> TaxonomyRef:
        async with self._locks.lock_for(fold_name(project_name)):
            return await self._find_or_create(project_name, subject_name, project_description)

    @asynccontextmanager
    async def filing(
        self,
        project_name: str,
        subject_name: str,
        project_description: Optional[str] = None,
    ) -> AsyncIterator[TaxonomyRef]:
        """Resolve a pair and keep the project locked while a note is filed.

        The project and subject cannot be deleted or renamed until the block
        exits, so the caller can store the note (or put it in memory where
        ``references`` sees it) without racing a delete.
        """
        project_name = project_name.strip() or DEFAULT_PROJECT
        subject_name = subject_name.strip() or DEFAULT_SUBJECT
        async with self._locks.lock_for(fold_name(project_name)):
            yield await self._find_or_create(project_name, subject_name, project_description)

    async def _find_or_create(
        self,
        project_name: str,
        subject_name: str,
        project_description: Optional[str],
    ) -> TaxonomyRef:
        project = await self.find_project(project_name)
        is_new = project is None
        if project is None:
            project = Project(id=new_id(), name=project_name, description=project_description)

        subject = project.find_subject(subject_name)
        if subject is None:
            subject = Subject(id=new_id(), name=subject_name)
            project.subjects.append(subject)
            if is_new:
                await self.store.add(Collection.PROJECTS, project)
                logger.info("Created project '%s'", project.name)
            else:
                await self.store.put(Collection.PROJECTS, project)
            logger.info("Created subject '%s' in '%s'", subject.name, project.name)

        return TaxonomyRef(project.id, subject.id)

    @asynccontextmanager
    async def hold(self, *project_names: str) -> AsyncIterator[None]:
        """Block taxonomy changes to the named projects while held."""
        async with self._locks.hold(*(fold_name(n) for n in project_names)):
            yield

    # ==================== Lookup ====================

    async def list_projects(self) -> list[Project]:
        """All projects sorted by name."""
        projects = await self.store.get_all(Collection.PROJECTS)
        return sorted(projects, key=lambda p: fold_name(p.name))

    async def find_project(self, name: str) -> Optional[Project]:
        """Find a project by case-insensitive name."""
        key = fold_name(name)
        for project in await self.list_projects():
            if fold_name(project.name) == key:
                return project
        return None

    async def get_project(self, project_id: str) -> Project:
        project = await self.store.get(Collection.PROJECTS, project_id)
        if project is None:
            raise CategoryNotFoundError(f"Project '{project_id}' was not found.")
        return project

    async def _project_of_subject(self, subject_id: str) -> Project:
        for project in await self.store.get_all(Collection.PROJECTS):
            if project.get_subject(subject_id) is not None:
                return project
        raise CategoryNotFoundError(f"Subject '{subject_id}' was not found.")

    @asynccontextmanager
    async def _project_locked(
        self, project_id: str, *other_names: str
    ) -> AsyncIterator[Project]:
        """Yield a fresh copy of a project while holding its name lock.

        The project is re-read after locking; if it was renamed in between,
        the lock for the new name is taken instead.
        """
        while True:
            project = await self.get_project(project_id)
            name_key = fold_name(project.name)
            async with self._locks.hold(name_key, *(fold_name(n) for n in other_names)):
                current = await self.get_project(project_id)
                if fold_name(current.name) == name_key:
                    yield current
                    return

    # ==================== Explicit management ====================

    async def create_project(
        self, name: str, description: Optional[str] = None
    ) -> Project:
        """Create a project with a default subject.

        Raises:
            DuplicateCategoryError: A project with this name exists
        """
        name = name.strip()
        if not name:
            raise ValueError("Project name cannot be empty.")

        async with self._locks.lock_for(fold_name(name)):
            if await self.find_project(name) is not None:
                raise DuplicateCategoryError(f'Project "{name}" already exists.')
            project = Project(
                id=new_id(),
                name=name,
                description=description,
                subjects=[Subject(id=new_id(), name=DEFAULT_SUBJECT)],
            )
            await self.store.add(Collection.PROJECTS, project)

        logger.info("Created project '%s'", name)
        return project

    async def add_subject(self, project_id: str, name: str) -> str:
        """Add a subject to a project, returning the existing id on a name match."""
        name = name.strip()
        if not name:
            raise ValueError("Subject name cannot be empty.")

        async with self._project_locked(project_id) as project:
            existing = project.find_subject(name)
            if existing is not None:
                return existing.id
            subject = Subject(id=new_id(), name=name)
            project.subjects.append(subject)
            await self.store.put(Collection.PROJECTS, project)
            return subject.id

    async def rename_project(
        self, project_id: str, name: str, description: Optional[str] = None
    ) -> Project:
        """Rename a project, optionally replacing its description."""
        name = name.strip()
        if not name:
            raise ValueError("Project name cannot be empty.")

        async with self._project_locked(project_id, name) as project:
            clash = await self.find_project(name)
            if clash is not None and clash.id != project.id:
                raise DuplicateCategoryError(f'Project "{name}" already exists.')
            project.name = name
            if description is not None:
                project.description = description
            await self.store.put(Collection.PROJECTS, project)
            return project

    async def rename_subject(self, subject_id: str, name: str) -> None:
        name = name.strip()
        if not name:
            raise ValueError("Subject name cannot be empty.")

        owner = await self._project_of_subject(subject_id)
        async with self._project_locked(owner.id) as project:
            subject = project.get_subject(subject_id)
            if subject is None:
                raise CategoryNotFoundError(f"Subject '{subject_id}' was not found.")
            clash = project.find_subject(name)
            if clash is not None and clash.id != subject_id:
                raise DuplicateCategoryError(
                    f'Subject "{name}" already exists in this project.'
                )
            subject.name = name
            await self.store.put(Collection.PROJECTS, project)

    def _refuse_if_referenced(self, field: str, category_id: str, message: str) -> None:
        if self.references is not None and self.references(field, category_id):
            raise CategoryInUseError(message)

    async def delete_project(self, project_id: str) -> None:
        """Delete a project that no note is filed under.

        Raises:
            CategoryInUseError: At least one note references the project
        """
        async with self._project_locked(project_id) as project:
            self._refuse_if_referenced("project_id", project.id, PROJECT_IN_USE)
            await self.store.transact([
                RequireAbsent(
                    Collection.NOTES,
                    "project_id",
                    project.id,
                    PROJECT_IN_USE,
                    CategoryInUseError,
                ),
                Delete(Collection.PROJECTS, project.id),
            ])
        logger.info("Deleted project '%s'", project.name)

    async def delete_subject(self, subject_id: str) -> None:
        """Delete a subject that no note is filed under.

        Raises:
            CategoryInUseError: At least one note references the subject
        """
        owner = await self._project_of_subject(subject_id)
        async with self._project_locked(owner.id) as project:
            self._refuse_if_referenced("subject_id", subject_id, SUBJECT_IN_USE)
            project.subjects = [s for s in project.subjects if s.id != subject_id]
            await self.store.transact([
                RequireAbsent(
                    Collection.NOTES,
                    "subject_id",
                    subject_id,
                    SUBJECT_IN_USE,
                    CategoryInUseError,
                ),
                Put(Collection.PROJECTS, project),
            ])
