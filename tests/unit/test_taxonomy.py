"""Unit tests for TaxonomyResolver."""

import asyncio

import pytest

from notetaker.database.store import Collection
from notetaker.errors import (
    CategoryInUseError,
    CategoryNotFoundError,
    DuplicateCategoryError,
)
from notetaker.models.note import Note
from notetaker.services.taxonomy import TaxonomyResolver


class TestResolve:
    """Tests for find-or-create resolution."""

    @pytest.mark.asyncio
    async def test_creates_project_and_subject(self, resolver, store):
        ref = await resolver.resolve("Work", "Meetings", "Day job")

        project = await store.get(Collection.PROJECTS, ref.project_id)
        assert project.name == "Work"
        assert project.description == "Day job"
        assert [s.name for s in project.subjects] == ["Meetings"]
        assert project.subjects[0].id == ref.subject_id

    @pytest.mark.asyncio
    async def test_matches_case_insensitively(self, resolver, store):
        """Test that names differing only in case resolve to the same ids."""
        first = await resolver.resolve("Work", "Meetings")
        second = await resolver.resolve("  work ", "MEETINGS")

        assert first == second
        assert len(await store.get_all(Collection.PROJECTS)) == 1

    @pytest.mark.asyncio
    async def test_blank_names_use_defaults(self, resolver):
        """Test fallback to Personal / General."""
        ref = await resolver.resolve("", "  ")
        project = await resolver.get_project(ref.project_id)

        assert project.name == "Personal"
        assert project.get_subject(ref.subject_id).name == "General"

    @pytest.mark.asyncio
    async def test_new_subject_added_to_existing_project(self, resolver, store):
        first = await resolver.resolve("Work", "Meetings")
        second = await resolver.resolve("Work", "Planning")

        assert first.project_id == second.project_id
        project = await store.get(Collection.PROJECTS, first.project_id)
        assert [s.name for s in project.subjects] == ["Meetings", "Planning"]

    @pytest.mark.asyncio
    async def test_concurrent_identical_resolutions_create_once(self, resolver, store):
        """Test that racing resolutions of one pair yield one entity and one id."""
        names = [("Work", "Meetings"), ("work", "meetings"), ("WORK", "Meetings")] * 4

        refs = await asyncio.gather(*(resolver.resolve(p, s) for p, s in names))

        assert len(set(refs)) == 1
        projects = await store.get_all(Collection.PROJECTS)
        assert len(projects) == 1
        assert len(projects[0].subjects) == 1

    @pytest.mark.asyncio
    async def test_concurrent_subjects_are_not_lost(self, resolver, store):
        """Test that racing additions of different subjects all survive."""
        subjects = [f"Subject {i}" for i in range(6)]

        refs = await asyncio.gather(*(resolver.resolve("Work", s) for s in subjects))

        assert len({r.project_id for r in refs}) == 1
        project = await store.get(Collection.PROJECTS, refs[0].project_id)
        assert sorted(s.name for s in project.subjects) == subjects
        assert {r.subject_id for r in refs} == {s.id for s in project.subjects}


class TestManagement:
    """Tests for explicit project and subject management."""

    @pytest.mark.asyncio
    async def test_create_project_has_general_subject(self, resolver):
        project = await resolver.create_project("Research", "Papers")
        assert [s.name for s in project.subjects] == ["General"]

    @pytest.mark.asyncio
    async def test_create_project_rejects_duplicate(self, resolver):
        await resolver.create_project("Research")
        with pytest.raises(DuplicateCategoryError):
            await resolver.create_project("research")

    @pytest.mark.asyncio
    async def test_add_subject_is_idempotent(self, resolver):
        project = await resolver.create_project("Research")

        first = await resolver.add_subject(project.id, "Papers")
        second = await resolver.add_subject(project.id, "papers")

        assert first == second
        assert len((await resolver.get_project(project.id)).subjects) == 2

    @pytest.mark.asyncio
    async def test_rename_project_rejects_clash(self, resolver):
        await resolver.create_project("Research")
        other = await resolver.create_project("Hobby")

        with pytest.raises(DuplicateCategoryError):
            await resolver.rename_project(other.id, "RESEARCH")

    @pytest.mark.asyncio
    async def test_rename_project(self, resolver):
        project = await resolver.create_project("Hobby")

        await resolver.rename_project(project.id, "Hobbies", "Fun things")

        renamed = await resolver.get_project(project.id)
        assert renamed.name == "Hobbies"
        assert renamed.description == "Fun things"
        assert (await resolver.find_project("hobbies")).id == project.id

    @pytest.mark.asyncio
    async def test_rename_subject(self, resolver):
        ref = await resolver.resolve("Work", "Meetings")

        await resolver.rename_subject(ref.subject_id, "Standups")

        project = await resolver.get_project(ref.project_id)
        assert project.get_subject(ref.subject_id).name == "Standups"

    @pytest.mark.asyncio
    async def test_unknown_project_raises(self, resolver):
        with pytest.raises(CategoryNotFoundError):
            await resolver.get_project("nope")

    @pytest.mark.asyncio
    async def test_list_projects_sorted(self, resolver):
        await resolver.create_project("beta")
        await resolver.create_project("Alpha")

        assert [p.name for p in await resolver.list_projects()] == ["Alpha", "beta"]


class TestDeletionGuards:
    """Tests for guarded project / subject deletion."""

    @pytest.mark.asyncio
    async def test_delete_project_with_notes_refused(self, resolver, store):
        ref = await resolver.resolve("Work", "Meetings")
        await store.add(Collection.NOTES, Note.new("T", "C", ref.project_id, ref.subject_id))

        with pytest.raises(CategoryInUseError, match="Cannot delete a project that contains notes."):
            await resolver.delete_project(ref.project_id)

        assert await store.get(Collection.PROJECTS, ref.project_id) is not None

    @pytest.mark.asyncio
    async def test_delete_empty_project(self, resolver, store):
        project = await resolver.create_project("Empty")

        await resolver.delete_project(project.id)

        assert await store.get(Collection.PROJECTS, project.id) is None

    @pytest.mark.asyncio
    async def test_delete_subject_with_notes_refused(self, resolver, store):
        ref = await resolver.resolve("Work", "Meetings")
        await store.add(Collection.NOTES, Note.new("T", "C", ref.project_id, ref.subject_id))

        with pytest.raises(CategoryInUseError, match="Cannot delete a subject that contains notes."):
            await resolver.delete_subject(ref.subject_id)

        project = await store.get(Collection.PROJECTS, ref.project_id)
        assert project.get_subject(ref.subject_id) is not None

    @pytest.mark.asyncio
    async def test_delete_empty_subject(self, resolver, store):
        ref = await resolver.resolve("Work", "Meetings")
        other = await resolver.resolve("Work", "Planning")

        await resolver.delete_subject(other.subject_id)

        project = await store.get(Collection.PROJECTS, ref.project_id)
        assert [s.name for s in project.subjects] == ["Meetings"]

    @pytest.mark.asyncio
    async def test_unsaved_references_refuse_delete(self, store):
        """Test that notes reported by the callback protect their categories."""
        referenced = []
        resolver = TaxonomyResolver(
            store, references=lambda field, value: referenced.append((field, value)) or True
        )
        ref = await resolver.resolve("Work", "Meetings")

        with pytest.raises(CategoryInUseError):
            await resolver.delete_subject(ref.subject_id)
        with pytest.raises(CategoryInUseError):
            await resolver.delete_project(ref.project_id)

        assert referenced == [("subject_id", ref.subject_id), ("project_id", ref.project_id)]
        project = await store.get(Collection.PROJECTS, ref.project_id)
        assert project.get_subject(ref.subject_id) is not None

    @pytest.mark.asyncio
    async def test_filing_blocks_delete_until_note_stored(self, resolver, store):
        project = await resolver.create_project("Work")

        async with resolver.filing("work", "Meetings") as ref:
            deleting = asyncio.create_task(resolver.delete_project(project.id))
            await asyncio.sleep(0.01)
            assert not deleting.done()
            await store.add(Collection.NOTES, Note.new("T", "C", ref.project_id, ref.subject_id))

        with pytest.raises(CategoryInUseError):
            await deleting
        assert ref.project_id == project.id
        assert await store.get(Collection.PROJECTS, project.id) is not None
