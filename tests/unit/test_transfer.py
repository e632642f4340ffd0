"""Unit tests for snapshot export and import."""

import json
from datetime import timedelta

import pytest

from notetaker.database.store import Collection
from notetaker.errors import InvalidSnapshotError
from notetaker.models.note import Note, NoteVersion, utc_now
from notetaker.models.settings import SETTINGS_ID, Theme, UserSettings
from notetaker.models.taxonomy import Project, Subject
from notetaker.services.transfer import (
    Snapshot,
    dumps,
    export_snapshot,
    import_snapshot,
    loads,
)


def imported_project(project_id="x-work", name="work", subjects=(("x-meet", "Meetings"),)):
    return Project(
        id=project_id,
        name=name,
        description="From elsewhere",
        subjects=[Subject(id=sid, name=sname) for sid, sname in subjects],
    )


class TestExport:
    """Tests for reading and serializing snapshots."""

    @pytest.mark.asyncio
    async def test_export_survives_json(self, store, filed_note):
        """Test that an exported snapshot parses back to equal entities."""
        version = NoteVersion(filed_note.id, "Title", "Zero draft", utc_now() - timedelta(hours=1))
        await store.put(Collection.VERSIONS, version)
        await store.put(Collection.SETTINGS, UserSettings(api_key="k", theme=Theme.LIGHT))

        snapshot = await export_snapshot(store)
        parsed = loads(dumps(snapshot))

        assert parsed.notes == [filed_note]
        assert parsed.projects == snapshot.projects
        assert parsed.versions == [version]
        assert parsed.settings.theme is Theme.LIGHT

    @pytest.mark.asyncio
    async def test_dumps_is_plain_json(self, store, filed_note):
        data = json.loads(dumps(await export_snapshot(store)))

        assert set(data) == {"notes", "projects", "settings", "versions"}
        assert data["notes"][0]["title"] == "Title"
        assert data["settings"] is None


class TestLoads:
    """Tests for parsing snapshot files."""

    def test_not_json_is_rejected(self):
        with pytest.raises(InvalidSnapshotError):
            loads("this is not json")

    def test_wrong_shape_is_rejected(self):
        with pytest.raises(InvalidSnapshotError, match="not a valid NoteTaker export"):
            loads(json.dumps({"notes": [{"title": "missing everything else"}]}))

    def test_missing_collections_default_to_empty(self):
        snapshot = loads("{}")

        assert snapshot.notes == []
        assert snapshot.projects == []
        assert snapshot.settings is None

    def test_naive_times_are_read_as_utc(self):
        raw = {
            "notes": [
                {
                    "id": "n1",
                    "title": "T",
                    "content": "C",
                    "project_id": "p",
                    "subject_id": "s",
                    "created_at": "2024-01-01T10:00:00",
                    "updated_at": "2024-01-01T11:00:00",
                }
            ]
        }

        note = loads(json.dumps(raw)).notes[0]

        assert note.created_at.utcoffset() == timedelta(0)
        assert note.updated_at.hour == 11


class TestImport:
    """Tests for merging snapshots into the store."""

    @pytest.mark.asyncio
    async def test_projects_matched_case_insensitively(self, store, resolver):
        local = await resolver.resolve("Work", "Meetings")
        note = Note(id="n1", title="T", content="C", project_id="x-work", subject_id="x-meet")

        summary = await import_snapshot(
            store, resolver, Snapshot(notes=[note], projects=[imported_project()])
        )

        projects = await store.get_all(Collection.PROJECTS)
        assert [p.id for p in projects] == [local.project_id]
        stored = await store.get(Collection.NOTES, "n1")
        assert (stored.project_id, stored.subject_id) == tuple(local)
        assert summary.projects_created == 0
        assert summary.subjects_created == 0

    @pytest.mark.asyncio
    async def test_unmatched_subject_appended_with_fresh_id(self, store, resolver):
        local = await resolver.resolve("Work", "Meetings")
        snapshot = Snapshot(
            projects=[imported_project(subjects=[("x-meet", "meetings"), ("x-plan", "Planning")])]
        )

        summary = await import_snapshot(store, resolver, snapshot)

        project = await store.get(Collection.PROJECTS, local.project_id)
        assert [s.name for s in project.subjects] == ["Meetings", "Planning"]
        assert project.find_subject("Planning").id != "x-plan"
        assert summary.subjects_created == 1

    @pytest.mark.asyncio
    async def test_unmatched_project_created_with_fresh_id(self, store, resolver):
        note = Note(id="n1", title="T", content="C", project_id="x-work", subject_id="x-meet")

        summary = await import_snapshot(
            store, resolver, Snapshot(notes=[note], projects=[imported_project(name="Research")])
        )

        project = await resolver.find_project("research")
        assert project.id != "x-work"
        assert project.description == "From elsewhere"
        stored = await store.get(Collection.NOTES, "n1")
        assert stored.project_id == project.id
        assert stored.subject_id == project.find_subject("Meetings").id
        assert summary.projects_created == 1

    @pytest.mark.asyncio
    async def test_orphan_notes_refiled_to_default(self, store, resolver):
        """Test that a note with an unknown category lands in Personal / General."""
        note = Note(id="n1", title="T", content="C", project_id="gone", subject_id="gone")

        summary = await import_snapshot(store, resolver, Snapshot(notes=[note]))

        stored = await store.get(Collection.NOTES, "n1")
        project = await store.get(Collection.PROJECTS, stored.project_id)
        assert project.name == "Personal"
        assert project.get_subject(stored.subject_id).name == "General"
        assert summary.refiled_notes == 1

    @pytest.mark.asyncio
    async def test_versions_copied(self, store, resolver):
        version = NoteVersion("n1", "T", "old", utc_now())

        summary = await import_snapshot(store, resolver, Snapshot(versions=[version]))

        assert await store.get_all(Collection.VERSIONS) == [version]
        assert summary.versions == 1

    @pytest.mark.asyncio
    async def test_local_api_key_kept_when_snapshot_has_none(self, store, resolver):
        await store.put(Collection.SETTINGS, UserSettings(api_key="local-key"))

        await import_snapshot(
            store, resolver, Snapshot(settings=UserSettings(id="other", ai_language="French"))
        )

        settings = await store.get(Collection.SETTINGS, SETTINGS_ID)
        assert settings.api_key == "local-key"
        assert settings.ai_language == "French"

    @pytest.mark.asyncio
    async def test_snapshot_api_key_wins(self, store, resolver):
        await store.put(Collection.SETTINGS, UserSettings(api_key="local-key"))

        await import_snapshot(store, resolver, Snapshot(settings=UserSettings(api_key="new-key")))

        assert (await store.get(Collection.SETTINGS, SETTINGS_ID)).api_key == "new-key"
