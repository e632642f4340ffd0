"""Unit tests for GeminiTaskProcessor."""

import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.genai import errors as genai_errors

from notetaker.errors import (
    ConfigurationRequiredError,
    InvalidResponseError,
    TaskProcessorError,
)
from notetaker.models.enrichment import AiTask, OrganizedNote, ResultKind, TaskKind
from notetaker.models.note import Attachment, Note
from notetaker.models.settings import PerformanceProfile, UserSettings
from notetaker.models.taxonomy import Project
from notetaker.services.gemini_service import GeminiTaskProcessor


ORGANIZED = {
    "project": "Work",
    "subject": "Meetings",
    "summary": "Weekly sync",
    "detailed_summary": "Long form",
    "todos": ["Send notes"],
    "key_people": ["Ann"],
    "tags": ["sync"],
    "decisions": [],
    "graph_data": {},
}


@pytest.fixture
def mock_genai():
    """Mock the google.genai module."""
    with patch("notetaker.services.gemini_service.genai") as mock:
        mock_client = MagicMock()
        mock_client.aio.models.generate_content = AsyncMock()
        mock.Client.return_value = mock_client
        yield mock, mock_client


@pytest.fixture
def processor(mock_genai):
    """Create a GeminiTaskProcessor with mocked Gemini API."""
    return GeminiTaskProcessor()


@pytest.fixture
def settings():
    return UserSettings(api_key="test-api-key", ai_language="German")


@pytest.fixture
def note():
    return Note.new("Standup", "Talked about the release.", "p1", "s1")


def respond(mock_client, text):
    response = MagicMock()
    response.text = text
    mock_client.aio.models.generate_content.return_value = response
    return response


def sent_contents(mock_client):
    return mock_client.aio.models.generate_content.call_args.kwargs["contents"]


class TestGeminiTaskProcessorInit:
    """Tests for processor initialization."""

    def test_init_default_model(self, mock_genai):
        assert GeminiTaskProcessor().model_name == "gemini-2.5-flash"

    def test_init_custom_model(self, mock_genai):
        assert GeminiTaskProcessor(model_name="gemini-pro").model_name == "gemini-pro"

    def test_client_created_lazily_per_key(self, mock_genai):
        """Test that clients are created on first use and cached per key."""
        mock, _ = mock_genai
        processor = GeminiTaskProcessor()
        mock.Client.assert_not_called()

        processor.client_for("key-a")
        processor.client_for("key-a")
        processor.client_for("key-b")

        assert mock.Client.call_count == 2
        mock.Client.assert_any_call(api_key="key-a")
        mock.Client.assert_any_call(api_key="key-b")

    @pytest.mark.asyncio
    async def test_missing_key_raises(self, processor, note, mock_genai):
        mock, _ = mock_genai

        with pytest.raises(ConfigurationRequiredError):
            await processor.process(
                AiTask(kind=TaskKind.FULL_ANALYSIS, note=note), UserSettings(), []
            )

        mock.Client.assert_not_called()


class TestFullAnalysis:
    """Tests for structured note analysis."""

    @pytest.mark.asyncio
    async def test_returns_organized_note(self, processor, settings, note, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, json.dumps(ORGANIZED))

        result = await processor.process(
            AiTask(kind=TaskKind.FULL_ANALYSIS, note=note),
            settings,
            [Project(id="p1", name="Work", description="Job")],
        )

        assert result.kind is ResultKind.ORGANIZED_NOTE
        assert isinstance(result.data, OrganizedNote)
        assert result.data.summary == "Weekly sync"
        assert result.data.graph_data is None
        call = mock_client.aio.models.generate_content.call_args
        assert call.kwargs["model"] == "gemini-2.5-flash"
        prompt = sent_contents(mock_client)[0].text
        assert "Talked about the release." in prompt
        assert 'name: "Work"' in prompt
        assert "German" in prompt

    @pytest.mark.asyncio
    async def test_image_attachments_sent_inline(self, processor, settings, note, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, json.dumps(ORGANIZED))
        image = b"\x89PNG fake"
        note.attachments = [
            Attachment(
                id="a1",
                data="data:image/png;base64," + base64.b64encode(image).decode(),
                mime_type="image/png",
            )
        ]

        await processor.process(AiTask(kind=TaskKind.FULL_ANALYSIS, note=note), settings, [])

        contents = sent_contents(mock_client)
        assert len(contents) == 2
        assert contents[1].inline_data.data == image
        assert contents[1].inline_data.mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_malformed_json_is_invalid_response(self, processor, settings, note, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, "{not json")

        with pytest.raises(InvalidResponseError):
            await processor.process(AiTask(kind=TaskKind.FULL_ANALYSIS, note=note), settings, [])

    @pytest.mark.asyncio
    async def test_missing_fields_is_invalid_response(self, processor, settings, note, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, json.dumps({"summary": "no category"}))

        with pytest.raises(InvalidResponseError):
            await processor.process(AiTask(kind=TaskKind.FULL_ANALYSIS, note=note), settings, [])

    @pytest.mark.asyncio
    async def test_empty_response_is_invalid(self, processor, settings, note, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, "")

        with pytest.raises(InvalidResponseError):
            await processor.process(AiTask(kind=TaskKind.FULL_ANALYSIS, note=note), settings, [])

    @pytest.mark.asyncio
    async def test_api_error_becomes_processor_error(self, processor, settings, note, mock_genai):
        _, mock_client = mock_genai
        mock_client.aio.models.generate_content.side_effect = genai_errors.APIError(
            500, {"error": {"message": "backend down", "status": "INTERNAL"}}
        )

        with pytest.raises(TaskProcessorError):
            await processor.process(AiTask(kind=TaskKind.FULL_ANALYSIS, note=note), settings, [])


class TestQueries:
    """Tests for chat and semantic search."""

    @pytest.mark.asyncio
    async def test_chat_excludes_archived_notes(self, processor, settings, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, json.dumps({"answer": "Yes", "source_note_ids": ["n1"]}))
        live = Note(id="n1", title="Live", content="visible", project_id="p", subject_id="s")
        archived = Note(
            id="n2", title="Old", content="hidden", project_id="p", subject_id="s", is_archived=True
        )

        result = await processor.process(
            AiTask(kind=TaskKind.CHAT_QUERY, question="Anything?", notes=[live, archived]),
            settings,
            [],
        )

        assert result.kind is ResultKind.CHAT_RESPONSE
        assert result.data.answer == "Yes"
        assert result.data.source_note_ids == ["n1"]
        prompt = sent_contents(mock_client)
        assert 'id="n1"' in prompt
        assert 'id="n2"' not in prompt

    @pytest.mark.asyncio
    async def test_search_returns_ids(self, processor, settings, note, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, json.dumps({"relevant_note_ids": [note.id]}))

        result = await processor.process(
            AiTask(kind=TaskKind.SEMANTIC_SEARCH, query="release", notes=[note]), settings, []
        )

        assert result.kind is ResultKind.SEARCH_RESULTS
        assert result.data == [note.id]


class TestTextActions:
    """Tests for free-text actions."""

    @pytest.mark.asyncio
    async def test_continue_writing_returns_only_new_text(self, processor, settings, note, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, "  Next we ship.  ")

        result = await processor.process(
            AiTask(kind=TaskKind.CONTINUE_WRITING, note=note), settings, []
        )

        assert result.kind is ResultKind.TEXT_APPEND
        assert result.data == "\nNext we ship."
        assert "Talked about the release." in sent_contents(mock_client)[0].text

    @pytest.mark.asyncio
    async def test_continue_writing_max_savings_prompt(self, processor, note, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, "More.")
        settings = UserSettings(api_key="k", performance_profile=PerformanceProfile.MAX_SAVINGS)

        await processor.process(AiTask(kind=TaskKind.CONTINUE_WRITING, note=note), settings, [])

        assert "one sentence" in sent_contents(mock_client)[0].text

    @pytest.mark.asyncio
    async def test_translate(self, processor, settings, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, "Hallo")

        result = await processor.process(
            AiTask(kind=TaskKind.TRANSLATE, content="Hello", target_language="German"),
            settings,
            [],
        )

        assert (result.kind, result.data) == (ResultKind.TEXT, "Hallo")
        assert "into German" in sent_contents(mock_client)

    @pytest.mark.asyncio
    async def test_change_tone(self, processor, settings, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, "Dear team")

        result = await processor.process(
            AiTask(kind=TaskKind.CHANGE_TONE, content="yo", tone="formal"), settings, []
        )

        assert result.data == "Dear team"
        assert "formal tone" in sent_contents(mock_client)

    @pytest.mark.asyncio
    async def test_summarize_selection_is_appended(self, processor, settings, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, "- point")

        result = await processor.process(
            AiTask(kind=TaskKind.SUMMARIZE_SELECTION, content="long text"), settings, []
        )

        assert result.kind is ResultKind.TEXT_APPEND
        assert result.data == "\n\n---\n**Selection Summary:**\n- point\n---"

    @pytest.mark.asyncio
    async def test_blank_text_is_invalid(self, processor, settings, mock_genai):
        _, mock_client = mock_genai
        respond(mock_client, "   ")

        with pytest.raises(InvalidResponseError):
            await processor.process(
                AiTask(kind=TaskKind.TRANSLATE, content="Hello", target_language="French"),
                settings,
                [],
            )
