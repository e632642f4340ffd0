"""Gemini-backed task processor for enrichment and AI actions."""

import base64
import binascii
import logging
from typing import Any, Optional, Sequence, Type, TypeVar

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, ValidationError

from notetaker.errors import (
    ConfigurationRequiredError,
    InvalidResponseError,
    TaskProcessorError,
)
from notetaker.models.enrichment import (
    AiTask,
    ChatAnswer,
    OrganizedNote,
    ResultKind,
    SearchResults,
    TaskKind,
    TaskResult,
)
from notetaker.models.note import Note
from notetaker.models.settings import PerformanceProfile, UserSettings
from notetaker.models.taxonomy import Project

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

MISSING_KEY_MESSAGE = (
    "A Gemini API key is required. Please add one in Settings to enable AI features."
)

CHAT_CONTEXT_CHARS = 500
SEARCH_CONTEXT_CHARS = 300


def _decode_attachment(data: str) -> Optional[bytes]:
    """Decode a base64 data URL (or bare base64) into bytes."""
    payload = data.split(",", 1)[1] if data.startswith("data:") else data
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Skipping attachment with undecodable data")
        return None


def _project_context(projects: Sequence[Project]) -> str:
    return "; ".join(
        f'{{name: "{p.name}", description: "{p.description or "No description."}"}}'
        for p in projects
    )


def _notes_context(notes: Sequence[Note], limit: int, prefer_summary: bool = False) -> str:
    lines = []
    for note in notes:
        if note.is_archived:
            continue
        body = (note.summary or note.content) if prefer_summary else note.content
        lines.append(
            f'<note id="{note.id}"><title>{note.title}</title>'
            f"<content>{body[:limit]}</content></note>"
        )
    return "\n".join(lines)


class GeminiTaskProcessor:
    """Task processor backed by the Google Gemini API.

    The API key comes from the user's settings, so clients are created
    lazily and cached per key.
    """

    DEFAULT_MODEL = "gemini-2.5-flash"

    def __init__(self, model_name: Optional[str] = None):
        """Initialize the processor.

        Args:
            model_name: Model to use (default: gemini-2.5-flash)
        """
        self.model_name = model_name or self.DEFAULT_MODEL
        self._clients: dict[str, Any] = {}

    def client_for(self, api_key: Optional[str]) -> Any:
        """Get (or lazily create) the client for an API key."""
        if not api_key or not api_key.strip():
            raise ConfigurationRequiredError(MISSING_KEY_MESSAGE)
        client = self._clients.get(api_key)
        if client is None:
            client = self._clients[api_key] = genai.Client(api_key=api_key)
        return client

    async def process(
        self, task: AiTask, settings: UserSettings, projects: Sequence[Project]
    ) -> TaskResult:
        """Run a task against Gemini.

        Args:
            task: The task to run
            settings: Current user settings (API key, AI language, profile)
            projects: Existing projects, offered as categorization context

        Returns:
            TaskResult whose kind depends on the task kind

        Raises:
            ConfigurationRequiredError: No API key is configured
            InvalidResponseError: The response did not have the expected shape
            TaskProcessorError: The API call failed
        """
        client = self.client_for(settings.api_key)
        logger.debug("Processing %s task", task.kind.value)

        if task.kind is TaskKind.FULL_ANALYSIS:
            return await self._full_analysis(client, task, settings, projects)
        if task.kind is TaskKind.CHAT_QUERY:
            return await self._chat(client, task, settings)
        if task.kind is TaskKind.SEMANTIC_SEARCH:
            return await self._search(client, task)
        return await self._rewrite(client, task, settings)

    # ==================== Structured tasks ====================

    async def _full_analysis(
        self,
        client: Any,
        task: AiTask,
        settings: UserSettings,
        projects: Sequence[Project],
    ) -> TaskResult:
        if task.note is None:
            raise ValueError("FULL_ANALYSIS requires a note.")
        prompt = (
            "Analyze the note content and structure it. "
            f"Considering existing projects [{_project_context(projects)}], "
            "assign the most appropriate project and subject. "
            "Extract summaries, todos, people, tags, decisions, and any graphable data. "
            "If the note has no data worth charting, graph_data MUST be null. "
            f"Respond in {settings.ai_language}."
        )
        organized = await self._generate_structured(
            client,
            self._note_parts(task.note, prompt),
            OrganizedNote,
            temperature=0.1,
        )
        return TaskResult(kind=ResultKind.ORGANIZED_NOTE, data=organized)

    async def _chat(self, client: Any, task: AiTask, settings: UserSettings) -> TaskResult:
        prompt = (
            "You are Cognito, an AI assistant. Answer the user's question based "
            "*only* on the provided notes context. If the answer is not in the notes, "
            "say so. Cite the note 'id' of every note used in source_note_ids. "
            f'Respond in {settings.ai_language}. Question: "{task.question}"\n\n'
            f"Context:\n{_notes_context(task.notes, CHAT_CONTEXT_CHARS)}"
        )
        answer = await self._generate_structured(client, prompt, ChatAnswer, temperature=0.2)
        return TaskResult(kind=ResultKind.CHAT_RESPONSE, data=answer)

    async def _search(self, client: Any, task: AiTask) -> TaskResult:
        prompt = (
            "Based on the user's query, identify the most semantically relevant notes "
            "from the context provided. Return only the IDs of the top 5 most relevant "
            f'notes. User Query: "{task.query}"\n\n'
            f"Context:\n{_notes_context(task.notes, SEARCH_CONTEXT_CHARS, prefer_summary=True)}"
        )
        results = await self._generate_structured(client, prompt, SearchResults, temperature=0.1)
        return TaskResult(kind=ResultKind.SEARCH_RESULTS, data=results.relevant_note_ids)

    # ==================== Text tasks ====================

    async def _rewrite(self, client: Any, task: AiTask, settings: UserSettings) -> TaskResult:
        if task.kind is TaskKind.CONTINUE_WRITING:
            if task.note is None:
                raise ValueError("CONTINUE_WRITING requires a note.")
            if settings.performance_profile is PerformanceProfile.MAX_SAVINGS:
                prompt = "Briefly continue this text with one sentence."
            else:
                prompt = (
                    "You are a seamless writing partner. Continue the following text "
                    "with 1-3 new sentences that logically follow. Do not repeat the "
                    "original text. Your response must be **only the new text**. "
                    f"Respond in {settings.ai_language}."
                )
            text = await self._generate_text(client, self._note_parts(task.note, prompt))
            return TaskResult(kind=ResultKind.TEXT_APPEND, data=f"\n{text}")

        if task.kind is TaskKind.TRANSLATE:
            prompt = (
                f"Translate the following text into {task.target_language}. "
                f"Output only the translated text.\n\n---\n{task.content}\n---"
            )
            return TaskResult(kind=ResultKind.TEXT, data=await self._generate_text(client, prompt))

        if task.kind is TaskKind.CHANGE_TONE:
            prompt = (
                f"Rewrite the following text in a {task.tone} tone. Keep the core "
                f"meaning the same. Output only the rewritten text in "
                f"{settings.ai_language}.\n\n---\n{task.content}\n---"
            )
            return TaskResult(kind=ResultKind.TEXT, data=await self._generate_text(client, prompt))

        if task.kind is TaskKind.SUMMARIZE_SELECTION:
            prompt = (
                "Summarize the following text into a few key points. Output only the "
                f"summary in {settings.ai_language}.\n\n---\n{task.content}\n---"
            )
            text = await self._generate_text(client, prompt)
            return TaskResult(
                kind=ResultKind.TEXT_APPEND,
                data=f"\n\n---\n**Selection Summary:**\n{text}\n---",
            )

        raise ValueError(f"Unsupported task kind: {task.kind}")

    # ==================== API calls ====================

    def _note_parts(self, note: Note, prompt: str) -> list[Any]:
        """Build request parts for a note: prompt, content and image attachments."""
        text = f"{prompt}\n\nText to analyze:\n---\n{note.content}\n---"
        images = []
        for attachment in note.attachments:
            data = _decode_attachment(attachment.data)
            if data is not None:
                images.append(types.Part.from_bytes(data=data, mime_type=attachment.mime_type))
        if images:
            text += "\n\nAlso consider the following attached image(s):"
        return [types.Part.from_text(text=text), *images]

    async def _call(self, client: Any, contents: Any, config: Any) -> Any:
        try:
            return await client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as exc:
            raise TaskProcessorError(f"The AI service request failed: {exc}") from exc

    async def _generate_structured(
        self,
        client: Any,
        contents: Any,
        schema: Type[ModelT],
        temperature: float,
    ) -> ModelT:
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=schema,
            temperature=temperature,
        )
        response = await self._call(client, contents, config)
        raw = response.text
        if not raw:
            raise InvalidResponseError("The AI service returned an empty response.")
        try:
            return schema.model_validate_json(raw)
        except ValidationError as exc:
            logger.debug("Rejected AI response: %s", raw[:200])
            raise InvalidResponseError(
                "The AI service returned an invalid response format. Please try again."
            ) from exc

    async def _generate_text(self, client: Any, contents: Any) -> str:
        config = types.GenerateContentConfig(temperature=0.5)
        response = await self._call(client, contents, config)
        text = (response.text or "").strip()
        if not text:
            raise InvalidResponseError("The AI service returned an empty response.")
        return text
