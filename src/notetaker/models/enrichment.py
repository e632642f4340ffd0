"""Task and result models exchanged with the external task processor.

Tasks and results are plain dataclasses. Payloads parsed from the service
are pydantic models so a malformed response fails validation instead of
leaking half-filled data into a note.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from notetaker.models.note import Note


class TaskKind(str, Enum):
    """Kinds of work the task processor accepts."""

    FULL_ANALYSIS = "full_analysis"
    CHAT_QUERY = "chat_query"
    SEMANTIC_SEARCH = "semantic_search"
    CONTINUE_WRITING = "continue_writing"
    TRANSLATE = "translate"
    CHANGE_TONE = "change_tone"
    SUMMARIZE_SELECTION = "summarize_selection"


class ResultKind(str, Enum):
    """Shapes a task result can take."""

    ORGANIZED_NOTE = "organized_note"
    CHAT_RESPONSE = "chat_response"
    SEARCH_RESULTS = "search_results"
    TEXT = "text"  # replaces the note content
    TEXT_APPEND = "text_append"  # appended to the note content


@dataclass
class AiTask:
    """A unit of work for the task processor.

    Only the fields relevant to ``kind`` are read.
    """

    kind: TaskKind
    note: Optional[Note] = None  # FULL_ANALYSIS, CONTINUE_WRITING
    content: str = ""  # TRANSLATE, CHANGE_TONE, SUMMARIZE_SELECTION
    question: str = ""  # CHAT_QUERY
    query: str = ""  # SEMANTIC_SEARCH
    notes: list[Note] = field(default_factory=list)  # CHAT_QUERY, SEMANTIC_SEARCH
    target_language: str = ""  # TRANSLATE
    tone: str = ""  # CHANGE_TONE

    def __post_init__(self) -> None:
        if isinstance(self.kind, str):
            self.kind = TaskKind(self.kind)


@dataclass
class TaskResult:
    """Result of a processed task."""

    kind: ResultKind
    data: Any


# ==================== Service payloads ====================


class GraphDataItem(BaseModel):
    label: str
    value: float


class GraphConfig(BaseModel):
    title: str = ""
    x_axis_label: str = ""
    y_axis_label: str = ""


class GraphData(BaseModel):
    """Chartable data extracted from a note."""

    type: str = Field(default="bar", description="One of 'bar', 'line' or 'pie'")
    data: list[GraphDataItem] = Field(default_factory=list)
    config: GraphConfig = Field(default_factory=GraphConfig)


class OrganizedNote(BaseModel):
    """Structured analysis of a note's content."""

    project: str = Field(description="Name of the project the note belongs to")
    subject: str = Field(description="Name of the subject within the project")
    summary: str
    detailed_summary: str = ""
    todos: list[str] = Field(default_factory=list)
    key_people: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    decisions: list[str] = Field(default_factory=list)
    graph_data: Optional[GraphData] = None

    @field_validator("graph_data", mode="before")
    @classmethod
    def _empty_graph_is_none(cls, value: Any) -> Any:
        # the model sometimes answers {} instead of null
        if isinstance(value, dict) and not value.get("data"):
            return None
        return value


class ChatAnswer(BaseModel):
    """Answer to a question asked against the user's notes."""

    answer: str
    source_note_ids: list[str] = Field(default_factory=list)


class SearchResults(BaseModel):
    relevant_note_ids: list[str] = Field(default_factory=list)
