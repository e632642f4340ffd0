"""Notes created for a brand new notebook."""

from dataclasses import dataclass, field
from typing import Optional

TODAY_PLACEHOLDER = "{{Today}}"


@dataclass(frozen=True)
class StarterNote:
    """A note seeded on first run, filed by project and subject name."""

    title: str
    content: str
    project: str
    subject: str
    summary: str = ""
    project_description: Optional[str] = None
    todos: list[str] = field(default_factory=list)
    key_people: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    is_template: bool = False


WELCOME_NOTE = StarterNote(
    title="Welcome to NoteTaker!",
    project="Getting Started",
    subject="Welcome",
    project_description="Your first project for learning the ropes of NoteTaker AI.",
    summary="A guide to getting started with NoteTaker.",
    todos=["Try creating a new note", "Look at the insights NoteTaker adds to a note"],
    key_people=["Cognito AI"],
    tags=["welcome", "guide", "tutorial"],
    content="""Welcome to your new notebook! This sample note walks through the main features.

## What is this?
A private, local-first place for thoughts, meeting notes and project plans.
Everything is stored on this machine. The built-in assistant, **Cognito**,
reads your notes when you ask it to and nowhere else.

## Things to try

- **Automatic enrichment:** a few seconds after you stop editing a note,
  Cognito files it under a project and subject and adds a summary, to-dos,
  key people, tags and decisions.
- **Quick actions:** continue writing, translate, change the tone, or
  summarize a passage with `notetaker enrich` and friends.
- **Ask your notes:** `notetaker ask "What are the main features?"`
- **History:** every change to a title or body keeps the previous version;
  see `notetaker history`.
""",
)

TEMPLATES_PROJECT_DESCRIPTION = "Pre-built templates to get you started."

STARTER_TEMPLATES = [
    StarterNote(
        title="Meeting Minutes Template",
        project="Templates",
        subject="Meetings",
        project_description=TEMPLATES_PROJECT_DESCRIPTION,
        summary="Meeting minutes with agenda, discussion and action items.",
        tags=["meeting", "minutes", "template"],
        is_template=True,
        content=f"""## Meeting Details

**Date:** {TODAY_PLACEHOLDER}
**Location:**

## Attendees

-

## Agenda

1. Topic 1
2. Topic 2

## Discussion

### Topic 1

-

## Action Items

- [ ] (Owner) Task

## Decisions

-
""",
    ),
    StarterNote(
        title="Decision Log Template",
        project="Templates",
        subject="Decisions",
        project_description=TEMPLATES_PROJECT_DESCRIPTION,
        summary="A record of one decision with its context, options and reasoning.",
        tags=["decision", "log", "adr", "template"],
        is_template=True,
        content=f"""## Decision Record

**Status:** (Proposed, Approved, Rejected)
**Date:** {TODAY_PLACEHOLDER}

## Decision to be made

## Context

## Options considered

### Option A
- **Pros:**
- **Cons:**

### Option B
- **Pros:**
- **Cons:**

## Outcome and reasoning

**Decision:**
**Approved by:**
""",
    ),
]
