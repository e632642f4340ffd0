"""Project / subject taxonomy models for NoteTaker."""

from dataclasses import dataclass, field
from typing import NamedTuple, Optional


def fold_name(name: str) -> str:
    """Normalize a category name for case-insensitive comparison."""
    return name.strip().casefold()


@dataclass
class Subject:
    """A subject within a project."""

    id: str
    name: str


@dataclass
class Project:
    """A project owning an ordered list of subjects."""

    id: str
    name: str
    description: Optional[str] = None
    subjects: list[Subject] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.subjects = [
            Subject(**s) if isinstance(s, dict) else s for s in self.subjects
        ]

    def find_subject(self, name: str) -> Optional[Subject]:
        """Find a subject by case-insensitive name."""
        key = fold_name(name)
        return next((s for s in self.subjects if fold_name(s.name) == key), None)

    def get_subject(self, subject_id: str) -> Optional[Subject]:
        return next((s for s in self.subjects if s.id == subject_id), None)


class TaxonomyRef(NamedTuple):
    """Stable identifiers of a resolved (project, subject) pair."""

    project_id: str
    subject_id: str
