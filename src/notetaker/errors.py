"""Error types for NoteTaker, plus the error log writer used by the CLI.

Every error carries a message that can be shown to the user as-is.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class NotetakerError(Exception):
    """Base class for all NoteTaker errors."""

    pass


# ==================== Store ====================


class StoreError(NotetakerError):
    """A store operation failed; nothing from that call was committed."""

    pass


class DuplicateKeyError(StoreError):
    """An insert targeted a key that already exists."""

    pass


class DeletionGuardError(StoreError):
    """A guarded deletion found rows still referencing the target."""

    pass


class CategoryInUseError(DeletionGuardError):
    """A project or subject cannot be deleted while notes are filed under it."""

    pass


# ==================== Domain ====================


class NoteNotFoundError(NotetakerError):
    """The requested note does not exist."""

    def __init__(self, note_id: str):
        super().__init__(f"Note '{note_id}' was not found.")
        self.note_id = note_id


class CategoryNotFoundError(NotetakerError):
    """The requested project or subject does not exist."""

    pass


class DuplicateCategoryError(NotetakerError):
    """A project or subject with the same name already exists."""

    pass


class InvalidSnapshotError(NotetakerError):
    """An import file is not a valid snapshot."""

    pass


# ==================== Enrichment ====================


class EnrichmentError(NotetakerError):
    """Base class for failures of the external task processor."""

    pass


class ConfigurationRequiredError(EnrichmentError):
    """The external service cannot be used because no credential is set."""

    pass


class InvalidResponseError(EnrichmentError):
    """The external service returned something of the wrong shape."""

    pass


class TaskProcessorError(EnrichmentError):
    """The external service call itself failed."""

    pass


def log_exception(exc: BaseException, path: Path, context: str = "") -> Path:
    """Append an exception's full traceback to the error log.

    Args:
        exc: The exception that occurred
        path: Error log file
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'=' * 60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # best-effort
    return path
