"""Services for NoteTaker."""

from notetaker.services.coordination import KeyedLocks, SingleFlight
from notetaker.services.enrichment import (
    EnrichmentOrchestrator,
    EnrichmentState,
    EnrichmentStatus,
    TaskProcessor,
    apply_enrichment,
)
from notetaker.services.gemini_service import GeminiTaskProcessor
from notetaker.services.notebook import Notebook
from notetaker.services.scheduler import PersistenceScheduler
from notetaker.services.taxonomy import TaxonomyResolver
from notetaker.services.transfer import ImportSummary, Snapshot
from notetaker.services.versioning import record_if_changed

__all__ = [
    "EnrichmentOrchestrator",
    "EnrichmentState",
    "EnrichmentStatus",
    "GeminiTaskProcessor",
    "ImportSummary",
    "KeyedLocks",
    "Notebook",
    "PersistenceScheduler",
    "SingleFlight",
    "Snapshot",
    "TaskProcessor",
    "TaxonomyResolver",
    "apply_enrichment",
    "record_if_changed",
]
