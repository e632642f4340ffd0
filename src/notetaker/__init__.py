"""NoteTaker - local-first notes with versioned persistence and AI enrichment."""

__version__ = "0.3.0"
