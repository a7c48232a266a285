"""
Note enrichment for extracted rows.
"""

from .note_enricher import EnrichmentOutcome, NoteEnricher
from .fallback_notes import get_fallback_note

__all__ = ["EnrichmentOutcome", "NoteEnricher", "get_fallback_note"]
