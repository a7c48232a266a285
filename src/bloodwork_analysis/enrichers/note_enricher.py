# ============================================================================
# src/bloodwork_analysis/enrichers/note_enricher.py
# ============================================================================
"""
Note Enricher

Attaches exactly one short explanatory note to every extracted row:
- Rows are sent to the text generation service in batches of 20
- Each batch gets one retry after a short random delay
- A batch that fails twice contributes no notes (never a job failure)
- Rows still without a note get a rule-based fallback note

Every note carries a provenance tag "<source>:<prompt version>".
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..config.enrichment_config import enrichment_settings
from ..core.models import EnrichmentNote, ExtractedRow, utc_now
from ..llm.base import BaseTextClient
from ..utils.exceptions import EnrichmentDegraded, ValidationError
from .fallback_notes import get_fallback_note
from .prompts import SYSTEM_PROMPT, build_batch_prompt
from .schema import BatchFailure, NoteOut, parse_batch_response

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "fallback:rules"

ProgressCallback = Callable[[int, int], Awaitable[None]]


@dataclass
class EnrichmentOutcome:
    """Summary of one enrichment run. The rows themselves carry the notes."""
    rows: List[ExtractedRow] = field(default_factory=list)
    batch_count: int = 0
    service_notes: int = 0
    fallback_notes: int = 0
    degraded_batches: List[int] = field(default_factory=list)

    @property
    def fully_degraded(self) -> bool:
        return bool(self.rows) and self.service_notes == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_count": self.batch_count,
            "service_notes": self.service_notes,
            "fallback_notes": self.fallback_notes,
            "degraded_batches": self.degraded_batches,
        }


class NoteEnricher:
    """
    Batched note enrichment with retry and fallback.

    Config options:
        batch_size, timeout, retry_delay_min, retry_delay_max,
        prompt_version, fallback_confidence, max_tokens, temperature
    """

    def __init__(self, client: Optional[BaseTextClient], config: Optional[Dict[str, Any]] = None):
        self.client = client
        self.config = config or {}

        self.batch_size = max(1, self.config.get('batch_size', enrichment_settings.ENRICHMENT_BATCH_SIZE))
        self.timeout = self.config.get('timeout', enrichment_settings.ENRICHMENT_TIMEOUT)
        self.retry_delay_min = self.config.get('retry_delay_min', enrichment_settings.ENRICHMENT_RETRY_DELAY_MIN)
        self.retry_delay_max = self.config.get('retry_delay_max', enrichment_settings.ENRICHMENT_RETRY_DELAY_MAX)
        self.prompt_version = self.config.get('prompt_version', enrichment_settings.PROMPT_VERSION)
        self.fallback_confidence = self.config.get('fallback_confidence', enrichment_settings.FALLBACK_CONFIDENCE)
        self.max_tokens = self.config.get('max_tokens', enrichment_settings.ENRICHMENT_MAX_TOKENS)
        self.temperature = self.config.get('temperature', enrichment_settings.ENRICHMENT_TEMPERATURE)

    def make_batches(self, rows: Sequence[ExtractedRow]) -> List[List[ExtractedRow]]:
        """Split rows into ceil(n / batch_size) batches, order preserved."""
        return [
            list(rows[i:i + self.batch_size])
            for i in range(0, len(rows), self.batch_size)
        ]

    async def enrich(
        self,
        rows: List[ExtractedRow],
        progress_callback: Optional[ProgressCallback] = None
    ) -> EnrichmentOutcome:
        """
        Attach one note to every row (in place) and report how they were sourced.

        Exceptions raised by progress_callback propagate; service failures
        never do.
        """
        batches = self.make_batches(rows)
        outcome = EnrichmentOutcome(rows=rows, batch_count=len(batches))
        validated: Dict[str, NoteOut] = {}

        for index, batch in enumerate(batches):
            notes = await self._enrich_batch(batch, index, outcome)

            batch_ids = {row.id for row in batch}
            for note in notes:
                if note.id not in batch_ids:
                    logger.debug(f"Ignoring note for unknown row id {note.id!r} in batch {index}")
                    continue
                validated.setdefault(note.id, note)

            if progress_callback:
                await progress_callback(index + 1, len(batches))

        created_at = utc_now()
        for row in rows:
            out = validated.get(row.id)
            if out is not None:
                row.note = self._service_note(out, created_at)
                outcome.service_notes += 1
            else:
                row.note = self._fallback_note(row, created_at)
                outcome.fallback_notes += 1

        logger.info(
            f"Notes attached ({outcome.service_notes}/{len(rows)} from service, "
            f"{outcome.fallback_notes} fallback, {len(outcome.degraded_batches)} degraded batches)"
        )
        return outcome

    # ------------------------------------------------------------------
    # Service calls
    # ------------------------------------------------------------------

    async def _enrich_batch(
        self,
        batch: List[ExtractedRow],
        index: int,
        outcome: EnrichmentOutcome
    ) -> List[NoteOut]:
        if self.client is None:
            outcome.degraded_batches.append(index)
            return []

        try:
            return await self._call_with_retry(batch, index)
        except EnrichmentDegraded as e:
            logger.warning(f"Enrichment degraded: {e}")
            outcome.degraded_batches.append(index)
            return []

    async def _call_with_retry(self, batch: List[ExtractedRow], index: int) -> List[NoteOut]:
        try:
            return await self._call_once(batch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Enrichment call failed for batch {index}, retrying: {e}")

        await asyncio.sleep(random.uniform(self.retry_delay_min, self.retry_delay_max))

        try:
            return await self._call_once(batch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise EnrichmentDegraded(f"Batch {index} failed twice: {e}", batch_index=index) from e

    async def _call_once(self, batch: List[ExtractedRow]) -> List[NoteOut]:
        response = await asyncio.wait_for(
            self.client.generate(
                prompt=build_batch_prompt(batch),
                system_prompt=SYSTEM_PROMPT,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                json_mode=True,
            ),
            timeout=self.timeout,
        )

        payload = self.client.extract_json(response.get("text", ""))
        result = parse_batch_response(payload)
        if isinstance(result, BatchFailure):
            raise ValidationError(result.reason)
        return result.notes

    # ------------------------------------------------------------------
    # Note construction
    # ------------------------------------------------------------------

    def attach_fallback_notes(self, rows: List[ExtractedRow]) -> EnrichmentOutcome:
        """Give every row without a note a rule-based one. Used when enrichment itself broke."""
        outcome = EnrichmentOutcome(rows=rows)
        created_at = utc_now()
        for row in rows:
            if row.note is None:
                row.note = self._fallback_note(row, created_at)
                outcome.fallback_notes += 1
        return outcome


    def _service_note(self, out: NoteOut, created_at) -> EnrichmentNote:
        source = self.client.source_id
        return EnrichmentNote(
            text=out.note,
            confidence=out.confidence,
            source=source,
            provenance=f"{source}:{self.prompt_version}",
            created_at=created_at,
        )

    def _fallback_note(self, row: ExtractedRow, created_at) -> EnrichmentNote:
        return EnrichmentNote(
            text=get_fallback_note(row.test_name, row.status),
            confidence=self.fallback_confidence,
            source=FALLBACK_SOURCE,
            provenance=f"{FALLBACK_SOURCE}:{self.prompt_version}",
            created_at=created_at,
        )
