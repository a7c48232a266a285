# ============================================================================
# tests/unit/test_note_enricher.py
# ============================================================================
"""
Tests for batched note enrichment, retry and fallback notes.
"""

import asyncio
import json

import pytest

from bloodwork_analysis.core.enums import RowStatus
from bloodwork_analysis.core.models import EnrichmentNote, ExtractedRow, ReferenceRange
from bloodwork_analysis.enrichers import NoteEnricher, get_fallback_note
from bloodwork_analysis.enrichers.fallback_notes import GENERIC_NOTES
from bloodwork_analysis.enrichers.note_enricher import FALLBACK_SOURCE
from bloodwork_analysis.enrichers.prompts import build_batch_prompt, format_number
from bloodwork_analysis.enrichers import note_enricher as note_enricher_module


def make_rows(count, test_name="IgG", status=RowStatus.NORMAL):
    return [
        ExtractedRow(
            id=str(i + 1),
            test_name=test_name,
            value=1000,
            unit="mg/dL",
            reference_range=ReferenceRange(min=540, max=1822),
            status=status,
        )
        for i in range(count)
    ]


# ============================================================================
# Happy path
# ============================================================================

@pytest.mark.asyncio
async def test_every_row_gets_a_service_note(fake_text_client, fast_enrichment_config):
    rows = make_rows(3)
    enricher = NoteEnricher(fake_text_client, fast_enrichment_config)

    outcome = await enricher.enrich(rows)

    assert outcome.batch_count == 1
    assert outcome.service_notes == 3
    assert outcome.fallback_notes == 0
    assert not outcome.fully_degraded
    assert len(fake_text_client.calls) == 1

    for row in rows:
        assert row.note is not None
        assert row.note.source == "openai:fake-model"
        assert row.note.provenance == "openai:fake-model:p1"
        assert row.note.confidence == 0.9
        assert not row.note.is_fallback


@pytest.mark.asyncio
async def test_rows_are_batched_by_twenty(fake_text_client, fast_enrichment_config):
    rows = make_rows(45)
    enricher = NoteEnricher(fake_text_client, dict(fast_enrichment_config, batch_size=20))
    progress = []

    async def on_batch(done, total):
        progress.append((done, total))

    outcome = await enricher.enrich(rows, progress_callback=on_batch)

    assert [len(b) for b in enricher.make_batches(rows)] == [20, 20, 5]
    assert outcome.batch_count == 3
    assert progress == [(1, 3), (2, 3), (3, 3)]
    assert len(fake_text_client.calls) == 3
    assert outcome.service_notes == 45


@pytest.mark.asyncio
async def test_no_rows_no_calls(fake_text_client, fast_enrichment_config):
    outcome = await NoteEnricher(fake_text_client, fast_enrichment_config).enrich([])

    assert outcome.batch_count == 0
    assert fake_text_client.calls == []
    assert not outcome.fully_degraded


# ============================================================================
# Retry and degradation
# ============================================================================

@pytest.mark.asyncio
async def test_single_retry_recovers(text_client_factory, batch_notes, fast_enrichment_config):
    def flaky(prompt, call_number):
        if call_number == 1:
            raise ConnectionError("reset by peer")
        return batch_notes(prompt)

    client = text_client_factory(responder=flaky)
    rows = make_rows(2)

    outcome = await NoteEnricher(client, fast_enrichment_config).enrich(rows)

    assert len(client.calls) == 2
    assert outcome.service_notes == 2
    assert outcome.degraded_batches == []


@pytest.mark.asyncio
async def test_two_failures_degrade_to_fallback(failing_text_client, fast_enrichment_config):
    rows = make_rows(2, status=RowStatus.LOW)

    outcome = await NoteEnricher(failing_text_client, fast_enrichment_config).enrich(rows)

    # One call plus exactly one retry
    assert len(failing_text_client.calls) == 2
    assert outcome.degraded_batches == [0]
    assert outcome.fully_degraded
    assert outcome.fallback_notes == 2

    for row in rows:
        assert row.note.source == FALLBACK_SOURCE
        assert row.note.provenance == "fallback:rules:p1"
        assert row.note.confidence == 0.2
        assert row.note.text == get_fallback_note("IgG", RowStatus.LOW)


@pytest.mark.asyncio
async def test_invalid_json_counts_as_failure(text_client_factory, fast_enrichment_config):
    client = text_client_factory(responder=lambda prompt, n: "I cannot help with that.")
    rows = make_rows(1)

    outcome = await NoteEnricher(client, fast_enrichment_config).enrich(rows)

    assert len(client.calls) == 2
    assert rows[0].note.is_fallback
    assert outcome.degraded_batches == [0]


@pytest.mark.asyncio
async def test_contract_violation_counts_as_failure(text_client_factory, fast_enrichment_config):
    bad = json.dumps([{"id": "1", "note": "Fine.", "confidence": 3}])
    client = text_client_factory(responder=lambda prompt, n: bad)

    outcome = await NoteEnricher(client, fast_enrichment_config).enrich(make_rows(1))

    assert len(client.calls) == 2
    assert outcome.fallback_notes == 1


@pytest.mark.asyncio
async def test_timeout_counts_as_failure(text_client_factory, fast_enrichment_config):
    class SlowClient(text_client_factory):
        async def generate(self, prompt, **kwargs):
            self.calls.append(prompt)
            await asyncio.sleep(1)
            return {"text": "[]"}

    client = SlowClient()
    config = dict(fast_enrichment_config, timeout=0.05)

    outcome = await NoteEnricher(client, config).enrich(make_rows(1))

    assert len(client.calls) == 2
    assert outcome.fallback_notes == 1


@pytest.mark.asyncio
async def test_one_degraded_batch_does_not_affect_others(text_client_factory, batch_notes, fast_enrichment_config):
    def second_batch_broken(prompt, call_number):
        if "# 3" in prompt:
            raise ConnectionError("service unavailable")
        return batch_notes(prompt)

    client = text_client_factory(responder=second_batch_broken)
    rows = make_rows(3)
    enricher = NoteEnricher(client, dict(fast_enrichment_config, batch_size=2))

    outcome = await enricher.enrich(rows)

    assert outcome.degraded_batches == [1]
    assert [row.note.is_fallback for row in rows] == [False, False, True]
    assert not outcome.fully_degraded


@pytest.mark.asyncio
async def test_retry_delay_drawn_from_configured_window(monkeypatch, failing_text_client):
    drawn = []

    def fake_uniform(low, high):
        drawn.append((low, high))
        return 0.0

    monkeypatch.setattr(note_enricher_module.random, "uniform", fake_uniform)
    enricher = NoteEnricher(failing_text_client, {"retry_delay_min": 0.3, "retry_delay_max": 1.2})

    await enricher.enrich(make_rows(1))

    assert drawn == [(0.3, 1.2)]


@pytest.mark.asyncio
async def test_without_client_every_row_falls_back(fast_enrichment_config):
    rows = make_rows(2)

    outcome = await NoteEnricher(None, fast_enrichment_config).enrich(rows)

    assert outcome.fallback_notes == 2
    assert outcome.degraded_batches == [0]


# ============================================================================
# Response matching
# ============================================================================

@pytest.mark.asyncio
async def test_partial_response_and_unknown_ids(text_client_factory, fast_enrichment_config):
    response = json.dumps([
        {"id": "1", "note": "First note from the service.", "confidence": 0.7},
        {"id": "1", "note": "Duplicate note for the same row.", "confidence": 0.1},
        {"id": "99", "note": "This row does not exist.", "confidence": 0.9},
    ])
    client = text_client_factory(responder=lambda prompt, n: response)
    rows = make_rows(2)

    outcome = await NoteEnricher(client, fast_enrichment_config).enrich(rows)

    assert rows[0].note.text == "First note from the service."
    assert rows[0].note.confidence == 0.7
    assert rows[1].note.is_fallback
    assert outcome.service_notes == 1
    assert outcome.fallback_notes == 1
    # Validated on the first call, so no retry
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_data_wrapper_and_prose_are_accepted(text_client_factory, fast_enrichment_config):
    response = 'Here you go: {"data": [{"id": "1", "note": "Nice and steady result.", "confidence": 0.6}]}'
    client = text_client_factory(responder=lambda prompt, n: response)
    rows = make_rows(1)

    await NoteEnricher(client, fast_enrichment_config).enrich(rows)

    assert rows[0].note.text == "Nice and steady result."


@pytest.mark.asyncio
async def test_progress_callback_errors_propagate(fake_text_client, fast_enrichment_config):
    async def on_batch(done, total):
        raise RuntimeError("job was cancelled")

    with pytest.raises(RuntimeError):
        await NoteEnricher(fake_text_client, fast_enrichment_config).enrich(make_rows(1), on_batch)


def test_attach_fallback_notes_keeps_existing(fake_text_client):
    rows = make_rows(2)
    enricher = NoteEnricher(fake_text_client, {})
    rows[0].note = EnrichmentNote(text="kept", confidence=0.9, source="openai:fake-model", provenance="openai:fake-model:p1")

    outcome = enricher.attach_fallback_notes(rows)

    assert outcome.fallback_notes == 1
    assert rows[0].note.text == "kept"
    assert rows[1].note.is_fallback


# ============================================================================
# Prompt and fallback notes
# ============================================================================

def test_batch_prompt_lists_every_row():
    rows = make_rows(2, status=RowStatus.HIGH)
    prompt = build_batch_prompt(rows)

    assert "# 1\nTest: IgG\nValue: 1000 mg/dL\nNormal Range: 540-1822 mg/dL\nStatus: high" in prompt
    assert "# 2\n" in prompt


def test_format_number():
    assert format_number(14.0) == "14"
    assert format_number(0.85) == "0.85"


@pytest.mark.parametrize("name, status, expected_fragment", [
    ("HDL Cholesterol", RowStatus.HIGH, "Excellent HDL"),
    ("LDL Cholesterol", RowStatus.HIGH, "LDL cholesterol is elevated"),
    ("Total Cholesterol", RowStatus.NORMAL, "Cholesterol levels support"),
    ("Fasting Glucose", RowStatus.LOW, "Blood sugar is low"),
    ("Hemoglobin", RowStatus.LOW, "Hemoglobin is low"),
    ("IgG", RowStatus.NORMAL, "antibody level is within"),
    ("SHBG", RowStatus.HIGH, "SHBG is above range"),
])
def test_keyword_fallback_notes(name, status, expected_fragment):
    assert expected_fragment in get_fallback_note(name, status)


def test_critical_always_uses_generic_note():
    for name in ("Total Cholesterol", "IgG", "Mystery Analyte"):
        assert get_fallback_note(name, RowStatus.CRITICAL) == GENERIC_NOTES[RowStatus.CRITICAL]


def test_unknown_test_uses_generic_note():
    assert get_fallback_note("Ferritin", RowStatus.HIGH) == GENERIC_NOTES[RowStatus.HIGH]
    assert get_fallback_note("Ferritin", RowStatus.NORMAL) == GENERIC_NOTES[RowStatus.NORMAL]
