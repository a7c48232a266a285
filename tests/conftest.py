# ============================================================================
# FILE: tests/conftest.py
# ============================================================================
"""
Pytest configuration and shared fixtures for testing.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional

import pytest

from bloodwork_analysis.core.services import build_services
from bloodwork_analysis.llm.base import BackendType, BaseTextClient


# ============================================================================
# Fake text generation backends
# ============================================================================

ROW_ID_RE = re.compile(r'^# (\S+)$', re.MULTILINE)


def row_ids_in(prompt: str) -> List[str]:
    """Row ids enumerated in a batch prompt."""
    return ROW_ID_RE.findall(prompt)


def notes_for(prompt: str, confidence: float = 0.9) -> str:
    return json.dumps([
        {"id": row_id, "note": f"Row {row_id} looks fine, keep it up.", "confidence": confidence}
        for row_id in row_ids_in(prompt)
    ])


class FakeTextClient(BaseTextClient):
    """
    In-memory backend.

    responder(prompt, call_number) returns the response text or raises.
    Without a responder every row in the prompt gets a valid note.
    """

    def __init__(self, responder: Optional[Callable[[str, int], str]] = None):
        super().__init__({})
        self.responder = responder
        self.calls: List[str] = []
        self.closed = False

    @property
    def backend_type(self) -> BackendType:
        return BackendType.OPENAI

    @property
    def model_name(self) -> str:
        return "fake-model"

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False
    ) -> Dict[str, Any]:
        self.calls.append(prompt)
        if self.responder is not None:
            text = self.responder(prompt, len(self.calls))
        else:
            text = notes_for(prompt)
        return {"text": text, "model": self.model_name, "backend": "openai", "inference_time": 0.0}

    async def health_check(self) -> Dict[str, Any]:
        return {"healthy": True, "backend": "openai", "model": self.model_name, "details": "fake"}

    async def close(self):
        self.closed = True


def always_fail(prompt: str, call_number: int) -> str:
    raise ConnectionError("service unavailable")


@pytest.fixture
def batch_notes():
    """Builds a valid response for every row in a prompt."""
    return notes_for


@pytest.fixture
def text_client_factory():
    """FakeTextClient class, for tests that need a custom responder."""
    return FakeTextClient


@pytest.fixture
def fake_text_client():
    return FakeTextClient()


@pytest.fixture
def failing_text_client():
    return FakeTextClient(responder=always_fail)


@pytest.fixture
def fast_enrichment_config():
    """No retry delay so tests don't sleep."""
    return {"retry_delay_min": 0.0, "retry_delay_max": 0.0, "timeout": 2.0}


# ============================================================================
# Sample documents
# ============================================================================

@pytest.fixture
def igg_report_text():
    """Immunology report with a single IgG row"""
    return """
    CITY LAB - IMMUNOLOGY
    Collected: 31/07/2025

    IgG
    (540 - 1822 mg/dL)
    1000
    """


@pytest.fixture
def hormone_report_text():
    """Three recognizable rows, all within range"""
    return """
    HORMONE AND IMMUNOLOGY PANEL
    17:58:00 31/07/2025

    IgG
    (540 - 1822 mg/dL)
    1000
    SHBG
    18.3 - 54.1 nmol/L
    35.2
    Testosterone
    8.6 - 29.0 nmol/L
    15.4
    """


@pytest.fixture
def section_report_text():
    """IgG only reachable through the REFERENCE VALUES section scan"""
    return """
    RESULTS REPORT
    REFERENCE VALUES
    IgG  (700 - 1600 mg/dL)  result: 1150
    """


@pytest.fixture
def write_document(tmp_path):
    """Write a text document into an upload dir and return its ref."""
    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir(exist_ok=True)

    def _write(text: str, ref: str = "report-1", suffix: str = ".txt") -> str:
        (upload_dir / f"{ref}{suffix}").write_text(text, encoding="utf-8")
        return ref

    _write.upload_dir = upload_dir
    return _write


# ============================================================================
# Service container
# ============================================================================

@pytest.fixture
def services_config(tmp_path, write_document, fast_enrichment_config):
    return {
        "database_path": tmp_path / "bloodwork.db",
        "upload_dir": write_document.upload_dir,
        "queue": {"max_attempts": 3, "backoff_seconds": 0.01},
        "enrichment": fast_enrichment_config,
        "worker_concurrency": 1,
    }


@pytest.fixture
def make_services(services_config):
    """Build a service container around a given text client."""
    def _make(text_client: Optional[BaseTextClient] = None, **overrides):
        config = dict(services_config)
        config.update(overrides)
        return build_services(config, text_client=text_client or FakeTextClient())
    return _make
