# ============================================================================
# TEST: Configuration and Setup
# ============================================================================

import pytest
from pydantic import ValidationError

from bloodwork_analysis.config import (
    base_settings,
    enrichment_settings,
    logging_settings,
    queue_settings,
)
from bloodwork_analysis.config.base_config import BaseSettingsConfig
from bloodwork_analysis.config.enrichment_config import EnrichmentSettings
from bloodwork_analysis.config.queue_config import QueueSettings


def test_configuration_defaults():
    """Settings load with the documented defaults"""
    assert queue_settings.QUEUE_MAX_ATTEMPTS == 3
    assert enrichment_settings.ENRICHMENT_BATCH_SIZE == 20
    assert enrichment_settings.PROMPT_VERSION == "p1"
    assert 0 <= enrichment_settings.ENRICHMENT_RETRY_DELAY_MIN <= enrichment_settings.ENRICHMENT_RETRY_DELAY_MAX
    assert base_settings.DATABASE_PATH.name == "bloodwork.db"
    assert logging_settings.LOG_LEVEL


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("QUEUE_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("ENRICHMENT_BACKEND", "ollama")

    assert QueueSettings().QUEUE_MAX_ATTEMPTS == 5
    assert EnrichmentSettings().ENRICHMENT_BACKEND == "ollama"


def test_queue_validators():
    with pytest.raises(ValidationError):
        QueueSettings(QUEUE_MAX_ATTEMPTS=0)
    with pytest.raises(ValidationError):
        QueueSettings(WORKER_CONCURRENCY=0)


def test_retry_window_validator():
    with pytest.raises(ValidationError):
        EnrichmentSettings(ENRICHMENT_RETRY_DELAY_MIN=2.0, ENRICHMENT_RETRY_DELAY_MAX=1.0)


def test_create_directories(tmp_path):
    settings = BaseSettingsConfig(
        DATA_DIR=tmp_path / "data",
        DATABASE_PATH=tmp_path / "db" / "bloodwork.db",
        UPLOAD_DIR=tmp_path / "data" / "uploads",
    )
    settings.create_directories()

    assert (tmp_path / "data" / "uploads").is_dir()
    assert (tmp_path / "db").is_dir()
