# ============================================================================
# src/bloodwork_analysis/config/enrichment_config.py
# ============================================================================
"""
Enrichment Settings (external text generation)
- Backend selection (hosted OpenAI-compatible API or local Ollama)
- Batch size, timeout, retry delay
- Prompt version and fallback confidence
"""

from typing import Optional
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

class EnrichmentSettings(BaseSettings):
    ENRICHMENT_BACKEND: str = Field(
        default="openai",
        description="Text generation backend: 'openai' or 'ollama'"
    )

    OPENAI_API_KEY: Optional[str] = Field(
        default=None,
        description="API key for the hosted backend"
    )
    OPENAI_BASE_URL: Optional[str] = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints"
    )
    OPENAI_MODEL: str = Field(
        default="gpt-4o-mini",
        description="Hosted model used for notes"
    )

    OLLAMA_HOST: str = Field(
        default="http://localhost:11434",
        description="Ollama server URL"
    )
    OLLAMA_MODEL: str = Field(
        default="llama3.2",
        description="Local model used for notes"
    )

    ENRICHMENT_BATCH_SIZE: int = Field(
        default=20,
        description="Maximum rows sent in one enrichment call"
    )
    ENRICHMENT_TIMEOUT: float = Field(
        default=7.0,
        description="Per-call timeout in seconds"
    )
    ENRICHMENT_MAX_TOKENS: int = Field(
        default=900,
        description="Maximum tokens per enrichment response"
    )
    ENRICHMENT_TEMPERATURE: float = Field(
        default=0.2,
        description="Sampling temperature for note generation"
    )
    ENRICHMENT_RETRY_DELAY_MIN: float = Field(
        default=0.3,
        description="Lower bound of the random delay before the single retry (seconds)"
    )
    ENRICHMENT_RETRY_DELAY_MAX: float = Field(
        default=1.2,
        description="Upper bound of the random delay before the single retry (seconds)"
    )

    PROMPT_VERSION: str = Field(
        default="p1",
        description="Prompt version recorded in every note's provenance tag"
    )
    FALLBACK_CONFIDENCE: float = Field(
        default=0.2,
        description="Confidence assigned to rule-based fallback notes"
    )

    @model_validator(mode="after")
    def validate_retry_window(self):
        if self.ENRICHMENT_RETRY_DELAY_MIN > self.ENRICHMENT_RETRY_DELAY_MAX:
            raise ValueError("ENRICHMENT_RETRY_DELAY_MIN must not exceed ENRICHMENT_RETRY_DELAY_MAX")
        return self

enrichment_settings = EnrichmentSettings()
