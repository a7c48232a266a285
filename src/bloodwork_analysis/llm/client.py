# ============================================================================
# src/bloodwork_analysis/llm/client.py
# ============================================================================
"""
Text Client Factory

Picks a backend from config:
    backend: 'openai' (default from ENRICHMENT_BACKEND) or 'ollama'

Each call returns a new client; the service container owns it and closes
it on shutdown.
"""

from typing import Any, Dict, Optional
import logging

from ..config.enrichment_config import enrichment_settings
from ..utils.exceptions import ConfigurationError
from .base import BaseTextClient, BackendType

logger = logging.getLogger(__name__)


def create_text_client(config: Optional[Dict[str, Any]] = None) -> BaseTextClient:
    """
    Create a text generation client for the configured backend.

    Raises:
        ConfigurationError: unknown backend name
    """
    config = config or {}
    backend_name = str(config.get('backend', enrichment_settings.ENRICHMENT_BACKEND)).lower()

    try:
        backend = BackendType(backend_name)
    except ValueError:
        valid = [b.value for b in BackendType]
        raise ConfigurationError(f"Unknown enrichment backend '{backend_name}'. Valid: {valid}")

    if backend == BackendType.OLLAMA:
        from .ollama_client import OllamaTextClient
        client = OllamaTextClient(config)
    else:
        from .openai_client import OpenAITextClient
        client = OpenAITextClient(config)

    logger.info(f"Created text client: {client.source_id}")
    return client
