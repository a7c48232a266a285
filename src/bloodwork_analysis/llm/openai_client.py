# ============================================================================
# src/bloodwork_analysis/llm/openai_client.py
# ============================================================================
"""
OpenAI Text Client

Hosted chat completions (OpenAI or any compatible endpoint via
OPENAI_BASE_URL). Retries are left to the caller, so the SDK's own retry
loop is switched off.
"""

import asyncio
import time
from typing import Any, Dict, Optional

from ..config.enrichment_config import enrichment_settings
from .base import BaseTextClient, BackendType


class OpenAITextClient(BaseTextClient):
    """
    Chat completions client.

    Config options:
        api_key: API key (default: OPENAI_API_KEY)
        base_url: Endpoint override (default: OPENAI_BASE_URL)
        model: Model name (default: OPENAI_MODEL)
        max_tokens: Default max tokens
        temperature: Default temperature
        timeout: Request timeout in seconds
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)

        self.api_key = self.config.get('api_key', enrichment_settings.OPENAI_API_KEY)
        self.base_url = self.config.get('base_url', enrichment_settings.OPENAI_BASE_URL)
        self._model_name = self.config.get('model', enrichment_settings.OPENAI_MODEL)

        self.default_max_tokens = self.config.get('max_tokens', enrichment_settings.ENRICHMENT_MAX_TOKENS)
        self.default_temperature = self.config.get('temperature', enrichment_settings.ENRICHMENT_TEMPERATURE)
        self.timeout = self.config.get('timeout', enrichment_settings.ENRICHMENT_TIMEOUT)

        self._client = None

        if not self.api_key:
            self.logger.warning("OPENAI_API_KEY not configured; enrichment will fall back to rule-based notes")

    @property
    def backend_type(self) -> BackendType:
        return BackendType.OPENAI

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def client(self):
        """Lazy load the async OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=0,
                timeout=self.timeout,
            )
            self.logger.info(f"OpenAI client initialized: model={self._model_name}")
        return self._client

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False
    ) -> Dict[str, Any]:
        if not self.api_key:
            raise ConnectionError("OpenAI API key not configured")

        start_time = time.perf_counter()

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: Dict[str, Any] = {
            "model": self._model_name,
            "messages": messages,
            "max_tokens": max_tokens or self.default_max_tokens,
            "temperature": temperature if temperature is not None else self.default_temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failure_count += 1
            self.logger.error(f"OpenAI request failed: {e}")
            raise

        inference_time = time.perf_counter() - start_time
        self._inference_count += 1
        self._total_inference_time += inference_time

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""

        usage = getattr(response, "usage", None)
        return {
            "text": content.strip(),
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) if usage else 0,
            "generated_tokens": getattr(usage, "completion_tokens", 0) if usage else 0,
            "model": self._model_name,
            "backend": self.backend_type.value,
            "inference_time": inference_time,
        }

    async def health_check(self) -> Dict[str, Any]:
        if not self.api_key:
            return {
                "healthy": False,
                "backend": "openai",
                "model": self._model_name,
                "details": "OPENAI_API_KEY not configured"
            }
        try:
            await self.client.models.retrieve(self._model_name)
            return {
                "healthy": True,
                "backend": "openai",
                "model": self._model_name,
                "details": "Model reachable"
            }
        except Exception as e:
            return {
                "healthy": False,
                "backend": "openai",
                "model": self._model_name,
                "details": f"Health check failed: {str(e)}"
            }

    async def close(self):
        if self._client is not None:
            await self._client.close()
        self._client = None
