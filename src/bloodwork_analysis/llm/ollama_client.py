# ============================================================================
# src/bloodwork_analysis/llm/ollama_client.py
# ============================================================================
"""
Ollama Text Client

Notes from a local Ollama server through its /api/chat endpoint, so the
system prompt and batch prompt travel as separate messages exactly as
they do for the hosted backend.

Setup:
    ollama pull llama3.2 && ollama serve
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import aiohttp

from ..config.enrichment_config import enrichment_settings
from .base import BaseTextClient, BackendType


class OllamaTextClient(BaseTextClient):
    """
    Ollama chat client.

    Config options:
        ollama_host: Server URL (default: OLLAMA_HOST)
        ollama_model: Model tag (default: OLLAMA_MODEL)
        max_tokens, temperature, timeout: Request defaults
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)

        self.host = str(self.config.get('ollama_host', enrichment_settings.OLLAMA_HOST)).rstrip('/')
        self._model_name = self.config.get('ollama_model', enrichment_settings.OLLAMA_MODEL)

        self.default_max_tokens = self.config.get('max_tokens', enrichment_settings.ENRICHMENT_MAX_TOKENS)
        self.default_temperature = self.config.get('temperature', enrichment_settings.ENRICHMENT_TEMPERATURE)
        self.timeout = self.config.get('timeout', enrichment_settings.ENRICHMENT_TIMEOUT)

        # One session per event loop; aiohttp sessions cannot cross loops
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def backend_type(self) -> BackendType:
        return BackendType.OLLAMA

    @property
    def model_name(self) -> str:
        return self._model_name

    async def _get_session(self) -> aiohttp.ClientSession:
        loop = asyncio.get_running_loop()
        if self._session is None or self._session.closed or self._session_loop is not loop:
            await self.close()
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout, sock_connect=5)
            )
            self._session_loop = loop
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._session_loop = None

    def build_payload(
        self,
        prompt: str,
        system_prompt: Optional[str],
        max_tokens: Optional[int],
        temperature: Optional[float],
        json_mode: bool
    ) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload: Dict[str, Any] = {
            "model": self._model_name,
            "messages": messages,
            "stream": False,
            "options": {
                "num_predict": max_tokens or self.default_max_tokens,
                "temperature": temperature if temperature is not None else self.default_temperature,
            },
        }
        if json_mode:
            payload["format"] = "json"
        return payload

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False
    ) -> Dict[str, Any]:
        """
        Raises:
            TimeoutError: no answer within the configured timeout
            ConnectionError: server unreachable or answered with an error status
        """
        payload = self.build_payload(prompt, system_prompt, max_tokens, temperature, json_mode)
        started = time.perf_counter()

        try:
            session = await self._get_session()
            async with session.post(f"{self.host}/api/chat", json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    raise ConnectionError(f"Ollama returned {response.status}: {body[:200]}")
                data = await response.json()
        except asyncio.TimeoutError:
            self._failure_count += 1
            raise TimeoutError(f"Ollama did not answer within {self.timeout}s")
        except aiohttp.ClientError as e:
            self._failure_count += 1
            raise ConnectionError(f"Cannot reach Ollama at {self.host}: {e}") from e
        except ConnectionError:
            self._failure_count += 1
            raise

        elapsed = time.perf_counter() - started
        self._inference_count += 1
        self._total_inference_time += elapsed

        message = data.get("message") or {}
        self.logger.debug(f"{self._model_name} answered in {elapsed:.2f}s ({data.get('eval_count', 0)} tokens)")
        return {
            "text": (message.get("content") or "").strip(),
            "prompt_tokens": data.get("prompt_eval_count", 0),
            "generated_tokens": data.get("eval_count", 0),
            "model": self._model_name,
            "backend": self.backend_type.value,
            "inference_time": elapsed,
        }

    async def health_check(self) -> Dict[str, Any]:
        """Server reachable and the model pulled."""
        def status(healthy: bool, details: str) -> Dict[str, Any]:
            return {"healthy": healthy, "backend": "ollama", "model": self._model_name, "details": details}

        try:
            session = await self._get_session()
            async with session.get(f"{self.host}/api/tags") as response:
                if response.status != 200:
                    return status(False, f"Ollama returned {response.status}")
                tags = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return status(False, f"Cannot reach Ollama at {self.host}: {e}")

        available = [m.get("name", "") for m in tags.get("models", [])]
        if not any(name.startswith(self._model_name) for name in available):
            return status(False, f"Model not pulled. Run: ollama pull {self._model_name}")
        return status(True, "Model available")

    def get_statistics(self) -> Dict[str, Any]:
        return {**super().get_statistics(), "ollama_host": self.host}
