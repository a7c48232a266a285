# ============================================================================
# src/bloodwork_analysis/llm/base.py
# ============================================================================
"""
Text Generation Client Interface

Every enrichment backend implements this. Supported backends:
- openai: hosted OpenAI-compatible chat completions API
- ollama: local Ollama server

Clients never retry on their own; the enricher decides how often a call
is attempted.
"""

import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from json_repair import repair_json


class BackendType(Enum):
    OPENAI = "openai"
    OLLAMA = "ollama"


class BaseTextClient(ABC):
    """Async text generation with JSON extraction and call statistics."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.logger = logging.getLogger(self.__class__.__name__)

        self._inference_count = 0
        self._failure_count = 0
        self._total_inference_time = 0.0

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        ...

    @property
    def source_id(self) -> str:
        """Recorded on every note this client produced, e.g. 'openai:gpt-4o-mini'."""
        return f"{self.backend_type.value}:{self.model_name}"

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False
    ) -> Dict[str, Any]:
        """
        One completion for one prompt.

        Args:
            prompt: User prompt
            system_prompt: Fixed instruction sent ahead of the prompt
            max_tokens: Output cap; backend default when omitted
            temperature: Sampling temperature; backend default when omitted
            json_mode: Ask the backend to constrain output to JSON

        Returns:
            {"text", "prompt_tokens", "generated_tokens", "model", "backend", "inference_time"}
        """

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """{"healthy": bool, "backend": str, "model": str, "details": str}"""

    async def close(self):
        """Release network resources."""
        return None

    def extract_json(self, response_text: str) -> Optional[Any]:
        """
        Pull a JSON array or object out of generated text.

        Models wrap JSON in prose or stop at the token limit, so in order:
        1. The whole text
        2. First '[' to last ']'
        3. json_repair from the first bracket or brace
        """
        text = (response_text or "").strip()
        if not text:
            self.logger.warning("Empty response text, no JSON to extract")
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

        start, end = text.find('['), text.rfind(']')
        if 0 <= start < end:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                pass

        openers = [idx for idx in (text.find('['), text.find('{')) if idx >= 0]
        if openers:
            try:
                repaired = repair_json(text[min(openers):], return_objects=True)
            except Exception as e:
                self.logger.debug(f"json_repair gave up: {e}")
            else:
                if isinstance(repaired, (list, dict)) and repaired:
                    self.logger.debug("Recovered JSON with json_repair")
                    return repaired

        self.logger.warning(f"No JSON in response: {text[:200]}...")
        return None

    def get_statistics(self) -> Dict[str, Any]:
        calls = self._inference_count
        return {
            "backend": self.backend_type.value,
            "model": self.model_name,
            "inference_count": calls,
            "failure_count": self._failure_count,
            "total_inference_time": self._total_inference_time,
            "average_inference_time": self._total_inference_time / calls if calls else 0.0,
        }
