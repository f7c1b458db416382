"""LLM client implemented via the OpenAI Chat Completions API."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TIMEOUT_MS = 30_000


class LLMClientError(RuntimeError):
    """Raised when the LLM API returns an error."""


@dataclass
class OpenAIClientConfig:
    api_key: str
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    @classmethod
    def from_env(cls) -> "OpenAIClientConfig":
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("Missing required environment variable: OPENAI_API_KEY")
        timeout_env = os.getenv("TESTAIR_OPENAI_TIMEOUT_MS")
        return cls(
            api_key=api_key,
            model=os.getenv("TESTAIR_OPENAI_MODEL") or DEFAULT_MODEL,
            base_url=os.getenv("OPENAI_BASE_URL") or DEFAULT_BASE_URL,
            timeout_ms=int(timeout_env) if timeout_env else DEFAULT_TIMEOUT_MS,
        )


class LLMClient:
    """Wrapper around the async chat completions endpoint returning parsed JSON."""

    def __init__(self, config: Optional[OpenAIClientConfig] = None) -> None:
        self.config = config or OpenAIClientConfig.from_env()
        self.client = AsyncOpenAI(api_key=self.config.api_key, base_url=self.config.base_url)

    async def chat_completion_json(self, messages: List[Dict[str, Any]]) -> Any:
        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=0,
                response_format={"type": "json_object"},
                timeout=self.config.timeout_ms / 1000,
            )
        except OpenAIError as exc:
            raise LLMClientError(f"OpenAI API error: {exc}") from exc

        if not response.choices:
            raise LLMClientError("OpenAI API returned no choices")

        content = getattr(response.choices[0].message, "content", None)
        if not isinstance(content, str) or not content:
            raise LLMClientError("OpenAI API returned no assistant content")

        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            raise LLMClientError(f"OpenAI API returned invalid JSON: {exc}") from exc
