"""
Groq LLM Provider (fallback backend for the fact-find assistant).

Groq's free tier allows roughly 1,000 requests/day.
Sign up at: https://console.groq.com
"""

import logging
import os
from typing import List, Optional

from groq import Groq

from .base import LLMConfig, LLMProvider, LLMResponse, Message, ProviderStatus

logger = logging.getLogger(__name__)


class GroqProvider(LLMProvider):
    """Groq chat completions through the official SDK."""

    DEFAULT_MODEL = "llama-3.3-70b-versatile"

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL, timeout: int = 30):
        """
        Args:
            api_key: Groq API key (or GROQ_API_KEY)
            model: Default model
        """
        self.api_key = api_key or os.environ.get("GROQ_API_KEY")

        super().__init__(LLMConfig(
            provider_name="groq",
            model=model,
            api_key=self.api_key,
            base_url="https://api.groq.com/openai/v1",
            timeout=timeout,
        ))

        self._client: Optional[Groq] = None
        if self.api_key:
            self._client = Groq(api_key=self.api_key, timeout=timeout)
            self._status = ProviderStatus.AVAILABLE

    def is_available(self) -> bool:
        return self._client is not None and self._status != ProviderStatus.NOT_CONFIGURED

    def chat(
        self,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        if not self.is_available():
            raise RuntimeError(
                "Groq not available. Set GROQ_API_KEY environment variable.\n"
                "Get your free API key at: https://console.groq.com"
            )

        try:
            response = self._client.chat.completions.create(
                model=model or self.config.model,
                messages=[m.to_dict() for m in messages],
                temperature=self.config.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.config.max_tokens,
                **kwargs
            )
        except Exception as e:
            self._record_failure(e)
            raise

        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            provider="groq",
            usage={
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            },
            finish_reason=response.choices[0].finish_reason or "stop",
            raw_response=response,
        )


def create_groq_provider(model: str = GroqProvider.DEFAULT_MODEL) -> Optional[GroqProvider]:
    """GroqProvider if GROQ_API_KEY is set, None otherwise."""
    api_key = os.environ.get("GROQ_API_KEY")
    if not api_key:
        return None
    return GroqProvider(api_key=api_key, model=model)
