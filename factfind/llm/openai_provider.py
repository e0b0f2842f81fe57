"""
OpenAI provider (primary backend for the fact-find assistant).
"""

import logging
import os
from typing import List, Optional

from openai import OpenAI

from .base import LLMConfig, LLMProvider, LLMResponse, Message, ProviderStatus

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions through the official SDK."""

    DEFAULT_MODEL = "gpt-4o"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        timeout: int = 30,
    ):
        """
        Args:
            api_key: OpenAI API key (or OPENAI_API_KEY)
            model: Default model
            base_url: Custom endpoint (or OPENAI_BASE_URL)
            organization: Organization id (or OPENAI_ORG_ID)
        """
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL)
        self.organization = organization or os.getenv("OPENAI_ORG_ID")

        super().__init__(LLMConfig(
            provider_name="openai",
            model=model,
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=timeout,
        ))

        self._client: Optional[OpenAI] = None
        self._init_client()

    def _init_client(self):
        if not self.api_key:
            self._status = ProviderStatus.NOT_CONFIGURED
            return

        client_kwargs = {"api_key": self.api_key, "timeout": self.config.timeout}
        if self.base_url and self.base_url != DEFAULT_BASE_URL:
            client_kwargs["base_url"] = self.base_url
        if self.organization:
            client_kwargs["organization"] = self.organization

        self._client = OpenAI(**client_kwargs)
        self._status = ProviderStatus.AVAILABLE

    def is_available(self) -> bool:
        return self._client is not None and self.api_key is not None

    def chat(
        self,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        if not self.is_available():
            raise RuntimeError("OpenAI provider is not available. Check OPENAI_API_KEY.")

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
            if self._status == ProviderStatus.RATE_LIMITED:
                logger.warning("OpenAI rate limited or out of quota: %s", e)
            raise

        usage = response.usage
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            provider="openai",
            usage={
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
                "total_tokens": usage.total_tokens if usage else 0,
            },
            finish_reason=response.choices[0].finish_reason or "stop",
            raw_response=response,
        )


def create_openai_provider(model: str = OpenAIProvider.DEFAULT_MODEL) -> Optional[OpenAIProvider]:
    """OpenAIProvider if OPENAI_API_KEY is set, None otherwise."""
    if not os.environ.get("OPENAI_API_KEY"):
        return None
    return OpenAIProvider(model=model)
