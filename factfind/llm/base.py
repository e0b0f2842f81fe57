"""
Base classes for the assistant's LLM providers.

Every backend (OpenAI, Groq) implements ``LLMProvider`` so the manager can
switch between them when one is rate limited or down.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ProviderStatus(str, Enum):
    """Status of an LLM provider."""
    AVAILABLE = "available"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"
    NOT_CONFIGURED = "not_configured"


@dataclass
class LLMConfig:
    """Configuration for an LLM provider."""
    provider_name: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout: int = 30


@dataclass
class Message:
    """A single chat message."""
    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Response from an LLM provider."""
    content: str
    model: str
    provider: str
    usage: Dict[str, int] = field(default_factory=dict)
    finish_reason: str = "stop"
    raw_response: Optional[Any] = None

    @property
    def tokens_used(self) -> int:
        return self.usage.get("total_tokens", 0)


def is_rate_limit_error(error: Exception) -> bool:
    """Heuristic shared by providers and the manager."""
    text = str(error).lower()
    return "rate_limit" in text or "rate limit" in text or "429" in text or "quota" in text


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.
    """

    def __init__(self, config: LLMConfig):
        self.config = config
        self._status = ProviderStatus.NOT_CONFIGURED

    @property
    def name(self) -> str:
        return self.config.provider_name

    @property
    def model(self) -> str:
        """Default model."""
        return self.config.model

    @property
    def status(self) -> ProviderStatus:
        return self._status

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is configured and usable."""
        pass

    @abstractmethod
    def chat(
        self,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: Conversation messages
            temperature: Override default temperature
            max_tokens: Override default max tokens
            model: Override the default model for this call
            **kwargs: Provider-specific parameters

        Returns:
            LLMResponse with the model's reply
        """
        pass

    def serves_model(self, model: str) -> bool:
        """Whether ``model`` belongs to this provider's catalogue."""
        info = PROVIDER_INFO.get(self.name)
        return model == self.model or (info is not None and model in info.models)

    def _record_failure(self, error: Exception) -> None:
        self._status = ProviderStatus.RATE_LIMITED if is_rate_limit_error(error) else ProviderStatus.ERROR


@dataclass
class ProviderInfo:
    """Static information used when selecting a provider."""
    name: str
    priority: int  # Lower = higher priority
    rate_limit_requests_per_day: int
    models: List[str]


PROVIDER_INFO = {
    "openai": ProviderInfo(
        name="openai",
        priority=0,
        rate_limit_requests_per_day=10000,
        models=["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
    ),
    "groq": ProviderInfo(
        name="groq",
        priority=1,
        rate_limit_requests_per_day=1000,
        models=["llama-3.3-70b-versatile", "llama-3.1-8b-instant", "gemma2-9b-it"],
    ),
}
