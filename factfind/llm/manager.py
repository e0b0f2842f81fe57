"""
LLM Manager - one entry point over the configured providers.

Handles provider selection, retry with backoff, failover when a provider is
rate limited, and usage tracking.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..errors import AssistantError
from .base import PROVIDER_INFO, LLMProvider, LLMResponse, Message, ProviderStatus, is_rate_limit_error
from .groq_provider import GroqProvider, create_groq_provider
from .openai_provider import OpenAIProvider, create_openai_provider

logger = logging.getLogger(__name__)


@dataclass
class ProviderUsage:
    """Per-provider counters."""
    requests_today: int = 0
    tokens_today: int = 0
    last_request: Optional[datetime] = None
    rate_limit_reset: Optional[datetime] = None
    errors: int = 0
    successes: int = 0
    last_error: Optional[str] = None


@dataclass
class LLMManagerConfig:
    """Configuration for the LLM Manager."""
    # Providers in order of preference
    provider_priority: List[str] = field(default_factory=lambda: ["openai", "groq"])

    auto_fallback: bool = True
    max_retries: int = 2
    retry_delay: float = 1.0  # doubled after each failed attempt
    rate_limit_cooldown: timedelta = timedelta(hours=1)

    default_models: Dict[str, str] = field(default_factory=lambda: {
        "openai": OpenAIProvider.DEFAULT_MODEL,
        "groq": GroqProvider.DEFAULT_MODEL,
    })


class LLMManager:
    """
    Manages the assistant's LLM providers with failover.

    Usage:
        manager = LLMManager()
        response = manager.chat([Message(role="user", content="Hello")], model="gpt-4o")

    ``model`` is honoured by the provider that serves it; a fallback provider
    answers with its own default model instead.
    """

    def __init__(
        self,
        config: Optional[LLMManagerConfig] = None,
        providers: Optional[Dict[str, LLMProvider]] = None,
    ):
        self.config = config or LLMManagerConfig()
        self._providers: Dict[str, LLMProvider] = {}
        self._usage: Dict[str, ProviderUsage] = {}

        if providers is None:
            self._initialize_providers()
        else:
            for name, provider in providers.items():
                self._register(name, provider)

    def _register(self, name: str, provider: LLMProvider) -> None:
        self._providers[name] = provider
        self._usage[name] = ProviderUsage()

    def _initialize_providers(self):
        openai = create_openai_provider(model=self.config.default_models["openai"])
        if openai and openai.is_available():
            self._register("openai", openai)
            logger.info("OpenAI provider initialized")

        groq = create_groq_provider(model=self.config.default_models["groq"])
        if groq and groq.is_available():
            self._register("groq", groq)
            logger.info("Groq provider initialized")

        if not self._providers:
            logger.warning("No LLM provider configured (set OPENAI_API_KEY or GROQ_API_KEY)")

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def _is_usable(self, name: str) -> bool:
        provider = self._providers[name]
        usage = self._usage[name]
        if usage.last_request and usage.last_request.date() != datetime.now().date():
            usage.requests_today = 0
            usage.tokens_today = 0

        if provider.status == ProviderStatus.RATE_LIMITED:
            if usage.rate_limit_reset and datetime.now() < usage.rate_limit_reset:
                return False
            provider._status = ProviderStatus.AVAILABLE

        info = PROVIDER_INFO.get(name)
        if info and usage.requests_today >= info.rate_limit_requests_per_day:
            return False
        return True

    def _candidates(self, provider: Optional[str] = None) -> List[str]:
        if provider:
            if provider not in self._providers:
                raise AssistantError(f"Provider '{provider}' not available")
            return [provider]
        ordered = [n for n in self.config.provider_priority if n in self._providers]
        ordered += [n for n in self._providers if n not in ordered]
        usable = [n for n in ordered if self._is_usable(n)]
        return usable if self.config.auto_fallback else usable[:1]

    @property
    def is_available(self) -> bool:
        return bool(self._providers) and bool(self._candidates())

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def chat(
        self,
        messages: List[Message],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Send a chat request, retrying and failing over as needed.

        Args:
            messages: Conversation messages
            temperature: Override default temperature
            max_tokens: Override default max tokens
            model: Preferred model (e.g. the admin-configured "gpt-4o")
            provider: Force a specific provider

        Raises:
            AssistantError: If no provider produced a response
        """
        candidates = self._candidates(provider)
        if not candidates:
            raise AssistantError("No LLM providers available. Set OPENAI_API_KEY or GROQ_API_KEY.")

        last_error: Optional[Exception] = None
        for name in candidates:
            llm = self._providers[name]
            call_model = model if model and llm.serves_model(model) else None

            for attempt in range(self.config.max_retries + 1):
                try:
                    response = llm.chat(messages, temperature=temperature, max_tokens=max_tokens,
                                        model=call_model, **kwargs)
                except Exception as e:
                    last_error = e
                    self._record_error(name, e)
                    if is_rate_limit_error(e):
                        self._handle_rate_limit(name)
                        break
                    if attempt < self.config.max_retries:
                        wait = (2 ** attempt) * self.config.retry_delay
                        logger.warning("LLM error on %s, retrying in %.1fs (%d/%d): %s",
                                       name, wait, attempt + 1, self.config.max_retries, e)
                        time.sleep(wait)
                    continue

                self._update_usage(name, response)
                return response

            if len(candidates) > 1:
                logger.warning("Giving up on %s, trying next provider", name)

        raise AssistantError(f"All LLM providers failed: {last_error}")

    # -------------------------------------------------------------------------
    # Usage tracking
    # -------------------------------------------------------------------------

    def _update_usage(self, name: str, response: LLMResponse):
        usage = self._usage[name]
        usage.requests_today += 1
        usage.successes += 1
        usage.tokens_today += response.tokens_used
        usage.last_request = datetime.now()

    def _record_error(self, name: str, error: Exception):
        usage = self._usage[name]
        usage.errors += 1
        usage.last_error = str(error)[:200]

    def _handle_rate_limit(self, name: str):
        self._usage[name].rate_limit_reset = datetime.now() + self.config.rate_limit_cooldown
        self._providers[name]._status = ProviderStatus.RATE_LIMITED
        logger.warning("Provider %s rate limited until %s", name, self._usage[name].rate_limit_reset)

    def get_status(self) -> Dict[str, Any]:
        """Status of every provider, for the health endpoint."""
        return {
            name: {
                "status": provider.status.value,
                "model": provider.model,
                "requests_today": self._usage[name].requests_today,
                "tokens_today": self._usage[name].tokens_today,
                "errors": self._usage[name].errors,
            }
            for name, provider in self._providers.items()
        }

    def reset_daily_usage(self):
        """Reset daily usage counters."""
        for usage in self._usage.values():
            usage.requests_today = 0
            usage.tokens_today = 0
