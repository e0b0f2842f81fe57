"""
LLM providers for the fact-find assistant.

- OpenAI (primary; the admin-configured model, "gpt-4o" by default)
- Groq (fallback, free tier)
"""

from .base import LLMConfig, LLMProvider, LLMResponse, Message, ProviderStatus
from .groq_provider import GroqProvider
from .manager import LLMManager, LLMManagerConfig
from .openai_provider import OpenAIProvider

__all__ = [
    "LLMConfig",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "ProviderStatus",
    "GroqProvider",
    "LLMManager",
    "LLMManagerConfig",
    "OpenAIProvider",
]
