"""
Tests for the AI assistant and the LLM manager's retry/failover.

Providers are scripted fakes; no API keys or network needed.
"""

from datetime import datetime, timedelta
from typing import List, Optional
from unittest.mock import MagicMock, patch

import pytest

from factfind.assistant import (
    FALLBACK_REPLY,
    NO_INTERPRETATION,
    AssistantConfig,
    analyze_response,
    generate_ai_response,
    parse_messages,
)
from factfind.errors import AssistantError
from factfind.llm import (
    GroqProvider,
    LLMConfig,
    LLMManager,
    LLMManagerConfig,
    LLMProvider,
    LLMResponse,
    Message,
    OpenAIProvider,
    ProviderStatus,
)
from factfind.schemas.records import AppConfig


class FakeProvider(LLMProvider):
    """Returns scripted replies; an Exception in the script is raised instead."""

    def __init__(self, name: str, model: str, script: Optional[list] = None):
        super().__init__(LLMConfig(provider_name=name, model=model))
        self.script = list(script or [])
        self.calls: List[dict] = []

    def is_available(self) -> bool:
        return True

    def chat(self, messages, temperature=None, max_tokens=None, model=None, **kwargs):
        self.calls.append({"messages": messages, "temperature": temperature,
                           "model": model, "kwargs": kwargs})
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return LLMResponse(content=item, model=model or self.model, provider=self.name,
                           usage={"total_tokens": 10})


def _manager(*providers, max_retries=2):
    config = LLMManagerConfig(retry_delay=0, max_retries=max_retries)
    return LLMManager(config=config, providers={p.name: p for p in providers})


def _openai(*script):
    return FakeProvider("openai", "gpt-4o", script)


def _groq(*script):
    return FakeProvider("groq", "llama-3.3-70b-versatile", script)


# ═══════════════════════════════════════════════════════════════
# LLM MANAGER
# ═══════════════════════════════════════════════════════════════

class TestLLMManager:
    def test_uses_priority_order(self):
        openai, groq = _openai("hello"), _groq("unused")
        response = _manager(groq, openai).chat([Message("user", "hi")])
        assert response.provider == "openai"
        assert groq.calls == []

    def test_retries_transient_errors(self):
        openai = _openai(RuntimeError("502 bad gateway"), "recovered")
        response = _manager(openai).chat([Message("user", "hi")])
        assert response.content == "recovered"
        assert len(openai.calls) == 2

    def test_rate_limit_fails_over(self):
        openai = _openai(RuntimeError("Error 429: rate limit exceeded"))
        groq = _groq("from groq")
        manager = _manager(openai, groq)
        response = manager.chat([Message("user", "hi")], model="gpt-4o")

        assert response.provider == "groq"
        assert len(openai.calls) == 1
        # Groq does not serve gpt-4o, so it answers with its own model
        assert groq.calls[0]["model"] is None
        assert manager.get_status()["openai"]["status"] == "rate_limited"

    def test_rate_limited_provider_is_skipped(self):
        openai = _openai(RuntimeError("quota exceeded"))
        groq = _groq("one", "two")
        manager = _manager(openai, groq)
        manager.chat([Message("user", "hi")])
        manager.chat([Message("user", "again")])
        assert len(openai.calls) == 1

    def test_all_providers_fail(self):
        openai = _openai(*[RuntimeError("boom")] * 3)
        with pytest.raises(AssistantError):
            _manager(openai).chat([Message("user", "hi")])
        assert len(openai.calls) == 3

    def test_no_providers(self):
        manager = _manager()
        assert not manager.is_available
        with pytest.raises(AssistantError):
            manager.chat([Message("user", "hi")])

    def test_forced_unknown_provider(self):
        with pytest.raises(AssistantError):
            _manager(_openai("x")).chat([Message("user", "hi")], provider="ollama")

    def test_daily_quota_blocks_provider(self):
        groq = _groq("unused")
        manager = _manager(groq)
        usage = manager._usage["groq"]
        usage.requests_today = 1000
        usage.last_request = datetime.now()
        assert not manager.is_available

    def test_daily_counters_reset_on_a_new_day(self):
        groq = _groq("fresh day")
        manager = _manager(groq)
        usage = manager._usage["groq"]
        usage.requests_today = 1000
        usage.tokens_today = 50000
        usage.last_request = datetime.now() - timedelta(days=3)

        assert manager.is_available
        assert manager.chat([Message("user", "hi")]).content == "fresh day"
        assert manager.get_status()["groq"]["requests_today"] == 1
        assert manager.get_status()["groq"]["tokens_today"] == 10

    def test_usage_tracking(self):
        manager = _manager(_openai("a", "b"))
        manager.chat([Message("user", "1")])
        manager.chat([Message("user", "2")])
        status = manager.get_status()["openai"]
        assert status["requests_today"] == 2
        assert status["tokens_today"] == 20
        manager.reset_daily_usage()
        assert manager.get_status()["openai"]["requests_today"] == 0


# ═══════════════════════════════════════════════════════════════
# ASSISTANT
# ═══════════════════════════════════════════════════════════════

class TestParseMessages:
    def test_valid(self):
        messages = parse_messages([{"role": "user", "content": "Hi"}])
        assert messages == [Message(role="user", content="Hi")]

    @pytest.mark.parametrize("raw", [
        None,
        "hello",
        [{"role": "robot", "content": "Hi"}],
        [{"role": "user", "content": 5}],
        ["Hi"],
    ])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_messages(raw)


class TestGenerateAIResponse:
    def test_prepends_system_prompt(self):
        openai = _openai("What is your full name?")
        config = AssistantConfig.from_app_config(AppConfig(ai_prompt="Be brief.", ai_temperature="0.3"))
        result = generate_ai_response([Message("user", "Start")], config, _manager(openai))

        assert result == {"content": "What is your full name?", "role": "assistant"}
        call = openai.calls[0]
        assert call["messages"][0] == Message("system", "Be brief.")
        assert call["messages"][1] == Message("user", "Start")
        assert call["temperature"] == 0.3
        assert call["model"] == "gpt-4o"

    def test_empty_reply_falls_back(self):
        config = AssistantConfig(model="gpt-4o", system_prompt="")
        result = generate_ai_response([Message("user", "Hi")], config, _manager(_openai("")))
        assert result["content"] == FALLBACK_REPLY

    def test_bad_temperature_uses_default(self):
        config = AssistantConfig.from_app_config(AppConfig(ai_temperature="warm"))
        assert config.temperature == 0.7


class TestAnalyzeResponse:
    def test_parses_json(self):
        openai = _openai('{"interpretation": "Has two children", "nextAction": "ask_ages"}')
        result = analyze_response("Do you have dependents?", "Yes, two", "Be brief.", _manager(openai))

        assert result == {"interpretation": "Has two children", "nextAction": "ask_ages"}
        call = openai.calls[0]
        assert call["kwargs"]["response_format"] == {"type": "json_object"}
        assert call["messages"][0].content.startswith("Be brief.")
        assert "User's answer: Yes, two" in call["messages"][1].content

    def test_missing_fields(self):
        result = analyze_response("Q", "A", "", _manager(_openai("{}")))
        assert result == {"interpretation": NO_INTERPRETATION, "nextAction": None}

    def test_non_json_reply(self):
        with pytest.raises(AssistantError):
            analyze_response("Q", "A", "", _manager(_openai("Sure! They have kids.")))


# ═══════════════════════════════════════════════════════════════
# SDK PROVIDERS
# ═══════════════════════════════════════════════════════════════

def _completion(content="Hello", model="gpt-4o"):
    completion = MagicMock()
    completion.choices[0].message.content = content
    completion.choices[0].finish_reason = "stop"
    completion.model = model
    completion.usage.prompt_tokens = 7
    completion.usage.completion_tokens = 3
    completion.usage.total_tokens = 10
    return completion


class TestOpenAIProvider:
    def test_not_configured_without_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        provider = OpenAIProvider()
        assert not provider.is_available()
        assert provider.status == ProviderStatus.NOT_CONFIGURED

    def test_chat(self):
        with patch("factfind.llm.openai_provider.OpenAI") as mock_openai:
            create = mock_openai.return_value.chat.completions.create
            create.return_value = _completion()
            provider = OpenAIProvider(api_key="sk-test")
            response = provider.chat([Message("user", "Hi")], temperature=0.2,
                                     model="gpt-4o-mini", response_format={"type": "json_object"})

        assert response.content == "Hello"
        assert response.tokens_used == 10
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.2
        assert kwargs["messages"] == [{"role": "user", "content": "Hi"}]
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_rate_limit_sets_status(self):
        with patch("factfind.llm.openai_provider.OpenAI") as mock_openai:
            mock_openai.return_value.chat.completions.create.side_effect = RuntimeError("429 rate limit")
            provider = OpenAIProvider(api_key="sk-test")
            with pytest.raises(RuntimeError):
                provider.chat([Message("user", "Hi")])
        assert provider.status == ProviderStatus.RATE_LIMITED

    def test_serves_model(self):
        with patch("factfind.llm.openai_provider.OpenAI"):
            provider = OpenAIProvider(api_key="sk-test")
        assert provider.serves_model("gpt-4o-mini")
        assert not provider.serves_model("llama-3.3-70b-versatile")


class TestGroqProvider:
    def test_chat_uses_default_model(self):
        with patch("factfind.llm.groq_provider.Groq") as mock_groq:
            create = mock_groq.return_value.chat.completions.create
            create.return_value = _completion("Hi there", model="llama-3.3-70b-versatile")
            provider = GroqProvider(api_key="gsk-test")
            response = provider.chat([Message("user", "Hi")])

        assert response.provider == "groq"
        assert create.call_args.kwargs["model"] == "llama-3.3-70b-versatile"
        assert create.call_args.kwargs["max_tokens"] == 1000
