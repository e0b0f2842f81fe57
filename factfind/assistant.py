"""
AI assistant used by the chat-style fact-find.

Both operations take the admin-configured prompt, model and temperature
(``AssistantConfig``) and go through the LLMManager so a rate-limited
OpenAI account falls back to Groq.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import AssistantError
from .llm.base import Message
from .llm.manager import LLMManager
from .schemas.records import DEFAULT_AI_MODEL, AppConfig

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm sorry, I don't have a response for that."
NO_INTERPRETATION = "No interpretation available"
ANALYSIS_INSTRUCTION = (
    "\nAnalyze the user's response to determine the next appropriate action. "
    'Reply with a JSON object: {"interpretation": "...", "nextAction": "..."}'
)

VALID_ROLES = ("user", "assistant", "system")


@dataclass
class AssistantConfig:
    model: str
    system_prompt: str
    temperature: float = 0.7

    @classmethod
    def from_app_config(cls, config: AppConfig) -> "AssistantConfig":
        return cls(
            model=config.ai_model or DEFAULT_AI_MODEL,
            system_prompt=config.ai_prompt or "",
            temperature=config.temperature,
        )


def parse_messages(raw: object) -> List[Message]:
    """
    Validate ``[{"role": ..., "content": ...}]`` from a request body.

    Raises:
        ValueError: If the shape is wrong
    """
    if not isinstance(raw, list):
        raise ValueError("messages must be a list")
    messages = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError("each message must be an object")
        role, content = item.get("role"), item.get("content")
        if role not in VALID_ROLES or not isinstance(content, str):
            raise ValueError("each message needs a role (user/assistant/system) and string content")
        messages.append(Message(role=role, content=content))
    return messages


def generate_ai_response(messages: List[Message], config: AssistantConfig,
                         manager: LLMManager) -> Dict[str, str]:
    """
    Continue the conversation as the insurance assistant.

    Returns:
        {"content": ..., "role": "assistant"}

    Raises:
        AssistantError: If no provider could answer
    """
    conversation = [Message(role="system", content=config.system_prompt)] + list(messages)
    response = manager.chat(conversation, temperature=config.temperature, model=config.model)
    return {"content": response.content or FALLBACK_REPLY, "role": "assistant"}


def analyze_response(question: str, answer: str, system_prompt: str,
                     manager: LLMManager, model: Optional[str] = None) -> Dict[str, Optional[str]]:
    """
    Ask the model to interpret an answer.

    Returns:
        {"interpretation": ..., "nextAction": ...}

    Raises:
        AssistantError: If no provider could answer
    """
    conversation = [
        Message(role="system", content=(system_prompt or "") + ANALYSIS_INSTRUCTION),
        Message(role="user", content=f"Question: {question}\nUser's answer: {answer}"),
    ]
    response = manager.chat(
        conversation,
        model=model or DEFAULT_AI_MODEL,
        response_format={"type": "json_object"},
    )

    try:
        result = json.loads(response.content or "{}")
    except ValueError as e:
        logger.warning("Assistant returned non-JSON analysis: %s", e)
        raise AssistantError("Failed to analyze response: model did not return JSON") from e
    if not isinstance(result, dict):
        result = {}

    return {
        "interpretation": result.get("interpretation") or NO_INTERPRETATION,
        "nextAction": result.get("nextAction"),
    }
