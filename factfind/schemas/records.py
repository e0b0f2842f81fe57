"""
Persisted records: users, questionnaire sessions, stored answers and the
single application config row.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


DEFAULT_AI_PROMPT = (
    "You are an insurance assistant helping collect fact-find information. "
    "Be polite, clear, and concise. Ask one question at a time and wait for the "
    "user's response before continuing. Use the user's name when appropriate. "
    "If the user seems confused, offer clarification. For yes/no questions, "
    "present them as clear choices."
)
DEFAULT_AI_MODEL = "gpt-4o"
DEFAULT_AI_TEMPERATURE = "0.7"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SessionStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


@dataclass
class User:
    id: int
    external_id: str
    email: str
    name: Optional[str] = None
    is_admin: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "externalId": self.external_id,
            "email": self.email,
            "name": self.name,
            "isAdmin": self.is_admin,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Session:
    """One respondent's attempt at the fact-find."""
    id: int
    user_id: int
    status: SessionStatus = SessionStatus.IN_PROGRESS
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    signature_data: Optional[str] = None  # data-URL PNG
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "status": self.status.value,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "signatureData": self.signature_data,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class StoredAnswer:
    id: int
    session_id: int
    question_id: int
    value: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "questionId": self.question_id,
            "value": self.value,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class AppConfig:
    """Admin-editable settings for the AI assistant, email and Excel export."""
    ai_prompt: str = DEFAULT_AI_PROMPT
    ai_model: str = DEFAULT_AI_MODEL
    ai_temperature: str = DEFAULT_AI_TEMPERATURE
    email_template: str = ""
    email_recipients: str = ""
    excel_template: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def recipient_list(self) -> list:
        return [r.strip() for r in self.email_recipients.split(",") if r.strip()]

    @property
    def temperature(self) -> float:
        try:
            return float(self.ai_temperature)
        except (TypeError, ValueError):
            return float(DEFAULT_AI_TEMPERATURE)

    def to_dict(self) -> dict:
        return {
            "aiPrompt": self.ai_prompt,
            "aiModel": self.ai_model,
            "aiTemperature": self.ai_temperature,
            "emailTemplate": self.email_template,
            "emailRecipients": self.email_recipients,
            "excelTemplate": self.excel_template,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


# API keys accepted by update_config, mapped to AppConfig attributes
CONFIG_FIELDS = {
    "aiPrompt": "ai_prompt",
    "aiModel": "ai_model",
    "aiTemperature": "ai_temperature",
    "emailTemplate": "email_template",
    "emailRecipients": "email_recipients",
    "excelTemplate": "excel_template",
}

# API keys accepted by update_session
SESSION_FIELDS = {
    "status": "status",
    "completedAt": "completed_at",
    "signatureData": "signature_data",
}
