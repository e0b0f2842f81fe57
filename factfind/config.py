"""
Runtime configuration for the fact-find service.

Settings come from the environment, optionally seeded from a `.env` file in
the project root. Values already present in the environment win.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_DB_TIMEOUT = 10.0


def load_env_file(path: Optional[Path] = None) -> None:
    """Load KEY=VALUE lines from a .env file without overriding the environment."""
    env_path = path or PROJECT_ROOT / ".env"
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, _, value = line.partition("=")
            os.environ.setdefault(key.strip(), value.strip())


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class EmailSettings:
    """SMTP transport settings (same variable names the Node server used)."""
    host: str = ""
    port: int = 587
    secure: bool = False
    user: str = ""
    password: str = ""
    sender: str = "insurance@example.com"
    timeout: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.host)


@dataclass
class Settings:
    """Top-level service settings."""
    database_url: Optional[str] = None
    db_timeout: float = DEFAULT_DB_TIMEOUT

    # Identity provider: "mock" or "clerk"
    auth_provider: str = "mock"
    mock_admins: List[str] = field(default_factory=list)
    clerk_secret_key: Optional[str] = None
    clerk_jwks_url: Optional[str] = None
    clerk_api_url: str = "https://api.clerk.com/v1"

    email: EmailSettings = field(default_factory=EmailSettings)

    # "literal" or "transitive", see questionnaire.resolver.DependencyPolicy
    dependency_policy: str = "literal"

    seed_questions: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current environment."""
        return cls(
            database_url=os.environ.get("DATABASE_URL") or None,
            db_timeout=float(os.environ.get("FACTFIND_DB_TIMEOUT", DEFAULT_DB_TIMEOUT)),
            auth_provider=os.environ.get("FACTFIND_AUTH_PROVIDER", "mock").strip().lower(),
            mock_admins=_env_list("FACTFIND_MOCK_ADMINS"),
            clerk_secret_key=os.environ.get("CLERK_SECRET_KEY"),
            clerk_jwks_url=os.environ.get("CLERK_JWKS_URL"),
            clerk_api_url=os.environ.get("CLERK_API_URL", "https://api.clerk.com/v1"),
            email=EmailSettings(
                host=os.environ.get("EMAIL_HOST", ""),
                port=int(os.environ.get("EMAIL_PORT", "587")),
                secure=_env_bool("EMAIL_SECURE"),
                user=os.environ.get("EMAIL_USER", ""),
                password=os.environ.get("EMAIL_PASSWORD", ""),
                sender=os.environ.get("EMAIL_FROM", "insurance@example.com"),
            ),
            dependency_policy=os.environ.get("FACTFIND_DEPENDENCY_POLICY", "literal").strip().lower(),
            seed_questions=_env_bool("FACTFIND_SEED_QUESTIONS", True),
            log_level=os.environ.get("FACTFIND_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Apply a basic logging configuration once per process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
