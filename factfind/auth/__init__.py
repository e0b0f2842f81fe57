"""
Identity providers. Selected with FACTFIND_AUTH_PROVIDER ("mock" or "clerk").
"""

from ..config import Settings
from .base import AuthProvider, Identity
from .clerk import ClerkAuthProvider
from .mock import MockAuthProvider


def get_auth_provider(settings: Settings) -> AuthProvider:
    """Build the configured AuthProvider."""
    if settings.auth_provider == "clerk":
        return ClerkAuthProvider(
            secret_key=settings.clerk_secret_key or "",
            jwks_url=settings.clerk_jwks_url or "",
            api_url=settings.clerk_api_url,
        )
    if settings.auth_provider != "mock":
        raise ValueError(f"Unknown auth provider: {settings.auth_provider!r}")
    return MockAuthProvider(admins=settings.mock_admins)


__all__ = [
    "AuthProvider",
    "Identity",
    "ClerkAuthProvider",
    "MockAuthProvider",
    "get_auth_provider",
]
