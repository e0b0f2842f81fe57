"""
Development identity provider: the bearer token *is* the user id.
"""

from typing import Iterable, Optional

from ..errors import AuthenticationError
from .base import AuthProvider, Identity


class MockAuthProvider(AuthProvider):
    """
    Accepts any non-empty token.

    A token that looks like an email address is used as the email too;
    otherwise the email is ``<token>@example.com``. Tokens or emails listed
    in ``admins`` (FACTFIND_MOCK_ADMINS) are admins.
    """

    name = "mock"

    def __init__(self, admins: Optional[Iterable[str]] = None):
        self.admins = {a.strip().lower() for a in (admins or []) if a.strip()}

    def verify(self, token: str) -> Identity:
        token = (token or "").strip()
        if not token:
            raise AuthenticationError("No session token provided")
        email = token if "@" in token else f"{token}@example.com"
        return Identity(
            external_id=token,
            email=email,
            name=email.split("@")[0],
            is_admin=token.lower() in self.admins or email.lower() in self.admins,
        )
