"""
Authentication capability used by the web layer.

One interface, one implementation chosen by configuration. The rest of the
service only ever sees an ``Identity``: who the caller is and whether they
are an admin.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from flask import g


@dataclass(frozen=True)
class Identity:
    """An authenticated caller as reported by the identity provider."""
    external_id: str
    email: str
    name: Optional[str] = None
    is_admin: bool = False


class AuthProvider(ABC):
    """
    Request-scoped sign-in state on top of a token verifier.

    ``sign_in`` stores the verified identity on ``flask.g`` so it only lives
    for the current request.
    """

    name = "base"

    @abstractmethod
    def verify(self, token: str) -> Identity:
        """
        Verify a bearer token.

        Raises:
            AuthenticationError: If the token is missing, malformed or rejected
        """
        pass

    def sign_in(self, token: str) -> Identity:
        identity = self.verify(token)
        g.identity = identity
        return identity

    def sign_out(self) -> None:
        g.pop("identity", None)

    def is_signed_in(self) -> bool:
        return self.current_user() is not None

    def current_user(self) -> Optional[Identity]:
        return g.get("identity")
