"""
Clerk identity provider.

Session tokens are RS256 JWTs signed with the instance's JWKS. The user's
email and admin flag (``public_metadata.isAdmin``) come from the Clerk
Backend API.

Configuration:
    CLERK_SECRET_KEY: Backend API key
    CLERK_JWKS_URL: JWKS endpoint of the Clerk instance
    CLERK_API_URL: Backend API base (default https://api.clerk.com/v1)
"""

import logging
from typing import Optional

import jwt
import requests

from ..errors import AuthenticationError
from .base import AuthProvider, Identity

logger = logging.getLogger(__name__)


class ClerkAuthProvider(AuthProvider):
    name = "clerk"

    def __init__(self, secret_key: str, jwks_url: str,
                 api_url: str = "https://api.clerk.com/v1", timeout: float = 10.0):
        if not secret_key or not jwks_url:
            raise ValueError("CLERK_SECRET_KEY and CLERK_JWKS_URL are required for Clerk auth")
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._jwks = jwt.PyJWKClient(jwks_url)

    def _decode(self, token: str) -> dict:
        try:
            signing_key = self._jwks.get_signing_key_from_jwt(token)
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                options={"verify_aud": False},
            )
        except jwt.PyJWKClientError as e:
            logger.warning("Could not fetch Clerk signing key: %s", e)
            raise AuthenticationError("Invalid session") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid session") from e

    def _fetch_user(self, user_id: str) -> dict:
        try:
            response = requests.get(
                f"{self.api_url}/users/{user_id}",
                headers={"Authorization": f"Bearer {self.secret_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error("Clerk user lookup failed for %s: %s", user_id, e)
            raise AuthenticationError("Authentication failed") from e

    @staticmethod
    def _primary_email(user: dict) -> str:
        addresses = user.get("email_addresses") or []
        primary_id = user.get("primary_email_address_id")
        for address in addresses:
            if address.get("id") == primary_id:
                return address.get("email_address", "")
        return addresses[0].get("email_address", "") if addresses else ""

    def verify(self, token: str) -> Identity:
        if not token:
            raise AuthenticationError("No session token provided")
        claims = self._decode(token)
        user_id: Optional[str] = claims.get("sub")
        if not user_id:
            raise AuthenticationError("Invalid session")

        user = self._fetch_user(user_id)
        name = " ".join(p for p in (user.get("first_name"), user.get("last_name")) if p) or None
        metadata = user.get("public_metadata") or {}
        return Identity(
            external_id=user_id,
            email=self._primary_email(user),
            name=name,
            is_admin=metadata.get("isAdmin") is True,
        )
