"""
API Token Authentication

Architectural Intent:
- Maps bearer tokens to owner names for the HTTP API
- Tokens are configured as "owner:token" pairs
- With no tokens configured every caller is the anonymous owner

Security:
- Token comparison is constant-time
"""

from __future__ import annotations
from typing import Optional
import hmac
import logging

from skiff.domain.errors import AuthError

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


class Authenticator:
    def __init__(self, tokens: tuple[str, ...] = ()):
        self._tokens: list[tuple[str, str]] = []
        for entry in tokens:
            owner, sep, token = entry.partition(":")
            if not sep or not owner or not token:
                raise ValueError("Auth tokens must be formatted as owner:token")
            self._tokens.append((owner, token))
        if not self._tokens:
            logger.warning("No API tokens configured; authentication is disabled")

    @property
    def enabled(self) -> bool:
        return bool(self._tokens)

    def authenticate(self, authorization: Optional[str]) -> str:
        """Resolve an Authorization header to an owner name. Raises AuthError."""
        if not self.enabled:
            return ANONYMOUS
        if not authorization:
            raise AuthError("Missing Authorization header")
        scheme, _, presented = authorization.partition(" ")
        if scheme.lower() != "bearer" or not presented:
            raise AuthError("Authorization must use the Bearer scheme")
        matched = None
        for owner, token in self._tokens:
            if hmac.compare_digest(presented.strip().encode(), token.encode()):
                matched = owner
        if matched is None:
            raise AuthError("Invalid API token")
        return matched
