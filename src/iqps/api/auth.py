"""Admin authentication: bearer token in, per-request AuthContext out."""

from __future__ import annotations

import hmac
from typing import Dict, Optional, Protocol, runtime_checkable

from fastapi import Header

from iqps.domain.errors import AuthError
from iqps.domain.qp import AuthContext


@runtime_checkable
class TokenVerifier(Protocol):
    """Maps a bearer token to a username, or None when it is not valid."""

    def verify(self, token: str) -> Optional[str]: ...


class StaticTokenVerifier:
    """Checks tokens against a fixed `token -> username` map from configuration."""

    def __init__(self, tokens: Dict[str, str]):
        self._tokens = dict(tokens)

    def verify(self, token: str) -> Optional[str]:
        username = None
        # Compare against every entry so timing does not reveal a partial match.
        for known, name in self._tokens.items():
            if hmac.compare_digest(known.encode("utf-8"), token.encode("utf-8")):
                username = name
        return username


def bearer_token(authorization: Optional[str]) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header missing or malformed.")
    return token.strip()


async def require_admin(authorization: Optional[str] = Header(default=None)) -> AuthContext:
    """FastAPI dependency for admin routes."""
    from iqps.api.dependencies import get_services

    token = bearer_token(authorization)
    username = get_services().verifier.verify(token)
    if not username:
        raise AuthError("User unauthorized.")
    return AuthContext(username=username, token=token)
