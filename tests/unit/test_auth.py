from __future__ import annotations

import pytest

from iqps.api import dependencies
from iqps.api.auth import StaticTokenVerifier, TokenVerifier, bearer_token, require_admin
from iqps.domain.errors import AuthError
from iqps.domain.qp import AuthContext


class _Services:
    verifier = StaticTokenVerifier({"tok-a": "alice", "tok-b": "bob"})


def test_static_verifier():
    verifier = StaticTokenVerifier({"tok-a": "alice"})
    assert isinstance(verifier, TokenVerifier)
    assert verifier.verify("tok-a") == "alice"
    assert verifier.verify("tok-") is None
    assert verifier.verify("") is None


@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "tok-a"])
def test_bearer_token_rejects_malformed_headers(header):
    with pytest.raises(AuthError):
        bearer_token(header)


def test_bearer_token_is_case_insensitive_on_scheme():
    assert bearer_token("bearer  tok-a ") == "tok-a"


@pytest.mark.asyncio
async def test_require_admin_builds_request_identity(monkeypatch):
    monkeypatch.setattr(dependencies, "_services", _Services())

    auth = await require_admin("Bearer tok-b")
    assert auth == AuthContext(username="bob", token="tok-b")

    with pytest.raises(AuthError):
        await require_admin("Bearer nope")
