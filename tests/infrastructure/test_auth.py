"""
Infrastructure Layer Tests: Authenticator
"""

import pytest

from skiff.domain.errors import AuthError
from skiff.infrastructure.auth import ANONYMOUS, Authenticator


def test_disabled_without_tokens():
    auth = Authenticator()
    assert not auth.enabled
    assert auth.authenticate(None) == ANONYMOUS
    assert auth.authenticate("Bearer anything") == ANONYMOUS


def test_bearer_token_resolves_owner():
    auth = Authenticator(("alice:a-secret", "bob:b-secret"))
    assert auth.enabled
    assert auth.authenticate("Bearer b-secret") == "bob"
    assert auth.authenticate("bearer a-secret") == "alice"


@pytest.mark.parametrize(
    "header",
    [None, "", "Basic a-secret", "Bearer", "Bearer wrong"],
)
def test_rejected_headers(header):
    auth = Authenticator(("alice:a-secret",))
    with pytest.raises(AuthError):
        auth.authenticate(header)


@pytest.mark.parametrize("entry", ["no-separator", ":token", "owner:"])
def test_malformed_token_config(entry):
    with pytest.raises(ValueError):
        Authenticator((entry,))
