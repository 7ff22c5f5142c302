from types import SimpleNamespace

import pytest

from calmy.core.exceptions import AuthenticationError
from calmy.services.auth import SupabaseAuthVerifier, parse_bearer


class StubSupabaseAuth:
    def __init__(self, users):
        self.users = users
        self.calls = []

    def get_user(self, jwt=None):
        self.calls.append(jwt)
        if jwt == "expired":
            raise RuntimeError("JWT expired")
        user = self.users.get(jwt)
        return SimpleNamespace(user=user) if user else None


def make_verifier(users):
    auth = StubSupabaseAuth(users)
    return SupabaseAuthVerifier(SimpleNamespace(auth=auth)), auth


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc.def", "abc.def"),
        ("bearer abc.def", "abc.def"),
        ("  Bearer   abc.def  ", "abc.def"),
        ("Basic abc", None),
        ("Bearer", None),
        ("abc.def", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_bearer(header, expected):
    assert parse_bearer(header) == expected


@pytest.mark.asyncio
async def test_verify_returns_user_id():
    verifier, auth = make_verifier({"good": SimpleNamespace(id="user-1")})

    assert await verifier.verify("good") == "user-1"
    assert auth.calls == ["good"]


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["unknown", "expired"])
async def test_verify_rejects_invalid_tokens(token):
    verifier, _ = make_verifier({"good": SimpleNamespace(id="user-1")})

    with pytest.raises(AuthenticationError):
        await verifier.verify(token)
