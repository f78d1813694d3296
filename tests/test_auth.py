"""Tests for gateway/auth.py: bearer token resolution."""

import pytest

from gateway.auth import Auth
from tests.conftest import ALICE_TOKEN, BOB_TOKEN


class TestResolve:
    def test_known_tokens(self, auth):
        assert auth.resolve(ALICE_TOKEN) == "alice"
        assert auth.resolve(BOB_TOKEN) == "bob"

    def test_unknown_token(self, auth):
        assert auth.resolve("not-a-token") is None
        assert auth.resolve(ALICE_TOKEN[:-1]) is None

    @pytest.mark.parametrize("token", [None, ""])
    def test_empty_token(self, auth, token):
        assert auth.resolve(token) is None

    def test_empty_configured_tokens_are_skipped(self):
        a = Auth(api_tokens={"ghost": "", "alice": ALICE_TOKEN})
        assert a.users == {"alice"}
        assert a.resolve("") is None


class TestBearer:
    @pytest.mark.parametrize(
        "header, token",
        [
            ("Bearer abc", "abc"),
            ("bearer   abc  ", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
            ("", None),
            (None, None),
        ],
    )
    def test_bearer_token(self, header, token):
        assert Auth.bearer_token(header) == token
