"""
Tests for session tokens and password verifiers.

Tests cover:
- Session token creation, decoding, expiry, and tampering
- bcrypt verifier creation and checking
"""

from unittest.mock import patch

import pytest
from itsdangerous import URLSafeTimedSerializer

from signin.auth import create_session_token, decode_session_token
from signin.models import PublicIdentity
from signin.passwords import DEFAULT_ROUNDS, PasswordHasher


def _identity() -> PublicIdentity:
    return PublicIdentity(id="test@example.com", name="test", email="test@example.com")


class TestSessionToken:
    """Test session token creation and decoding."""

    def test_create_and_decode_roundtrip(self):
        token = create_session_token(_identity())
        decoded = decode_session_token(token)

        assert decoded == _identity()

    def test_oauth_identity_preserved(self):
        user = PublicIdentity(id="github:42", name="Octo Cat", email="")
        decoded = decode_session_token(create_session_token(user))
        assert decoded is not None
        assert decoded.id == "github:42"
        assert decoded.name == "Octo Cat"

    def test_invalid_token_returns_none(self):
        assert decode_session_token("completely-invalid-token") is None

    def test_tampered_token_returns_none(self):
        token = create_session_token(_identity())
        tampered = token[:-5] + "XXXXX"
        assert decode_session_token(tampered) is None

    def test_empty_token_returns_none(self):
        assert decode_session_token("") is None

    def test_wrong_secret_returns_none(self):
        forged = URLSafeTimedSerializer("another-secret", salt="signin-session").dumps(
            {"id": "x", "name": "x", "email": "x"}
        )
        assert decode_session_token(forged) is None

    def test_expired_token_returns_none(self):
        token = create_session_token(_identity())
        with patch("signin.auth.get_settings") as settings:
            settings.return_value.secret_key = "change-me-to-a-random-string-at-least-32-chars"
            settings.return_value.session_max_age = -1
            assert decode_session_token(token) is None

    def test_malformed_payload_returns_none(self):
        serializer = URLSafeTimedSerializer(
            "change-me-to-a-random-string-at-least-32-chars", salt="signin-session"
        )
        token = serializer.dumps({"email": "only@example.com"})
        assert decode_session_token(token) is None


class TestPasswordHasher:
    """Test bcrypt verifiers."""

    @pytest.fixture()
    def hasher(self) -> PasswordHasher:
        return PasswordHasher(rounds=4)

    def test_default_cost(self):
        assert DEFAULT_ROUNDS == 10
        assert PasswordHasher().rounds == 10

    def test_cost_encoded_in_hash(self, hasher: PasswordHasher):
        assert hasher.hash("pw").startswith("$2b$04$")

    def test_verify_correct(self, hasher: PasswordHasher):
        assert hasher.verify("pw", hasher.hash("pw"))

    def test_verify_wrong(self, hasher: PasswordHasher):
        assert not hasher.verify("nope", hasher.hash("pw"))

    def test_salted(self, hasher: PasswordHasher):
        assert hasher.hash("pw") != hasher.hash("pw")

    def test_non_bcrypt_hash_does_not_verify(self, hasher: PasswordHasher):
        assert not hasher.verify("pw", "plain-text")

    def test_long_password(self, hasher: PasswordHasher):
        password = "ü" * 100
        assert hasher.verify(password, hasher.hash(password))
