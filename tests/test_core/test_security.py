"""Tests for password hashing, user handles and access tokens."""

import base64
import hashlib
from datetime import timedelta

import jwt
import pytest

from fluxdigest.core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    parse_duration,
    user_handle,
    verify_password,
)


class TestUserHandle:
    """Tests for user_handle."""

    def test_strips_non_alphanumerics_from_base64(self):
        """Should be base64 of the username with +, / and = removed."""
        handle = user_handle("alice?")
        raw = base64.b64encode(b"alice?").decode()
        assert handle == raw.replace("+", "").replace("/", "").replace("=", "")
        assert handle.isalnum()

    def test_missing_username_is_default(self):
        assert user_handle(None) == "default"
        assert user_handle("") == "default"


class TestPasswordHashing:
    """Tests for hash_password/verify_password."""

    def test_matches_pbkdf2_sha512(self):
        """Should be PBKDF2-HMAC-SHA512, 1000 iterations, 64-byte key."""
        digest, salt = hash_password("secret", "abcd")
        expected = hashlib.pbkdf2_hmac("sha512", b"secret", b"abcd", 1000, dklen=64).hex()
        assert digest == expected
        assert salt == "abcd"

    def test_generates_hex_salt(self):
        _, salt = hash_password("secret")
        assert len(salt) == 32
        bytes.fromhex(salt)

    def test_verify(self):
        digest, salt = hash_password("secret")
        assert verify_password("secret", digest, salt) is True
        assert verify_password("wrong", digest, salt) is False


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("7d", timedelta(days=7)),
            ("12h", timedelta(hours=12)),
            ("30m", timedelta(minutes=30)),
            ("45s", timedelta(seconds=45)),
            ("3600", timedelta(seconds=3600)),
        ],
    )
    def test_units(self, value: str, expected: timedelta):
        assert parse_duration(value) == expected

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_duration("soon")


class TestAccessTokens:
    """Tests for create_access_token/decode_access_token."""

    def test_round_trip_claims(self):
        token = create_access_token({"username": "alice"}, "s3cret", "1h")
        payload = decode_access_token(token, "s3cret")
        assert payload["username"] == "alice"
        assert payload["exp"] - payload["iat"] == 3600

    def test_wrong_secret_rejected(self):
        token = create_access_token({"username": "alice"}, "s3cret", "1h")
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token, "other")

    def test_expired_token_rejected(self):
        token = create_access_token({"username": "alice"}, "s3cret", "0s")
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_access_token(token, "s3cret")
