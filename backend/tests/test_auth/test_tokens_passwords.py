"""Tests for JWT helpers and bcrypt password hashing."""

from datetime import timedelta

import pytest
from jose import JWTError, jwt

from besttutor.auth.jwt import ACCESS, REFRESH, create_access_token, create_token_pair, decode_token
from besttutor.auth.passwords import hash_password, verify_password


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_profile_without_password(self):
        assert not verify_password("anything", None)

    def test_corrupt_hash_is_a_mismatch(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")


class TestTokens:
    def test_token_pair_claims(self):
        pair = create_token_pair("user-1", "student")
        access = decode_token(pair["access_token"], expected_type=ACCESS)
        refresh = decode_token(pair["refresh_token"], expected_type=REFRESH)

        assert access["sub"] == "user-1"
        assert access["role"] == "student"
        assert refresh["sub"] == "user-1"
        assert "role" not in refresh
        assert pair["token_type"] == "bearer"

    def test_wrong_token_type_is_rejected(self):
        pair = create_token_pair("user-1", "parent")
        with pytest.raises(JWTError):
            decode_token(pair["refresh_token"], expected_type=ACCESS)

    def test_expired_token_is_rejected(self):
        token = create_access_token("user-1", "parent", expires_delta=timedelta(seconds=-1))
        with pytest.raises(JWTError):
            decode_token(token)

    def test_token_signed_with_another_key_is_rejected(self):
        token = jwt.encode({"sub": "user-1", "type": ACCESS}, "some-other-secret", algorithm="HS256")
        with pytest.raises(JWTError):
            decode_token(token)
