"""
Tests for access tokens and at-rest encryption.
"""
import uuid
from datetime import timedelta

import pytest
from cryptography.fernet import InvalidToken
from jose import jwt

from tracksub.core.config import settings
from tracksub.core.security import (
    create_access_token,
    decrypt_value,
    encrypt_value,
    hash_password,
    read_access_token,
    verify_password,
)


class TestAccessTokens:
    def test_round_trip(self):
        user_id = uuid.uuid4()
        assert read_access_token(create_access_token(user_id)) == user_id

    def test_expired(self):
        token = create_access_token(uuid.uuid4(), expires_delta=timedelta(seconds=-5))
        assert read_access_token(token) is None

    def test_wrong_type(self):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "refresh"}, settings.api_secret_key, algorithm=settings.algorithm
        )
        assert read_access_token(token) is None

    def test_garbage_subject(self):
        token = jwt.encode(
            {"sub": "not-a-uuid", "type": "access"}, settings.api_secret_key, algorithm=settings.algorithm
        )
        assert read_access_token(token) is None

    def test_foreign_signature(self):
        token = jwt.encode({"sub": str(uuid.uuid4()), "type": "access"}, "x" * 40, algorithm="HS256")
        assert read_access_token(token) is None


class TestSecrets:
    def test_password_hash(self):
        hashed = hash_password("password123")
        assert hashed != "password123"
        assert verify_password("password123", hashed)
        assert not verify_password("password124", hashed)

    def test_encryption(self):
        sealed = encrypt_value("access-sandbox-1")
        assert sealed != "access-sandbox-1"
        assert decrypt_value(sealed) == "access-sandbox-1"

    def test_tampered_ciphertext(self):
        with pytest.raises(InvalidToken):
            decrypt_value(encrypt_value("x")[:-4] + "AAAA")
