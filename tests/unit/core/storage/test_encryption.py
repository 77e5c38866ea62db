"""Tests for FieldEncryptor: Fernet payload encryption."""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet

from mindsense.core.storage.encryption import EncryptionError, FieldEncryptor


@pytest.fixture
def encryptor():
    return FieldEncryptor(Fernet.generate_key().decode())


class TestKeyValidation:
    def test_empty_key_raises(self):
        with pytest.raises(EncryptionError, match="must not be empty"):
            FieldEncryptor("")

    def test_whitespace_key_raises(self):
        with pytest.raises(EncryptionError):
            FieldEncryptor("   ")

    def test_invalid_key_raises(self):
        with pytest.raises(EncryptionError, match="Invalid encryption key"):
            FieldEncryptor("not-a-fernet-key")

    def test_generate_key_is_usable(self):
        key = FieldEncryptor.generate_key()
        assert FieldEncryptor(key).decrypt(FieldEncryptor(key).encrypt([1])) == [1]


class TestEncryptDecrypt:
    def test_nested_structure(self, encryptor):
        value = {
            "load": 50,
            "tags": ["deadline", "sleep debt"],
            "outcome": {"direction": "better", "intensity": 4},
        }
        assert encryptor.decrypt(encryptor.encrypt(value)) == value

    def test_ciphertext_hides_plaintext(self, encryptor):
        token = encryptor.encrypt({"note": "argument with manager"})
        assert "manager" not in token

    def test_wrong_key_raises(self, encryptor):
        token = encryptor.encrypt({"load": 50})
        other = FieldEncryptor(Fernet.generate_key().decode())
        with pytest.raises(EncryptionError, match="invalid token or wrong key"):
            other.decrypt(token)

    def test_tampered_token_raises(self, encryptor):
        token = encryptor.encrypt({"load": 50})
        with pytest.raises(EncryptionError):
            encryptor.decrypt(token[:-4] + "AAAA")

    def test_unserializable_value_raises(self, encryptor):
        with pytest.raises(EncryptionError, match="Encryption failed"):
            encryptor.encrypt({"when": object()})
