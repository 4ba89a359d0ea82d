"""Tests for applicant identity normalization, hashing and encryption."""

import pytest
from cryptography.fernet import Fernet
from pydantic import SecretStr

from drivedock.core.config import settings
from drivedock.core.errors import ValidationError
from drivedock.core.identity import (
    codes_match,
    decrypt_identity,
    encrypt_identity,
    hash_code,
    hash_contact,
    hash_identity,
    mask_email,
    normalize_identity,
)


class TestNormalizeIdentity:
    """normalize_identity."""

    @pytest.mark.parametrize(
        "raw", ["046454286", "046 454 286", "046-454-286", " 046-454 286 "]
    )
    def test_strips_spaces_and_dashes(self, raw: str):
        assert normalize_identity(raw) == "046454286"

    @pytest.mark.parametrize("raw", ["", "12345678", "1234567890", "04645428X"])
    def test_rejects_anything_but_nine_digits(self, raw: str):
        with pytest.raises(ValidationError, match="9 digits"):
            normalize_identity(raw)


class TestHashing:
    """Keyed hashes."""

    def test_identity_hash_is_stable_and_keyed(self):
        first = hash_identity("046454286")
        assert first == hash_identity("046454286")
        assert len(first) == 64

        original = settings.identity_hash_secret
        settings.identity_hash_secret = SecretStr("another-secret-of-sufficient-length!")
        try:
            assert hash_identity("046454286") != first
        finally:
            settings.identity_hash_secret = original

    def test_contact_hash_ignores_case_and_whitespace(self):
        assert hash_contact(" Rider@Example.com ") == hash_contact("rider@example.com")

    def test_codes_match(self):
        assert codes_match(hash_code("123456"), hash_code("123456"))
        assert not codes_match(hash_code("123456"), hash_code("123457"))


class TestEncryption:
    """Fernet identity encryption."""

    def test_ciphertext_decrypts_to_identity(self):
        ciphertext = encrypt_identity("046454286")
        assert "046454286" not in ciphertext
        assert decrypt_identity(ciphertext) == "046454286"

    def test_wrong_key_raises_value_error(self):
        ciphertext = encrypt_identity("046454286")
        original = settings.identity_encryption_key
        settings.identity_encryption_key = SecretStr(Fernet.generate_key().decode())
        try:
            with pytest.raises(ValueError, match="could not be decrypted"):
                decrypt_identity(ciphertext)
        finally:
            settings.identity_encryption_key = original


class TestMaskEmail:
    """mask_email."""

    def test_keeps_first_character_and_domain(self):
        assert mask_email("rider@example.com") == "r****@example.com"

    def test_malformed_address_fully_masked(self):
        assert mask_email("not-an-email") == "****"
        assert mask_email("@example.com") == "****"
