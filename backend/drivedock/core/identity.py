"""Applicant identity and contact hashing helpers.

The applicant's government identity number is stored twice: as a keyed
HMAC-SHA256 hash for lookups, and as Fernet ciphertext that is only
decrypted when a document needs the raw value. Verification codes and
contact emails are hashed the same way so they can be compared without
storing the plain values.
"""

import hashlib
import hmac
import re

from cryptography.fernet import Fernet, InvalidToken

from drivedock.core.config import settings
from drivedock.core.errors import ValidationError

_IDENTITY_PATTERN = re.compile(r"^\d{9}$")
_IDENTITY_SEPARATORS = re.compile(r"[\s-]")


def normalize_identity(value: str) -> str:
    """Strip separators from an identity number and check its shape.

    Args:
        value: Identity number as typed by the applicant ("046 454 286").

    Returns:
        Nine-digit string.

    Raises:
        ValidationError: If the value is not nine digits after normalization.
    """
    normalized = _IDENTITY_SEPARATORS.sub("", value or "")
    if not _IDENTITY_PATTERN.match(normalized):
        raise ValidationError("Identity number must be 9 digits")
    return normalized


def _keyed_hash(value: str) -> str:
    key = settings.identity_hash_secret.get_secret_value().encode()
    return hmac.new(key, value.encode(), hashlib.sha256).hexdigest()


def hash_identity(normalized_identity: str) -> str:
    """Return the lookup hash for a normalized identity number."""
    return _keyed_hash(normalized_identity)


def hash_contact(email: str) -> str:
    """Return the hash that binds a verification code to a contact address."""
    return _keyed_hash(email.strip().lower())


def hash_code(code: str) -> str:
    """Return the stored form of a verification code."""
    return _keyed_hash(code)


def codes_match(code_hash: str, candidate_hash: str) -> bool:
    """Constant-time comparison of two code hashes."""
    return hmac.compare_digest(code_hash, candidate_hash)


def _fernet() -> Fernet:
    return Fernet(settings.identity_encryption_key.get_secret_value().encode())


def encrypt_identity(normalized_identity: str) -> str:
    """Encrypt an identity number for storage."""
    return _fernet().encrypt(normalized_identity.encode()).decode()


def decrypt_identity(ciphertext: str) -> str:
    """Decrypt a stored identity number.

    Raises:
        ValueError: If the ciphertext was not produced with the current key.
    """
    try:
        return _fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("Identity ciphertext could not be decrypted") from exc


def mask_email(email: str) -> str:
    """Mask an email for display, keeping the first character and domain.

    "rider@gmail.com" becomes "r****@gmail.com".
    """
    local, sep, domain = email.partition("@")
    if not sep or not local:
        return "****"
    return f"{local[0]}****@{domain}"
