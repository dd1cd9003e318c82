"""Symmetric encryption of tenant credentials at rest."""

from typing import Optional

from cryptography.fernet import Fernet

from wms_sync.config import settings


def get_fernet(key: Optional[str] = None) -> Fernet:
    """Returns a Fernet instance for the given key, defaulting to settings."""
    return Fernet((key or settings.encryption_key).encode("utf-8"))


def encrypt_secret(value: Optional[str], key: Optional[str] = None) -> Optional[str]:
    """Encrypts a credential; None stays None."""
    if value is None:
        return None
    return get_fernet(key).encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(value: Optional[str], key: Optional[str] = None) -> Optional[str]:
    """Decrypts a stored credential. Raises cryptography.fernet.InvalidToken on a key mismatch."""
    if value is None:
        return None
    return get_fernet(key).decrypt(value.encode("utf-8")).decode("utf-8")
