"""Security utility functions for credential management."""

import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from dataviewer.core.exceptions import ConfigurationError
from dataviewer.core.logging import get_logger

logger = get_logger(__name__)

ENCRYPTED_PREFIX = "enc:"


def encrypt_value(value: str, key: bytes) -> str:
    """
    Encrypt a string value.

    Args:
        value: Value to encrypt
        key: Encryption key

    Returns:
        Encrypted value (base64 encoded)
    """
    try:
        f = Fernet(key)
        encrypted = f.encrypt(value.encode())
        return base64.urlsafe_b64encode(encrypted).decode()
    except Exception as e:
        logger.error(f"Encryption failed: {str(e)}")
        raise


def decrypt_value(encrypted_value: str, key: bytes) -> str:
    """
    Decrypt a string value.

    Args:
        encrypted_value: Encrypted value (base64 encoded)
        key: Encryption key

    Returns:
        Decrypted value
    """
    try:
        f = Fernet(key)
        encrypted_bytes = base64.urlsafe_b64decode(encrypted_value.encode())
        decrypted = f.decrypt(encrypted_bytes)
        return decrypted.decode()
    except Exception as e:
        logger.error(f"Decryption failed: {str(e)}")
        raise


def resolve_secret(value: str, key: Optional[str]) -> str:
    """
    Return a configuration value, decrypting it if it is marked ``enc:``.

    Args:
        value: Plain or ``enc:``-prefixed encrypted value
        key: Fernet key used for encrypted values

    Returns:
        Plain value

    Raises:
        ConfigurationError: If the value is encrypted and cannot be decrypted
    """
    if not value.startswith(ENCRYPTED_PREFIX):
        return value

    if not key:
        raise ConfigurationError(
            "Encrypted value found but no encryption key is configured",
            config_key="security.encryption_key",
        )

    try:
        return decrypt_value(value[len(ENCRYPTED_PREFIX):], key.encode())
    except (InvalidToken, ValueError) as e:
        raise ConfigurationError(
            "Failed to decrypt configured value",
            config_key="security.encryption_key",
        ) from e
