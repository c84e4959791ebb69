"""
Encryption of stored board credentials (provider API key and token).
Fernet symmetric encryption keyed by ENCRYPTION_KEY. Without a key the values
are stored as given, which keeps local development and tests free of setup.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def _get_fernet():
    from cryptography.fernet import Fernet
    from src.config import get_settings

    key = get_settings().encryption_key
    if not key:
        logger.warning("ENCRYPTION_KEY not configured - board credentials stored unencrypted")
        return None
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_value(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt a credential for storage. Empty values pass through."""
    if not plaintext:
        return plaintext

    fernet = _get_fernet()
    if fernet is None:
        return plaintext

    try:
        return fernet.encrypt(plaintext.encode()).decode()
    except Exception as e:
        logger.error("Credential encryption failed: %s", str(e))
        return plaintext


def decrypt_value(encrypted: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored credential.
    Values that are not Fernet tokens (rows written before a key was set)
    are returned unchanged.
    """
    if not encrypted:
        return encrypted

    fernet = _get_fernet()
    if fernet is None:
        return encrypted

    from cryptography.fernet import InvalidToken
    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        return encrypted


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    """Render a credential for logs and CLI output: '••••abcd'."""
    if not value:
        return ""
    if len(value) <= visible:
        return "•" * len(value)
    return "•" * 4 + value[-visible:]
