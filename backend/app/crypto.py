"""
Encryption at rest for shop tokens.

Access and refresh tokens are stored as Fernet ciphertext (``cryptography``),
keyed by ENCRYPTION_KEY. Development without a key stores plaintext and warns
once; production refuses to start without a key.
"""

import logging
from cryptography.fernet import Fernet, InvalidToken
from app.config import get_settings

logger = logging.getLogger(__name__)

_fernet = None
_warned_plaintext = False


def _cipher() -> Fernet | None:
    global _fernet, _warned_plaintext
    if _fernet is not None:
        return _fernet

    settings = get_settings()
    if not settings.encryption_key:
        if settings.is_production:
            raise RuntimeError("ENCRYPTION_KEY must be set in production.")
        if not _warned_plaintext:
            logger.warning("ENCRYPTION_KEY not set — shop tokens are stored in plaintext.")
            _warned_plaintext = True
        return None

    try:
        _fernet = Fernet(settings.encryption_key.encode())
    except ValueError as exc:
        raise RuntimeError(f"Invalid ENCRYPTION_KEY: {exc}") from exc
    return _fernet


def reset_cipher() -> None:
    """Forget the cached key (settings changed)."""
    global _fernet, _warned_plaintext
    _fernet = None
    _warned_plaintext = False


def encrypt_value(plaintext: str | None) -> str | None:
    if plaintext is None:
        return None
    f = _cipher()
    if f is None:
        return plaintext
    return f.encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str | None) -> str | None:
    if ciphertext is None:
        return None
    f = _cipher()
    if f is None:
        return ciphertext
    try:
        return f.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        # Row written before a key was configured
        logger.warning("Stored token is not Fernet ciphertext — using it as-is.")
        return ciphertext
