import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class KeyCipher:
    """
    Reversible encryption for backend API keys at rest.

    The Fernet key is derived from an arbitrary secret string with SHA-256, so
    any passphrase works as ``ENCRYPTION_KEY``.
    """

    def __init__(self, secret: str):
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            return ""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        """
        Decrypt a stored key.

        Values that are not valid tokens (e.g. keys stored in plain text, or
        encrypted under another secret) are returned unchanged.
        """
        if not token:
            return ""
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError):
            logger.debug("Stored API key is not a valid token; using it as-is")
            return token


def mask_key(key: str) -> str:
    """Mask an API key for display, e.g. ``sk-a...wxyz``."""
    if not key:
        return ""
    return key[:4] + "..." + (key[-4:] if len(key) > 8 else "")
