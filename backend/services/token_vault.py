"""At-rest encryption for OAuth access and refresh tokens.

Uses Fernet (AES-128-CBC with an HMAC-SHA256 tag) from ``cryptography``.
Keys are supplied by configuration (keychain or environment) and are
never stored next to the ciphertext.

Key rotation: several keys may be configured, newest first. The first
key encrypts; every key is tried on decrypt (``MultiFernet``), so
ciphertext written under a retired key stays readable until
:meth:`TokenVault.rotate` re-encrypts it.
"""

import logging
from collections.abc import Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class TokenVault:
    """Encrypts and decrypts tokens with a process-wide key set."""

    def __init__(self, keys: Sequence[str | bytes], allow_ephemeral: bool = False):
        """Build the vault.

        Args:
            keys: Fernet keys (urlsafe base64, 32 bytes), newest first.
            allow_ephemeral: When no key is configured, generate a
                throwaway key instead of raising. Tokens encrypted under it
                are unreadable after a restart; intended for dev and tests.

        Raises:
            ValueError: If no key is configured (and ephemeral keys are not
                allowed) or a configured key is malformed.
        """
        if not keys:
            if not allow_ephemeral:
                raise ValueError(
                    "No token encryption key configured; set TOKEN_ENCRYPTION_KEYS "
                    "(run 'python -m scripts.setup_open_finance' to generate one)"
                )
            logger.warning(
                "No token encryption key configured; using an ephemeral key. "
                "Stored tokens will not survive a restart."
            )
            keys = [Fernet.generate_key()]

        fernets = []
        for index, key in enumerate(keys):
            try:
                fernets.append(Fernet(key))
            except (ValueError, TypeError) as exc:
                # Never echo the key itself
                raise ValueError(f"Token encryption key #{index + 1} is malformed") from exc

        self._fernet = MultiFernet(fernets)
        self._key_count = len(fernets)

    @staticmethod
    def generate_key() -> str:
        """Return a fresh Fernet key as text."""
        return Fernet.generate_key().decode()

    @property
    def key_count(self) -> int:
        return self._key_count

    def encrypt(self, plaintext: str | None) -> str | None:
        """Encrypt a token for storage. Empty input yields ``None``."""
        if not plaintext:
            return None
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str | None) -> str | None:
        """Decrypt a stored token.

        Never raises: malformed, tampered or foreign-key ciphertext returns
        ``None`` so the owning consent degrades to "needs re-authorization".
        """
        if not ciphertext:
            return None
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError, TypeError):
            logger.warning("Token decryption failed (%d chars of ciphertext)", len(ciphertext))
            return None

    def rotate(self, ciphertext: str | None) -> str | None:
        """Re-encrypt ciphertext under the newest key.

        Returns ``None`` when the input cannot be decrypted with any
        configured key.
        """
        if not ciphertext:
            return None
        try:
            return self._fernet.rotate(ciphertext.encode("ascii")).decode("ascii")
        except (InvalidToken, UnicodeError, ValueError, TypeError):
            logger.warning("Token rotation failed: ciphertext unreadable with configured keys")
            return None
