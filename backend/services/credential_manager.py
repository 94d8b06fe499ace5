"""Keyring-backed storage for Open Finance secrets.

The OAuth client secret, token encryption keys, keystore password and
storage token can live in the OS keychain instead of ``.env``; the
settings loader consults the keychain first. ``keyring`` is imported
lazily so a host without it simply falls back to the environment.
"""

import logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "finlink"

CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "OPEN_FINANCE_CLIENT_SECRET",
        "TOKEN_ENCRYPTION_KEYS",
        "OPEN_FINANCE_KEYSTORE_PASSWORD",
        "CERT_STORAGE_TOKEN",
    }
)


def _keyring():
    """Return the ``keyring`` module, or ``None`` when it is not installed."""
    try:
        import keyring
    except ImportError:
        return None
    return keyring


def get_credential(key: str) -> str | None:
    """Retrieve a credential from the keychain.

    Returns:
        The stored value, or ``None`` if absent, unreadable or keyring is
        unavailable.
    """
    backend = _keyring()
    if backend is None:
        return None
    try:
        return backend.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Keychain lookup failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Store one credential. Only names in :data:`CREDENTIAL_KEYS` are accepted."""
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to store non-secret setting %s in keychain", key)
        return False
    if not value or not value.strip():
        logger.warning("Refusing to store empty value for %s", key)
        return False

    backend = _keyring()
    if backend is None:
        logger.warning("keyring is not installed, cannot store %s", key)
        return False
    try:
        backend.set_password(SERVICE_NAME, key, value)
    except Exception as e:
        # Never log the value
        logger.warning("Failed to store %s in keychain: %s", key, type(e).__name__)
        return False
    logger.info("Stored %s in keychain", key)
    return True


def store_credentials(values: dict[str, str]) -> list[str]:
    """Store several credentials; returns the names that were stored."""
    return [key for key, value in values.items() if set_credential(key, value)]


def delete_credential(key: str) -> bool:
    """Remove a credential from the keychain."""
    if key not in CREDENTIAL_KEYS:
        logger.warning("Refusing to delete non-secret setting %s from keychain", key)
        return False

    backend = _keyring()
    if backend is None:
        return False
    try:
        backend.delete_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("Failed to delete %s from keychain", key, exc_info=True)
        return False
    logger.info("Deleted %s from keychain", key)
    return True


def list_credentials() -> list[str]:
    """Names (never values) of the credentials present in the keychain."""
    return [key for key in sorted(CREDENTIAL_KEYS) if get_credential(key) is not None]
