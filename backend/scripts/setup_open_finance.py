#!/usr/bin/env python3
"""Open Finance setup script.

Generates a token encryption key, collects the OAuth client secret and
keystore password, and offers to store them in the OS keychain. Finally
it tries to build the mTLS context from the current configuration so
certificate problems show up before the server starts.

Usage:
    python -m scripts.setup_open_finance
"""

import getpass
import sys

from config import Settings
from services.certificate_provisioner import CertificateProvisioner, CertificateSettings
from services.credential_manager import store_credentials
from services.exceptions import CertificateConfigurationError
from services.token_vault import TokenVault


def _offer_keychain_store(credentials: dict[str, str]) -> None:
    """Prompt the user to store credentials in the OS keychain."""
    answer = input("\nStore these values in the OS keychain? [Y/n] ").strip().lower()
    if answer in ("", "y", "yes"):
        stored = store_credentials(credentials)
        for key in credentials:
            print(f"  Stored {key} in keychain" if key in stored else f"  Failed to store {key}")
    else:
        print("  Skipped keychain storage. Add the values to your .env file instead.")


def _prompt_encryption_keys(current: list[str]) -> str | None:
    if current:
        print(f"{len(current)} token encryption key(s) already configured.")
        answer = input("Rotate in a new primary key? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            return None
        # New key first encrypts; old keys keep decrypting existing tokens
        return ",".join([TokenVault.generate_key(), *current])

    print("No token encryption key configured; generating one.")
    return TokenVault.generate_key()


def _check_certificates(settings: Settings) -> bool:
    provisioner = CertificateProvisioner(CertificateSettings.from_settings(settings))
    try:
        provisioner.get_ssl_context()
    except CertificateConfigurationError as e:
        print(f"Certificate check FAILED: {e}")
        return False
    if provisioner.has_client_identity:
        print(f"Certificate check OK (client identity from {provisioner.source})")
    else:
        print("Certificate check: no client certificate configured (mTLS calls will fail)")
    return True


def main():
    """Interactive Open Finance setup."""
    print("Open Finance Setup")
    print("=" * 50)
    print()

    settings = Settings()
    credentials: dict[str, str] = {}

    keys = _prompt_encryption_keys(settings.token_encryption_keys)
    if keys:
        credentials["TOKEN_ENCRYPTION_KEYS"] = keys

    if not settings.OPEN_FINANCE_CLIENT_SECRET:
        secret = getpass.getpass("OAuth client secret (leave empty to skip): ").strip()
        if secret:
            credentials["OPEN_FINANCE_CLIENT_SECRET"] = secret

    if settings.OPEN_FINANCE_KEYSTORE_PATH and not settings.OPEN_FINANCE_KEYSTORE_PASSWORD:
        password = getpass.getpass("PKCS#12 keystore password: ").strip()
        if password:
            credentials["OPEN_FINANCE_KEYSTORE_PASSWORD"] = password
            settings.OPEN_FINANCE_KEYSTORE_PASSWORD = password

    if credentials:
        _offer_keychain_store(credentials)

    print()
    if not _check_certificates(settings):
        sys.exit(1)


if __name__ == "__main__":
    main()
