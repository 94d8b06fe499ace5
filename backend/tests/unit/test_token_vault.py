"""Tests for services.token_vault."""

import pytest
from cryptography.fernet import Fernet

from services.token_vault import TokenVault


class TestTokenVaultConstruction:
    def test_requires_a_key(self):
        with pytest.raises(ValueError, match="No token encryption key"):
            TokenVault([])

    def test_ephemeral_key_when_allowed(self, caplog):
        vault = TokenVault([], allow_ephemeral=True)
        assert vault.key_count == 1
        assert vault.decrypt(vault.encrypt("abc")) == "abc"
        assert "ephemeral" in caplog.text

    def test_malformed_key_rejected_without_echoing_it(self):
        with pytest.raises(ValueError) as exc_info:
            TokenVault(["not-a-fernet-key"])
        assert "#1" in str(exc_info.value)
        assert "not-a-fernet-key" not in str(exc_info.value)

    def test_generate_key_is_usable(self):
        key = TokenVault.generate_key()
        assert isinstance(key, str)
        Fernet(key)  # does not raise


class TestEncryptDecrypt:
    def test_round_trip(self, token_vault):
        cipher = token_vault.encrypt("secret-access-token")
        assert cipher != "secret-access-token"
        assert "secret-access-token" not in cipher
        assert token_vault.decrypt(cipher) == "secret-access-token"

    def test_unicode_round_trip(self, token_vault):
        assert token_vault.decrypt(token_vault.encrypt("tökén-✓")) == "tökén-✓"

    def test_ciphertexts_are_randomized(self, token_vault):
        assert token_vault.encrypt("same") != token_vault.encrypt("same")

    def test_empty_input_encrypts_to_none(self, token_vault):
        assert token_vault.encrypt("") is None
        assert token_vault.encrypt(None) is None

    def test_empty_input_decrypts_to_none(self, token_vault):
        assert token_vault.decrypt("") is None
        assert token_vault.decrypt(None) is None

    def test_garbage_decrypts_to_none(self, token_vault, caplog):
        assert token_vault.decrypt("definitely-not-ciphertext") is None
        assert "definitely-not-ciphertext" not in caplog.text

    def test_tampered_ciphertext_decrypts_to_none(self, token_vault):
        cipher = token_vault.encrypt("value")
        tampered = cipher[:-4] + ("AAAA" if not cipher.endswith("AAAA") else "BBBB")
        assert token_vault.decrypt(tampered) is None

    def test_foreign_key_ciphertext_decrypts_to_none(self, token_vault):
        other = TokenVault([TokenVault.generate_key()])
        assert token_vault.decrypt(other.encrypt("value")) is None


class TestKeyRotation:
    def test_old_ciphertext_readable_after_new_key_added(self):
        old_key = TokenVault.generate_key()
        new_key = TokenVault.generate_key()
        old_vault = TokenVault([old_key])
        cipher = old_vault.encrypt("token")

        rotated_vault = TokenVault([new_key, old_key])
        assert rotated_vault.key_count == 2
        assert rotated_vault.decrypt(cipher) == "token"

    def test_new_ciphertext_uses_newest_key(self):
        old_key = TokenVault.generate_key()
        new_key = TokenVault.generate_key()
        cipher = TokenVault([new_key, old_key]).encrypt("token")

        assert TokenVault([new_key]).decrypt(cipher) == "token"
        assert TokenVault([old_key]).decrypt(cipher) is None

    def test_rotate_reencrypts_under_newest_key(self):
        old_key = TokenVault.generate_key()
        new_key = TokenVault.generate_key()
        cipher = TokenVault([old_key]).encrypt("token")

        rotated = TokenVault([new_key, old_key]).rotate(cipher)
        assert TokenVault([new_key]).decrypt(rotated) == "token"

    def test_rotate_unreadable_returns_none(self, token_vault):
        assert token_vault.rotate("garbage") is None
        assert token_vault.rotate(None) is None
