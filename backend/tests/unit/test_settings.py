"""Tests for config.Settings and its KeychainSettingsSource."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from config import KeychainSettingsSource, Settings
from services.credential_manager import CREDENTIAL_KEYS

# Environment variables that would interfere with Settings defaults if
# set in the test runner's shell.  We clear them for isolation.
_ENV_VARS_TO_CLEAR = {
    "DATABASE_URL",
    "ENVIRONMENT",
    "DEBUG",
    "LOG_LEVEL",
    "OPEN_FINANCE_ENABLED",
    "OPEN_FINANCE_DEFAULT_SCOPES",
    *CREDENTIAL_KEYS,
}


def _clean_env():
    """Return a dict suitable for ``os.environ`` patching that removes
    any variables the Settings class reads."""
    return {k: v for k, v in os.environ.items() if k not in _ENV_VARS_TO_CLEAR}


class TestKeychainSettingsSource:
    def test_keychain_value_overrides_default(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: (
                "keychain-secret" if key == "OPEN_FINANCE_CLIENT_SECRET" else None
            )
            s = Settings(_env_file=None)
            assert s.OPEN_FINANCE_CLIENT_SECRET == "keychain-secret"

    def test_init_value_overrides_keychain(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value="keychain-value"),
        ):
            s = Settings(_env_file=None, OPEN_FINANCE_CLIENT_SECRET="init-value")
            assert s.OPEN_FINANCE_CLIENT_SECRET == "init-value"

    def test_keychain_overrides_env_var(self):
        env = _clean_env()
        env["TOKEN_ENCRYPTION_KEYS"] = "from-env"
        with (
            patch.dict(os.environ, env, clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.side_effect = lambda key: (
                "from-keychain" if key == "TOKEN_ENCRYPTION_KEYS" else None
            )
            s = Settings(_env_file=None)
            assert s.TOKEN_ENCRYPTION_KEYS == "from-keychain"

    def test_non_credential_fields_skip_keychain(self):
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential") as mock_get,
        ):
            mock_get.return_value = None
            s = Settings(_env_file=None)
            assert s.DATABASE_URL == "sqlite:///./finlink.db"
            called_keys = {call.args[0] for call in mock_get.call_args_list}
            assert called_keys <= CREDENTIAL_KEYS

    def test_source_is_in_priority_chain(self):
        sources = Settings.settings_customise_sources(
            Settings,
            init_settings=object(),
            env_settings=object(),
            dotenv_settings=object(),
            file_secret_settings=object(),
        )
        assert [type(s) for s in sources].index(KeychainSettingsSource) == 1


class TestSettings:
    def _settings(self, **kwargs) -> Settings:
        with (
            patch.dict(os.environ, _clean_env(), clear=True),
            patch("config.get_credential", return_value=None),
        ):
            return Settings(_env_file=None, **kwargs)

    def test_defaults(self):
        s = self._settings()
        assert s.OPEN_FINANCE_ENABLED is False
        assert s.TOKEN_REFRESH_LOOKAHEAD_MINUTES == 5
        assert s.SYNC_DEFAULT_LOOKBACK_DAYS == 30
        assert s.default_scopes == ["accounts", "transactions", "payments"]
        assert s.token_encryption_keys == []

    def test_comma_separated_lists(self):
        s = self._settings(
            OPEN_FINANCE_DEFAULT_SCOPES=" accounts , ,transactions",
            TOKEN_ENCRYPTION_KEYS="new-key, old-key,",
        )
        assert s.default_scopes == ["accounts", "transactions"]
        assert s.token_encryption_keys == ["new-key", "old-key"]

    def test_literal_newlines_normalised(self):
        s = self._settings(CERT_STORAGE_TOKEN="line1\\nline2")
        assert s.CERT_STORAGE_TOKEN == "line1\nline2"

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError, match="LOG_LEVEL"):
            self._settings(LOG_LEVEL="VERBOS")

    def test_log_level_case_insensitive(self):
        assert self._settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"
