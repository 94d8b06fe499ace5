"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load secret fields from the OS keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./finlink.db"

    # Open Finance capability flag; when off the aggregation core is never built
    OPEN_FINANCE_ENABLED: bool = False
    OPEN_FINANCE_SYNC_ENABLED: bool = True

    # OAuth client registration
    OPEN_FINANCE_CLIENT_ID: str = ""
    OPEN_FINANCE_CLIENT_SECRET: str = ""
    OPEN_FINANCE_REDIRECT_URI: str = "http://localhost:8000/api/open-finance/consents/callback"
    OPEN_FINANCE_DEFAULT_SCOPES: str = "accounts,transactions,payments"

    # Transport / pagination
    OPEN_FINANCE_HTTP_TIMEOUT_SECONDS: float = 30.0
    OPEN_FINANCE_PAGE_SIZE: int = 100

    # Sync policy
    TOKEN_REFRESH_LOOKAHEAD_MINUTES: int = 5
    SYNC_DEFAULT_LOOKBACK_DAYS: int = 30
    SYNC_INTERVAL_HOURS: int = 24

    # Comma-separated Fernet keys, newest first
    TOKEN_ENCRYPTION_KEYS: str = ""
    ALLOW_EPHEMERAL_TOKEN_KEY: bool = False

    # mTLS material: blob storage > PKCS#12 keystore > PEM files
    CERT_STORAGE_ENABLED: bool = False
    CERT_STORAGE_URL: str = ""
    CERT_STORAGE_BUCKET: str = "certificates"
    CERT_STORAGE_TOKEN: str = ""
    OPEN_FINANCE_KEYSTORE_PATH: str = ""
    OPEN_FINANCE_KEYSTORE_PASSWORD: str = ""
    OPEN_FINANCE_CLIENT_CERT_PATH: str = ""
    OPEN_FINANCE_PRIVATE_KEY_PATH: str = ""
    OPEN_FINANCE_CA_CERT_PATH: str = ""

    @field_validator("OPEN_FINANCE_CLIENT_SECRET", "CERT_STORAGE_TOKEN", mode="before")
    @classmethod
    def normalize_pem_newlines(cls, v: str) -> str:
        """Convert literal ``\\n`` sequences to real newlines in pasted secrets.

        When set via shell ``export``, ``\\n`` stays as a literal two-char
        sequence. python-dotenv already converts ``\\n`` inside double-quoted
        ``.env`` values, so this handles the shell-export case.
        """
        if isinstance(v, str) and "\\n" in v:
            v = v.replace("\\n", "\n")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    @property
    def default_scopes(self) -> list[str]:
        return [s.strip() for s in self.OPEN_FINANCE_DEFAULT_SCOPES.split(",") if s.strip()]

    @property
    def token_encryption_keys(self) -> list[str]:
        return [k.strip() for k in self.TOKEN_ENCRYPTION_KEYS.split(",") if k.strip()]

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
