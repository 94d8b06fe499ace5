"""Test fixtures and sample data."""
from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from models import (
    ConnectedAccount,
    Consent,
    ConsentStatus,
    Institution,
    SyncStatus,
    utcnow,
)
from services.token_vault import TokenVault

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def create_institution(db: Session, code: str = "mockbank", name: str = "Mock Bank", **kwargs) -> Institution:
    institution = Institution(
        name=name,
        code=code,
        api_base_url=f"https://api.{code}.example",
        authorization_url=f"https://auth.{code}.example/authorize",
        token_url=f"https://auth.{code}.example/oauth/token",
        **kwargs,
    )
    db.add(institution)
    db.commit()
    return institution


def create_authorized_consent(
    db: Session,
    vault: TokenVault,
    institution: Institution,
    user_id: str = USER_ID,
    access_token: str = "access-0",
    refresh_token: str | None = "refresh-0",
    expires_in: timedelta = timedelta(hours=1),
) -> Consent:
    """Create an AUTHORIZED consent holding encrypted tokens.

    A negative ``expires_in`` creates a consent that has already expired.
    """
    now = utcnow()
    consent = Consent(
        user_id=user_id,
        institution_id=institution.id,
        status=ConsentStatus.AUTHORIZED.value,
        scopes="accounts,transactions",
        access_token_cipher=vault.encrypt(access_token),
        refresh_token_cipher=vault.encrypt(refresh_token),
        expires_at=now + expires_in,
        authorized_at=now,
    )
    db.add(consent)
    db.commit()
    return consent


def create_connected_account(
    db: Session,
    consent: Consent,
    external_account_id: str = "ext-acc-1",
    account_type: str = "CHECKING",
    account_number: str | None = "12345-6",
    sync_status: str = SyncStatus.PENDING.value,
    last_synced_at=None,
) -> ConnectedAccount:
    account = ConnectedAccount(
        user_id=consent.user_id,
        consent_id=consent.id,
        institution_id=consent.institution_id,
        external_account_id=external_account_id,
        account_type=account_type,
        account_number=account_number,
        branch="0001",
        account_holder_name="Maria Silva",
        currency="BRL",
        sync_status=sync_status,
        last_synced_at=last_synced_at,
    )
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def token_vault() -> TokenVault:
    return TokenVault([TokenVault.generate_key()])


@pytest.fixture
def institution(db: Session) -> Institution:
    return create_institution(db)


@pytest.fixture
def consent(db: Session, token_vault: TokenVault, institution: Institution) -> Consent:
    return create_authorized_consent(db, token_vault, institution)


@pytest.fixture
def connected_account(db: Session, consent: Consent) -> ConnectedAccount:
    return create_connected_account(db, consent)
