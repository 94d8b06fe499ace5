"""Tests for AccountDiscoveryService."""

from datetime import timedelta
from decimal import Decimal

import pytest

from integrations.exceptions import InstitutionAPIError, InstitutionAuthError
from integrations.institution_protocol import AccountBalance, AccountInfo
from integrations.realtime import ACCOUNTS_TOPIC
from models import AccountSyncLog, ConnectedAccount, ConsentStatus, SyncStatus, SyncType, utcnow
from services.exceptions import AccessDeniedError, NotFoundError, StateConflictError
from tests.fixtures import (
    OTHER_USER_ID,
    USER_ID,
    create_authorized_consent,
    create_connected_account,
    create_institution,
)


class TestDiscoverAccounts:
    def test_creates_accounts(self, db, account_service, consent, notifier):
        accounts = account_service.discover_accounts(db, consent.id, USER_ID)
        db.commit()

        assert len(accounts) == 2
        stored = db.query(ConnectedAccount).order_by(ConnectedAccount.external_account_id).all()
        assert [a.external_account_id for a in stored] == ["ext-acc-1", "ext-acc-2"]
        first = stored[0]
        assert first.user_id == USER_ID
        assert first.consent_id == consent.id
        assert first.institution_id == consent.institution_id
        assert first.account_type == "CHECKING"
        assert first.account_number == "12345-6"
        assert first.branch == "0001"
        assert first.account_holder_name == "Maria Silva"
        assert first.sync_status == SyncStatus.PENDING.value
        assert len(notifier.broadcasts) == 2
        assert notifier.broadcasts[0][0] == ACCOUNTS_TOPIC

    def test_idempotent(self, db, account_service, consent, notifier):
        account_service.discover_accounts(db, consent.id, USER_ID)
        db.commit()
        before = {
            a.id: (a.account_type, a.account_number, a.updated_at)
            for a in db.query(ConnectedAccount).all()
        }
        broadcasts = len(notifier.broadcasts)

        for _ in range(3):
            account_service.discover_accounts(db, consent.id, USER_ID)
            db.commit()

        after = {
            a.id: (a.account_type, a.account_number, a.updated_at)
            for a in db.query(ConnectedAccount).all()
        }
        assert after == before
        assert len(notifier.broadcasts) == broadcasts

    def test_updates_changed_fields(self, db, account_service, consent, institution_client):
        account_service.discover_accounts(db, consent.id, USER_ID)
        db.commit()

        institution_client.accounts = [
            AccountInfo(
                external_id="ext-acc-1",
                account_type="CHECKING",
                account_number="12345-6",
                branch="0002",
                holder_name="Maria S. Silva",
            )
        ]
        account_service.discover_accounts(db, consent.id, USER_ID)
        db.commit()

        account = db.query(ConnectedAccount).filter_by(external_account_id="ext-acc-1").one()
        assert account.branch == "0002"
        assert account.account_holder_name == "Maria S. Silva"
        assert db.query(ConnectedAccount).count() == 2

    def test_missing_remote_fields_do_not_erase_local_values(
        self, db, account_service, consent, institution_client
    ):
        account_service.discover_accounts(db, consent.id, USER_ID)
        db.commit()
        institution_client.accounts = [AccountInfo(external_id="ext-acc-1")]
        account_service.discover_accounts(db, consent.id, USER_ID)
        db.commit()

        account = db.query(ConnectedAccount).filter_by(external_account_id="ext-acc-1").one()
        assert account.account_number == "12345-6"

    def test_reconsent_repoints_accounts(
        self, db, account_service, consent, consent_manager, token_vault
    ):
        account_service.discover_accounts(db, consent.id, USER_ID)
        db.commit()
        consent_manager.revoke_consent(db, consent.id, USER_ID)
        db.commit()
        new_consent = create_authorized_consent(db, token_vault, consent.institution)

        account_service.discover_accounts(db, new_consent.id, USER_ID)
        db.commit()

        accounts = db.query(ConnectedAccount).all()
        assert len(accounts) == 2
        assert {a.consent_id for a in accounts} == {new_consent.id}

    def test_account_of_other_user_not_hijacked(
        self, db, account_service, consent, token_vault
    ):
        account_service.discover_accounts(db, consent.id, USER_ID)
        db.commit()
        other = create_authorized_consent(
            db, token_vault, consent.institution, user_id=OTHER_USER_ID
        )

        result = account_service.discover_accounts(db, other.id, OTHER_USER_ID)

        assert result == []
        assert {a.user_id for a in db.query(ConnectedAccount).all()} == {USER_ID}

    def test_consent_of_other_user_denied(self, db, account_service, consent):
        with pytest.raises(AccessDeniedError):
            account_service.discover_accounts(db, consent.id, OTHER_USER_ID)

    def test_unknown_consent(self, db, account_service):
        with pytest.raises(NotFoundError):
            account_service.discover_accounts(db, "missing", USER_ID)

    def test_inactive_consent(self, db, account_service, consent):
        consent.status = ConsentStatus.REVOKED.value
        consent.revoked_at = utcnow()
        db.commit()
        with pytest.raises(StateConflictError):
            account_service.discover_accounts(db, consent.id, USER_ID)

    def test_remote_failure_propagates(self, db, account_service, consent, institution_client):
        institution_client.should_fail = True
        institution_client.failure_type = "auth"
        with pytest.raises(InstitutionAuthError):
            account_service.discover_accounts(db, consent.id, USER_ID)
        assert db.query(ConnectedAccount).count() == 0


class TestAccountLookups:
    def test_get_account_checks_owner(self, db, account_service, connected_account):
        assert account_service.get_account(db, connected_account.id, USER_ID) is connected_account
        with pytest.raises(AccessDeniedError):
            account_service.get_account(db, connected_account.id, OTHER_USER_ID)
        with pytest.raises(NotFoundError):
            account_service.get_account(db, "missing", USER_ID)

    def test_list_user_accounts(self, db, account_service, connected_account, token_vault):
        other_institution = create_institution(db, code="otherbank", name="Other Bank")
        other_consent = create_authorized_consent(
            db, token_vault, other_institution, user_id=OTHER_USER_ID
        )
        create_connected_account(db, other_consent, external_account_id="foreign")

        accounts = account_service.list_user_accounts(db, USER_ID)
        assert [a.id for a in accounts] == [connected_account.id]


class TestSyncBalance:
    def test_updates_balance(
        self, db, account_service, connected_account, institution_client, telemetry
    ):
        institution_client.balances["ext-acc-1"] = AccountBalance(
            balance=Decimal("1523.45"), currency="BRL"
        )
        result = account_service.sync_balance(db, connected_account.id, USER_ID)
        db.commit()

        assert result.balance == Decimal("1523.45")
        assert result.currency == "BRL"
        assert connected_account.balance == Decimal("1523.45")
        assert connected_account.balance_updated_at == result.synced_at
        assert telemetry.events == ["sync_success"]

        log = db.query(AccountSyncLog).filter_by(account_id=connected_account.id).one()
        assert log.sync_type == SyncType.BALANCE.value
        assert log.status == SyncStatus.SUCCESS.value
        assert log.completed_at is not None

    def test_leaves_transaction_sync_state_alone(
        self, db, account_service, consent, institution_client
    ):
        last_sync = utcnow() - timedelta(days=3)
        account = create_connected_account(
            db, consent, sync_status=SyncStatus.FAILED.value, last_synced_at=last_sync
        )
        institution_client.balances["ext-acc-1"] = AccountBalance(balance=Decimal("5"))

        account_service.sync_balance(db, account.id, USER_ID)
        db.commit()

        db.refresh(account)
        assert account.balance == Decimal("5")
        assert account.sync_status == SyncStatus.FAILED.value
        assert account.last_synced_at == last_sync

    def test_failure_logged_without_touching_status(
        self, db, account_service, connected_account, institution_client, telemetry
    ):
        institution_client.failing_accounts = {"ext-acc-1"}
        with pytest.raises(InstitutionAPIError):
            account_service.sync_balance(db, connected_account.id, USER_ID)
        db.commit()

        assert connected_account.sync_status == SyncStatus.PENDING.value
        assert connected_account.balance_updated_at is None
        assert telemetry.events == ["sync_failure"]
        log = db.query(AccountSyncLog).filter_by(account_id=connected_account.id).one()
        assert log.sync_type == SyncType.BALANCE.value
        assert log.status == SyncStatus.FAILED.value
        assert "Mock institution error" in log.error_message

    def test_disabled_account_rejected(self, db, account_service, connected_account):
        connected_account.sync_status = SyncStatus.DISABLED.value
        db.commit()
        with pytest.raises(StateConflictError):
            account_service.sync_balance(db, connected_account.id, USER_ID)

    def test_expired_consent_rejected(self, db, account_service, consent, connected_account):
        consent.expires_at = utcnow() - timedelta(minutes=1)
        db.commit()
        with pytest.raises(StateConflictError):
            account_service.sync_balance(db, connected_account.id, USER_ID)


class TestSyncAllBalances:
    def test_failure_isolated_per_account(
        self, db, account_service, consent, institution_client
    ):
        healthy = create_connected_account(db, consent, external_account_id="ext-ok")
        broken = create_connected_account(
            db, consent, external_account_id="ext-broken", sync_status=SyncStatus.SUCCESS.value
        )
        institution_client.balances["ext-ok"] = AccountBalance(balance=Decimal("10"))
        institution_client.failing_accounts = {"ext-broken"}

        results = account_service.sync_all_balances(db)

        assert results[healthy.id] == SyncStatus.SUCCESS.value
        assert results[broken.id] != SyncStatus.SUCCESS.value
        db.refresh(healthy)
        db.refresh(broken)
        assert healthy.balance == Decimal("10")
        assert healthy.balance_updated_at is not None
        assert healthy.sync_status == SyncStatus.PENDING.value
        assert broken.sync_status == SyncStatus.SUCCESS.value

        failed_log = db.query(AccountSyncLog).filter_by(account_id=broken.id).one()
        assert failed_log.sync_type == SyncType.BALANCE.value
        assert failed_log.status == SyncStatus.FAILED.value

    def test_skips_disabled_and_inactive(self, db, account_service, consent, token_vault):
        disabled = create_connected_account(
            db, consent, external_account_id="ext-off", sync_status=SyncStatus.DISABLED.value
        )
        other_institution = create_institution(db, code="otherbank", name="Other Bank")
        expired = create_authorized_consent(
            db, token_vault, other_institution, expires_in=timedelta(hours=-1)
        )
        stale = create_connected_account(db, expired, external_account_id="ext-stale")

        results = account_service.sync_all_balances(db)

        assert disabled.id not in results
        assert stale.id not in results


class TestDisconnectAccount:
    def test_disables_account(self, db, account_service, connected_account, notifier):
        account = account_service.disconnect_account(db, connected_account.id, USER_ID)
        db.commit()
        assert account.sync_status == SyncStatus.DISABLED.value
        assert db.get(ConnectedAccount, connected_account.id) is not None
        assert notifier.broadcasts[-1][2]["sync_status"] == SyncStatus.DISABLED.value

    def test_other_user_denied(self, db, account_service, connected_account):
        with pytest.raises(AccessDeniedError):
            account_service.disconnect_account(db, connected_account.id, OTHER_USER_ID)
