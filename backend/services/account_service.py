"""Account discovery and account-level operations for connected accounts."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from integrations.institution_protocol import AccountInfo, InstitutionApiClient
from integrations.realtime import ACCOUNTS_TOPIC, RealtimeNotifier, SafeNotifier
from integrations.telemetry import SafeTelemetry, Telemetry
from models import AccountSyncLog, ConnectedAccount, Consent, SyncStatus, SyncType, utcnow
from services.consent_service import ConsentLifecycleManager
from services.exceptions import AccessDeniedError, NotFoundError, StateConflictError

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 1000

# Fields refreshed from the institution on every discovery
_MUTABLE_FIELDS = (
    ("account_type", "account_type"),
    ("account_number", "account_number"),
    ("branch", "branch"),
    ("account_holder_name", "holder_name"),
    ("currency", "currency"),
)


@dataclass
class AccountBalanceResult:
    account_id: str
    balance: Decimal
    currency: str
    synced_at: datetime


def account_event(account: ConnectedAccount) -> dict:
    return {
        "id": account.id,
        "consent_id": account.consent_id,
        "external_account_id": account.external_account_id,
        "account_type": account.account_type,
        "sync_status": account.sync_status,
    }


class AccountDiscoveryService:
    """Lists remote accounts under a consent and keeps local rows in step.

    Methods flush; the caller commits.
    """

    def __init__(
        self,
        client: InstitutionApiClient,
        consent_manager: ConsentLifecycleManager,
        telemetry: Telemetry | None = None,
        notifier: RealtimeNotifier | None = None,
    ):
        self._client = client
        self._consents = consent_manager
        self._telemetry = telemetry if isinstance(telemetry, SafeTelemetry) else SafeTelemetry(telemetry)
        self._notifier = notifier if isinstance(notifier, SafeNotifier) else SafeNotifier(notifier)

    def discover_accounts(self, db: Session, consent_id: str, user_id: str) -> list[ConnectedAccount]:
        """List the consent's remote accounts and upsert them locally.

        Idempotent: an unchanged remote account set produces no new rows
        and no field changes.

        Raises:
            NotFoundError: Consent missing.
            AccessDeniedError: Consent belongs to another user.
            StateConflictError: Consent not active.
            InstitutionError: The account listing failed.
        """
        consent = db.get(Consent, consent_id)
        if consent is None:
            raise NotFoundError(f"Consent {consent_id} not found")
        if consent.user_id != user_id:
            raise AccessDeniedError(f"Consent {consent_id} does not belong to the requesting user")
        if not consent.is_active():
            raise StateConflictError(f"Consent {consent_id} is not active")

        access_token = self._consents.get_access_token(db, consent_id)
        remote_accounts = self._client.list_accounts(consent.institution, access_token)
        return self._upsert_accounts(db, consent, remote_accounts)

    def _upsert_accounts(
        self, db: Session, consent: Consent, remote_accounts: list[AccountInfo]
    ) -> list[ConnectedAccount]:
        """Upsert by (institution, external account id).

        Returns:
            List of upserted ConnectedAccount records (not yet committed)
        """
        upserted = []
        new_count = 0
        updated_count = 0
        for remote in remote_accounts:
            existing = (
                db.query(ConnectedAccount)
                .filter_by(
                    institution_id=consent.institution_id,
                    external_account_id=remote.external_id,
                )
                .first()
            )

            if existing:
                if existing.user_id != consent.user_id:
                    logger.warning(
                        "Account %s at institution %s already linked to another user; skipping",
                        existing.id, consent.institution_id,
                    )
                    continue
                changed = False
                for column, attr in _MUTABLE_FIELDS:
                    value = getattr(remote, attr)
                    if value is not None and getattr(existing, column) != value:
                        setattr(existing, column, value)
                        changed = True
                if existing.consent_id != consent.id:
                    existing.consent_id = consent.id
                    changed = True
                if changed:
                    updated_count += 1
                upserted.append(existing)
            else:
                account = ConnectedAccount(
                    user_id=consent.user_id,
                    consent_id=consent.id,
                    institution_id=consent.institution_id,
                    external_account_id=remote.external_id,
                    account_type=remote.account_type,
                    account_number=remote.account_number,
                    branch=remote.branch,
                    account_holder_name=remote.holder_name,
                    currency=remote.currency or "BRL",
                    sync_status=SyncStatus.PENDING.value,
                )
                db.add(account)
                upserted.append(account)
                new_count += 1

        db.flush()
        logger.info(
            "Consent %s: accounts upserted (%d new, %d updated, %d unchanged)",
            consent.id, new_count, updated_count, len(upserted) - new_count - updated_count,
        )
        if new_count or updated_count:
            for account in upserted:
                self._notifier.broadcast_to_user(
                    ACCOUNTS_TOPIC, consent.user_id, account_event(account)
                )
        return upserted

    # --- account-level operations ---

    def get_account(self, db: Session, account_id: str, user_id: str) -> ConnectedAccount:
        account = db.get(ConnectedAccount, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        if account.user_id != user_id:
            raise AccessDeniedError(f"Account {account_id} does not belong to the requesting user")
        return account

    def list_user_accounts(self, db: Session, user_id: str) -> list[ConnectedAccount]:
        return (
            db.query(ConnectedAccount)
            .filter_by(user_id=user_id)
            .order_by(ConnectedAccount.created_at)
            .all()
        )

    def sync_balance(self, db: Session, account_id: str, user_id: str) -> AccountBalanceResult:
        """Fetch and store the current balance of one account.

        A balance refresh only touches ``balance``, ``currency`` and
        ``balance_updated_at``. ``sync_status`` and ``last_synced_at`` belong
        to transaction sync and are left alone. Each attempt leaves a BALANCE
        sync log; on a remote failure the FAILED log is flushed before the
        error propagates.
        """
        account = self.get_account(db, account_id, user_id)
        if not account.is_syncable():
            raise StateConflictError(f"Account {account_id} is not syncable")
        return self._sync_balance(db, account)

    def _sync_balance(self, db: Session, account: ConnectedAccount) -> AccountBalanceResult:
        started = utcnow()
        try:
            access_token = self._consents.get_access_token(db, account.consent_id)
            remote = self._client.get_balance(
                account.institution, access_token, account.external_account_id
            )
        except Exception as e:
            db.add(_balance_log(account.id, started, error=e))
            db.flush()
            self._telemetry.record_sync_failure()
            raise

        now = utcnow()
        account.balance = remote.balance
        account.currency = remote.currency or account.currency
        account.balance_updated_at = now
        db.add(_balance_log(account.id, started))
        db.flush()
        self._telemetry.record_sync_success()
        self._notifier.broadcast_to_user(ACCOUNTS_TOPIC, account.user_id, account_event(account))
        logger.info("Account %s: balance updated", account.id)
        return AccountBalanceResult(
            account_id=account.id, balance=remote.balance, currency=account.currency, synced_at=now
        )

    def sync_all_balances(self, db: Session) -> dict[str, str]:
        """Refresh balances for every syncable account; commits per account.

        Returns:
            Mapping of account id to ``"SUCCESS"`` or the error message.
        """
        results: dict[str, str] = {}
        accounts = (
            db.query(ConnectedAccount)
            .filter(ConnectedAccount.sync_status != SyncStatus.DISABLED.value)
            .all()
        )
        for account in accounts:
            if not account.is_syncable():
                continue
            started = utcnow()
            try:
                self._sync_balance(db, account)
                db.commit()
                results[account.id] = SyncStatus.SUCCESS.value
            except Exception as e:
                logger.warning("Balance sync failed for account %s: %s", account.id, e)
                results[account.id] = str(e)
                self._commit_failure(db, account.id, started, e)
        logger.info(
            "Balance sweep: %d accounts, %d failed",
            len(results), sum(1 for v in results.values() if v != SyncStatus.SUCCESS.value),
        )
        return results

    @staticmethod
    def _commit_failure(db: Session, account_id: str, started: datetime, error: Exception) -> None:
        """Persist a FAILED balance log after the account's unit of work was abandoned."""
        try:
            db.rollback()
            db.add(_balance_log(account_id, started, error=error))
            db.commit()
        except Exception:
            db.rollback()
            logger.error("Could not record balance failure for account %s", account_id, exc_info=True)

    def disconnect_account(self, db: Session, account_id: str, user_id: str) -> ConnectedAccount:
        """Retire an account: it stays on record as DISABLED."""
        account = self.get_account(db, account_id, user_id)
        account.sync_status = SyncStatus.DISABLED.value
        db.flush()
        logger.info("Account %s disconnected", account.id)
        self._notifier.broadcast_to_user(ACCOUNTS_TOPIC, account.user_id, account_event(account))
        return account


def _balance_log(
    account_id: str, started: datetime, error: Exception | None = None
) -> AccountSyncLog:
    sync_log = AccountSyncLog(
        account_id=account_id,
        sync_type=SyncType.BALANCE.value,
        status=SyncStatus.SUCCESS.value,
        synced_at=started,
        completed_at=utcnow(),
    )
    if error is not None:
        sync_log.status = SyncStatus.FAILED.value
        sync_log.error_message = (str(error) or type(error).__name__)[:_MAX_ERROR_LENGTH]
    return sync_log
