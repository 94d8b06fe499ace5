"""Transaction synchronization - pulls remote transactions into the ledger.

One ``sync_transactions`` call:

1. loads the account and rejects unsyncable ones, or ones another attempt
   is still syncing
2. resolves the window (last transaction sync, or the default lookback, up to now)
3. commits a SYNCING log row before any remote call
4. obtains the access token from the consent manager
5. walks the pages lazily via :meth:`TransactionSyncEngine.iter_transaction_pages`
6. dedups, maps and imports each record in its own committed unit
   (a record without an amount, or one a concurrent attempt already
   stored, is skipped without failing the sync)
7. finalizes the account and log as SUCCESS
8. on any failure in 4-6 finalizes them as FAILED and returns instead of raising

Records already imported stay committed when a later page fails, so a
rerun resumes by skipping them as duplicates.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from integrations.institution_protocol import (
    InstitutionApiClient,
    RemoteTransaction,
    TransactionPage,
)
from integrations.realtime import RealtimeNotifier, SafeNotifier
from integrations.telemetry import SafeTelemetry, Telemetry
from models import (
    AccountSyncLog,
    ConnectedAccount,
    Consent,
    ConsentStatus,
    Institution,
    SyncStatus,
    SyncType,
    to_naive_utc,
    utcnow,
)
from services.consent_service import ConsentLifecycleManager
from services.exceptions import NotFoundError, StateConflictError
from services.ledger_service import Ledger, LedgerTransactionDTO, SqlLedger
from services.transaction_mapper import (
    DEFAULT_CATEGORY,
    map_remote_transaction,
    source_entity_name,
)

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 1000


@dataclass
class SyncOutcome:
    """Summary of one sync attempt, returned instead of raising."""

    account_id: str
    status: str
    sync_type: str = SyncType.TRANSACTIONS.value
    records_imported: int = 0
    records_failed: int = 0
    error_message: str | None = None
    synced_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.status == SyncStatus.SUCCESS.value


@dataclass
class _Progress:
    imported: int = 0
    duplicates: int = 0
    failed: int = 0
    pages: int = 0


class TransactionSyncEngine:
    """Imports an account's remote transactions without creating duplicates.

    Owns its commits: the SYNCING log, every imported record and the final
    outcome are committed separately.
    """

    def __init__(
        self,
        client: InstitutionApiClient,
        consent_manager: ConsentLifecycleManager,
        ledger: Ledger | None = None,
        page_size: int = 100,
        default_lookback: timedelta = timedelta(days=30),
        sync_interval: timedelta = timedelta(hours=24),
        stale_sync_after: timedelta = timedelta(hours=1),
        telemetry: Telemetry | None = None,
        notifier: RealtimeNotifier | None = None,
    ):
        self._client = client
        self._consents = consent_manager
        self._ledger = ledger or SqlLedger()
        self._page_size = page_size
        self._default_lookback = default_lookback
        self._sync_interval = sync_interval
        self._stale_sync_after = stale_sync_after
        self._telemetry = telemetry if isinstance(telemetry, SafeTelemetry) else SafeTelemetry(telemetry)
        self._notifier = notifier if isinstance(notifier, SafeNotifier) else SafeNotifier(notifier)

    def resolve_window(
        self,
        account: ConnectedAccount,
        from_date: datetime | None,
        to_date: datetime | None,
        now: datetime,
    ) -> tuple[datetime, datetime]:
        """``from`` defaults to the last transaction sync (or the lookback), ``to`` to now."""
        window_from = to_naive_utc(from_date) or account.last_synced_at or now - self._default_lookback
        window_to = to_naive_utc(to_date) or now
        if window_from > window_to:
            raise ValueError("Sync window start is after its end")
        return window_from, window_to

    def _sync_in_progress(self, db: Session, account: ConnectedAccount, now: datetime) -> bool:
        """True while another attempt holds a recent SYNCING log.

        An older SYNCING log belongs to an attempt that died before
        finalizing; a new sync may take over from it.
        """
        if account.sync_status != SyncStatus.SYNCING.value:
            return False
        return (
            db.query(AccountSyncLog.id)
            .filter(
                AccountSyncLog.account_id == account.id,
                AccountSyncLog.sync_type == SyncType.TRANSACTIONS.value,
                AccountSyncLog.status == SyncStatus.SYNCING.value,
                AccountSyncLog.synced_at > now - self._stale_sync_after,
            )
            .first()
            is not None
        )

    def iter_transaction_pages(
        self,
        institution: Institution,
        access_token: str,
        external_account_id: str,
        from_date: datetime,
        to_date: datetime,
    ) -> Iterator[TransactionPage]:
        """Yield pages 1..totalPages in order, fetching each only when consumed."""
        page_number = 1
        while True:
            page = self._client.list_transactions(
                institution,
                access_token,
                external_account_id,
                from_date,
                to_date,
                page_number,
                self._page_size,
            )
            yield page
            if page_number >= page.total_pages:
                return
            page_number += 1

    def sync_transactions(
        self,
        db: Session,
        account_id: str,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> SyncOutcome:
        """Synchronize one account's transactions for a window.

        Raises:
            NotFoundError: Account missing.
            StateConflictError: Account disabled or its consent inactive.
                Also raised while another attempt that started less than
                ``stale_sync_after`` ago is still running.
            ValueError: ``from_date`` is after ``to_date``.

        Remote and import failures do not raise; they come back as a
        FAILED :class:`SyncOutcome`.
        """
        account = db.get(ConnectedAccount, account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        if not account.is_syncable():
            raise StateConflictError(f"Account {account_id} is not syncable")

        now = utcnow()
        if self._sync_in_progress(db, account, now):
            raise StateConflictError(f"Account {account_id} is already syncing")
        window_from, window_to = self.resolve_window(account, from_date, to_date, now)

        sync_log = AccountSyncLog(
            account_id=account.id,
            sync_type=SyncType.TRANSACTIONS.value,
            status=SyncStatus.SYNCING.value,
            synced_at=now,
        )
        db.add(sync_log)
        account.sync_status = SyncStatus.SYNCING.value
        db.commit()
        log_id = sync_log.id

        logger.info(
            "Account %s: syncing transactions %s .. %s",
            account_id, window_from.isoformat(), window_to.isoformat(),
        )

        progress = _Progress()
        try:
            self._import_window(db, account, window_from, window_to, now, progress)
        except Exception as e:
            db.rollback()
            logger.warning("Account %s: transaction sync failed: %s", account_id, e)
            return self._finish_failed(db, account_id, log_id, progress, e)

        return self._finish_success(db, account_id, log_id, progress, now)

    def _import_window(
        self,
        db: Session,
        account: ConnectedAccount,
        window_from: datetime,
        window_to: datetime,
        now: datetime,
        progress: _Progress,
    ) -> None:
        institution = account.institution
        access_token = self._consents.get_access_token(db, account.consent_id)

        category_id = self._ledger.find_or_create_category(db, DEFAULT_CATEGORY)
        source_entity_id = self._ledger.find_or_create_source_entity(
            db,
            source_entity_name(account),
            account.user_id,
            source_type="BANK_TRANSACTION",
            bank_name=institution.name,
            account_number=account.account_number or account.external_account_id,
        )
        db.commit()

        for page in self.iter_transaction_pages(
            institution, access_token, account.external_account_id, window_from, window_to
        ):
            progress.pages += 1
            page_imported = 0
            for remote in page.transactions:
                if self._import_record(
                    db, account, remote, category_id, source_entity_id, now, progress
                ):
                    page_imported += 1
            logger.debug(
                "Account %s: page %d/%d, %d records, %d imported",
                account.id, page.page, page.total_pages, len(page.transactions), page_imported,
            )

    def _import_record(
        self,
        db: Session,
        account: ConnectedAccount,
        remote: RemoteTransaction,
        category_id: str,
        source_entity_id: str,
        now: datetime,
        progress: _Progress,
    ) -> bool:
        """Import one record in its own committed unit. Returns True when imported."""
        user_id = account.user_id
        reference = remote.transaction_id or "<no id>"
        if remote.transaction_id:
            if self._ledger.exists_by_user_and_external_reference(db, user_id, remote.transaction_id):
                progress.duplicates += 1
                return False
        else:
            logger.warning(
                "Account %s: remote transaction without id imported without dedup check",
                account.id,
            )

        if remote.amount is None:
            progress.failed += 1
            logger.warning(
                "Account %s: transaction %s has no usable amount, not imported",
                account.id, reference,
            )
            return False

        try:
            with db.begin_nested():
                dto = map_remote_transaction(remote, account, category_id, source_entity_id, now)
                transaction_id = self._ledger.create_transaction(db, dto)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if remote.transaction_id:
                # Stored by a concurrent attempt after the dedup check
                progress.duplicates += 1
                logger.info(
                    "Account %s: transaction %s already imported elsewhere, skipped",
                    account.id, reference,
                )
                return False
            progress.failed += 1
            logger.warning(
                "Account %s: failed to import transaction %s: %s", account.id, reference, e
            )
            return False
        except Exception as e:
            db.rollback()
            progress.failed += 1
            logger.warning(
                "Account %s: failed to import transaction %s: %s", account.id, reference, e
            )
            return False

        progress.imported += 1
        self._telemetry.record_imported_record()
        self._notifier.notify_transaction_update(user_id, _transaction_event(transaction_id, dto, account.id))
        return True

    def _finish_success(
        self, db: Session, account_id: str, log_id: str, progress: _Progress, now: datetime
    ) -> SyncOutcome:
        account = db.get(ConnectedAccount, account_id)
        sync_log = db.get(AccountSyncLog, log_id)
        completed = utcnow()
        account.last_synced_at = now
        account.sync_status = SyncStatus.SUCCESS.value
        sync_log.status = SyncStatus.SUCCESS.value
        sync_log.records_imported = progress.imported
        sync_log.records_failed = progress.failed
        sync_log.completed_at = completed
        db.commit()

        self._telemetry.record_sync_success()
        logger.info(
            "Account %s: sync complete (%d pages, %d imported, %d duplicates skipped, %d failed)",
            account_id, progress.pages, progress.imported, progress.duplicates, progress.failed,
        )
        return SyncOutcome(
            account_id=account_id,
            status=SyncStatus.SUCCESS.value,
            records_imported=progress.imported,
            records_failed=progress.failed,
            synced_at=now,
        )

    def _finish_failed(
        self, db: Session, account_id: str, log_id: str, progress: _Progress, error: Exception
    ) -> SyncOutcome:
        message = (str(error) or type(error).__name__)[:_MAX_ERROR_LENGTH]
        completed = utcnow()
        try:
            account = db.get(ConnectedAccount, account_id)
            sync_log = db.get(AccountSyncLog, log_id)
            account.sync_status = SyncStatus.FAILED.value
            sync_log.status = SyncStatus.FAILED.value
            sync_log.error_message = message
            sync_log.records_imported = progress.imported
            sync_log.records_failed = progress.failed
            sync_log.completed_at = completed
            db.commit()
        except Exception:
            db.rollback()
            logger.error("Account %s: could not record sync failure", account_id, exc_info=True)

        self._telemetry.record_sync_failure()
        return SyncOutcome(
            account_id=account_id,
            status=SyncStatus.FAILED.value,
            records_imported=progress.imported,
            records_failed=progress.failed,
            error_message=message,
            synced_at=completed,
        )

    # --- batch ---

    def accounts_due_for_sync(self, db: Session) -> list[str]:
        """Ids of accounts whose consent is active and whose sync is due.

        Due means PENDING/FAILED, never synced, or last synced longer ago
        than the sync interval. DISABLED accounts are never due.
        """
        now = utcnow()
        stale_before = now - self._sync_interval
        rows = (
            db.query(ConnectedAccount.id)
            .join(Consent, ConnectedAccount.consent_id == Consent.id)
            .filter(
                ConnectedAccount.sync_status != SyncStatus.DISABLED.value,
                Consent.status == ConsentStatus.AUTHORIZED.value,
                Consent.revoked_at.is_(None),
                or_(Consent.expires_at.is_(None), Consent.expires_at > now),
                or_(
                    ConnectedAccount.sync_status.in_(
                        [SyncStatus.PENDING.value, SyncStatus.FAILED.value]
                    ),
                    ConnectedAccount.last_synced_at.is_(None),
                    ConnectedAccount.last_synced_at <= stale_before,
                ),
            )
            .order_by(ConnectedAccount.last_synced_at)
            .all()
        )
        return [row.id for row in rows]

    def sync_all_accounts(self, db: Session) -> list[SyncOutcome]:
        """Sync every due account; one account's failure never stops the batch."""
        account_ids = self.accounts_due_for_sync(db)
        logger.info("Syncing %d due accounts", len(account_ids))

        outcomes = []
        for account_id in account_ids:
            try:
                outcomes.append(self.sync_transactions(db, account_id))
            except Exception as e:
                db.rollback()
                logger.warning("Account %s skipped: %s", account_id, e)
                outcomes.append(
                    SyncOutcome(
                        account_id=account_id,
                        status=SyncStatus.FAILED.value,
                        error_message=str(e)[:_MAX_ERROR_LENGTH],
                        synced_at=utcnow(),
                    )
                )

        succeeded = sum(1 for o in outcomes if o.success)
        logger.info(
            "Batch sync finished: %d succeeded, %d failed, %d records imported",
            succeeded, len(outcomes) - succeeded, sum(o.records_imported for o in outcomes),
        )
        return outcomes


def _transaction_event(transaction_id: str, dto: LedgerTransactionDTO, account_id: str) -> dict:
    return {
        "id": transaction_id,
        "account_id": account_id,
        "description": dto.description,
        "amount": str(dto.amount),
        "type": dto.type,
        "date": dto.date.isoformat(),
        "external_reference": dto.external_reference,
    }
