"""Periodic job entry points for an external scheduler.

Each job opens its own session, is safe to re-run, and never raises:
failures are logged and reported in the return value. Timing is left to
whatever invokes them (cron, systemd timer, ``scripts/run_sync_jobs.py``
or the ``/api/open-finance/jobs`` endpoints).
"""

import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from services.account_service import AccountDiscoveryService
from services.consent_service import ConsentLifecycleManager, RefreshSweepResult
from services.transaction_sync_service import SyncOutcome, TransactionSyncEngine

logger = logging.getLogger(__name__)


class SyncJobs:
    """Idempotent sweeps over consents and connected accounts."""

    def __init__(
        self,
        consent_manager: ConsentLifecycleManager,
        sync_engine: TransactionSyncEngine,
        account_service: AccountDiscoveryService,
        session_factory: Callable[[], Session],
        sync_enabled: bool = True,
    ):
        self._consents = consent_manager
        self._engine = sync_engine
        self._accounts = account_service
        self._session_factory = session_factory
        self._sync_enabled = sync_enabled

    def _run(self, name: str, job, empty):
        if not self._sync_enabled:
            logger.info("Job %s skipped: sync disabled", name)
            return empty
        db = self._session_factory()
        try:
            return job(db)
        except Exception:
            db.rollback()
            logger.error("Job %s aborted", name, exc_info=True)
            return empty
        finally:
            db.close()

    def refresh_expiring_tokens(self) -> RefreshSweepResult:
        return self._run(
            "refresh_expiring_tokens", self._consents.refresh_expiring_tokens, RefreshSweepResult()
        )

    def sync_all_accounts(self) -> list[SyncOutcome]:
        return self._run("sync_all_accounts", self._engine.sync_all_accounts, [])

    def sync_all_balances(self) -> dict[str, str]:
        return self._run("sync_all_balances", self._accounts.sync_all_balances, {})
