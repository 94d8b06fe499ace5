"""Wires the Open Finance aggregation core together.

Everything is built once per process; the certificate provisioner and
token vault are shared by reference with every component that needs
them.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session

from integrations.blob_store import BlobStore, HttpBlobStore
from integrations.open_finance_client import OpenFinanceClient
from integrations.realtime import RealtimeNotifier, SafeNotifier
from integrations.telemetry import LoggingTelemetry, SafeTelemetry, Telemetry
from services.account_service import AccountDiscoveryService
from services.certificate_provisioner import CertificateProvisioner, CertificateSettings
from services.consent_service import ConsentLifecycleManager
from services.ledger_service import Ledger, SqlLedger
from services.sync_jobs import SyncJobs
from services.token_vault import TokenVault
from services.transaction_sync_service import TransactionSyncEngine

logger = logging.getLogger(__name__)


@dataclass
class AggregationCore:
    provisioner: CertificateProvisioner
    client: OpenFinanceClient
    vault: TokenVault
    consents: ConsentLifecycleManager
    accounts: AccountDiscoveryService
    sync_engine: TransactionSyncEngine
    jobs: SyncJobs

    def close(self) -> None:
        """Release the institution client's pooled connections."""
        self.client.close()


def build_aggregation_core(
    settings,
    session_factory: Callable[[], Session],
    telemetry: Telemetry | None = None,
    notifier: RealtimeNotifier | None = None,
    blob_store: BlobStore | None = None,
    ledger: Ledger | None = None,
) -> AggregationCore:
    """Construct the aggregation core from settings.

    Args:
        settings: Application :class:`config.Settings`.
        session_factory: Zero-argument callable returning a new Session,
            used by the scheduled jobs.
        telemetry: Telemetry sink (defaults to in-process counters).
        notifier: Realtime notifier (defaults to a no-op).
        blob_store: Certificate storage client (defaults to
            :class:`HttpBlobStore` when storage is enabled).
        ledger: Ledger collaborator (defaults to :class:`SqlLedger`).

    Raises:
        ValueError: If no token encryption key is configured.
    """
    telemetry = SafeTelemetry(telemetry or LoggingTelemetry())
    notifier = SafeNotifier(notifier)

    if blob_store is None and settings.CERT_STORAGE_ENABLED:
        blob_store = HttpBlobStore(
            settings.CERT_STORAGE_URL,
            settings.CERT_STORAGE_TOKEN,
            timeout=settings.OPEN_FINANCE_HTTP_TIMEOUT_SECONDS,
        )

    provisioner = CertificateProvisioner(CertificateSettings.from_settings(settings), blob_store)
    vault = TokenVault(
        settings.token_encryption_keys, allow_ephemeral=settings.ALLOW_EPHEMERAL_TOKEN_KEY
    )
    client = OpenFinanceClient(
        client_id=settings.OPEN_FINANCE_CLIENT_ID,
        client_secret=settings.OPEN_FINANCE_CLIENT_SECRET,
        redirect_uri=settings.OPEN_FINANCE_REDIRECT_URI,
        certificate_provisioner=provisioner,
        timeout=settings.OPEN_FINANCE_HTTP_TIMEOUT_SECONDS,
    )
    consents = ConsentLifecycleManager(
        client,
        vault,
        redirect_uri=settings.OPEN_FINANCE_REDIRECT_URI,
        default_scopes=settings.default_scopes,
        refresh_lookahead=timedelta(minutes=settings.TOKEN_REFRESH_LOOKAHEAD_MINUTES),
        telemetry=telemetry,
        notifier=notifier,
    )
    accounts = AccountDiscoveryService(client, consents, telemetry=telemetry, notifier=notifier)
    sync_engine = TransactionSyncEngine(
        client,
        consents,
        ledger=ledger or SqlLedger(),
        page_size=settings.OPEN_FINANCE_PAGE_SIZE,
        default_lookback=timedelta(days=settings.SYNC_DEFAULT_LOOKBACK_DAYS),
        sync_interval=timedelta(hours=settings.SYNC_INTERVAL_HOURS),
        telemetry=telemetry,
        notifier=notifier,
    )
    jobs = SyncJobs(
        consents,
        sync_engine,
        accounts,
        session_factory,
        sync_enabled=settings.OPEN_FINANCE_SYNC_ENABLED,
    )

    logger.info(
        "Open Finance aggregation core ready (%d encryption key(s), certificate storage %s)",
        vault.key_count, "on" if blob_store is not None else "off",
    )
    return AggregationCore(
        provisioner=provisioner,
        client=client,
        vault=vault,
        consents=consents,
        accounts=accounts,
        sync_engine=sync_engine,
        jobs=jobs,
    )
