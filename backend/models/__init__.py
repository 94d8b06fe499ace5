"""SQLAlchemy ORM models."""

from .account_sync_log import AccountSyncLog, SyncType
from .connected_account import ConnectedAccount, SyncStatus
from .consent import Consent, ConsentStatus
from .institution import Institution
from .ledger import LedgerTransaction, TransactionCategory, TransactionSourceEntity
from .utils import generate_uuid, to_naive_utc, utcnow

__all__ = [
    "AccountSyncLog",
    "ConnectedAccount",
    "Consent",
    "ConsentStatus",
    "Institution",
    "LedgerTransaction",
    "SyncStatus",
    "SyncType",
    "TransactionCategory",
    "TransactionSourceEntity",
    "generate_uuid",
    "to_naive_utc",
    "utcnow",
]
