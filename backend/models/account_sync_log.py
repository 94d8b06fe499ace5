"""AccountSyncLog model - one row per synchronization attempt."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class SyncType(str, Enum):
    TRANSACTIONS = "TRANSACTIONS"
    BALANCE = "BALANCE"


class AccountSyncLog(Base):
    """Audit record of a single sync attempt for one account.

    A TRANSACTIONS log is written in the SYNCING state before any remote
    call and finalized exactly once by the same attempt. A BALANCE log is
    written once the refresh has finished.
    """

    __tablename__ = "account_sync_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("connected_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sync_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)  # "SYNCING" | "SUCCESS" | "FAILED"
    records_imported = Column(Integer, default=0, nullable=False)
    records_failed = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)
    synced_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    account = relationship("ConnectedAccount", back_populates="sync_logs")
