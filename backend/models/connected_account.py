"""ConnectedAccount model - a remote account reachable under a consent."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DISABLED = "DISABLED"


class ConnectedAccount(Base):
    """One account exposed by an institution under a user's consent.

    The combination of institution_id + external_account_id uniquely
    identifies an account; discovery upserts on it. Accounts are retired
    with the DISABLED status rather than deleted.
    """

    __tablename__ = "connected_accounts"
    __table_args__ = (
        UniqueConstraint(
            "institution_id", "external_account_id", name="uix_institution_external_account"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    consent_id = Column(String(36), ForeignKey("open_finance_consents.id"), nullable=False)
    institution_id = Column(
        String(36), ForeignKey("open_finance_institutions.id"), nullable=False
    )
    external_account_id = Column(String, nullable=False)
    account_type = Column(String(50), nullable=True)  # CHECKING, SAVINGS, CREDIT_CARD, ...
    account_number = Column(String(50), nullable=True)
    branch = Column(String(20), nullable=True)
    account_holder_name = Column(String, nullable=True)
    balance = Column(Numeric(19, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="BRL")
    last_synced_at = Column(DateTime, nullable=True)  # start of the last successful transaction sync
    balance_updated_at = Column(DateTime, nullable=True)
    sync_status = Column(String(20), nullable=False, default=SyncStatus.PENDING.value)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    consent = relationship("Consent", back_populates="accounts")
    institution = relationship("Institution")
    sync_logs = relationship(
        "AccountSyncLog",
        back_populates="account",
        order_by="AccountSyncLog.synced_at.desc()",
    )

    def is_syncable(self, now: datetime | None = None) -> bool:
        return (
            self.sync_status != SyncStatus.DISABLED.value
            and self.consent is not None
            and self.consent.is_active(now)
        )
