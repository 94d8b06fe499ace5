"""Consent model - a user's delegated authority at one institution."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utcnow


class ConsentStatus(str, Enum):
    """Stored lifecycle states.

    ``EXPIRED`` is never written: it is reported lazily for AUTHORIZED
    consents whose ``expires_at`` has passed.
    """

    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    REVOKED = "REVOKED"
    EXPIRED = "EXPIRED"


class Consent(Base):
    """Delegated read access for one user at one institution.

    Consents are audit records and are never deleted. Token columns only
    ever hold ciphertext produced by :class:`services.token_vault.TokenVault`.
    """

    __tablename__ = "open_finance_consents"
    __table_args__ = (
        Index("ix_consent_user_institution", "user_id", "institution_id"),
        Index("ix_consent_status_expires", "status", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False)
    institution_id = Column(
        String(36), ForeignKey("open_finance_institutions.id"), nullable=False
    )
    status = Column(String(20), nullable=False, default=ConsentStatus.PENDING.value)
    scopes = Column(String, nullable=True)  # comma-joined
    access_token_cipher = Column(Text, nullable=True)
    refresh_token_cipher = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    state_hash = Column(String(64), nullable=True)  # sha256 hex of the anti-forgery state
    created_at = Column(DateTime, default=utcnow)
    authorized_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    institution = relationship("Institution")
    accounts = relationship("ConnectedAccount", back_populates="consent")

    @property
    def scope_list(self) -> list[str]:
        if not self.scopes:
            return []
        return [s for s in self.scopes.split(",") if s]

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def is_active(self, now: datetime | None = None) -> bool:
        """AUTHORIZED, not past expiry and not revoked."""
        return (
            self.status == ConsentStatus.AUTHORIZED.value
            and self.revoked_at is None
            and not self.is_expired(now)
        )

    def effective_status(self, now: datetime | None = None) -> str:
        if self.status == ConsentStatus.AUTHORIZED.value and self.is_expired(now):
            return ConsentStatus.EXPIRED.value
        return self.status
