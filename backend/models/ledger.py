"""Ledger models - the destination records written by transaction sync."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Numeric, String

from database import Base
from models.utils import generate_uuid, utcnow


class TransactionCategory(Base):
    __tablename__ = "transaction_categories"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(100), unique=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class TransactionSourceEntity(Base):
    """Where a ledger entry came from, e.g. ``"Banco X - 12345-6"``."""

    __tablename__ = "transaction_source_entities"
    __table_args__ = (Index("ix_source_entity_user_name", "user_id", "name"),)

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False)
    name = Column(String, nullable=False)
    source_type = Column(String(30), nullable=False)
    bank_name = Column(String, nullable=True)
    account_number = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class LedgerTransaction(Base):
    """A ledger entry.

    ``external_reference`` carries the institution's transaction id and is
    the dedup key for imports; it is unique per user when present.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_external_ref", "user_id", "external_reference", unique=True),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False)
    description = Column(String, nullable=False)
    amount = Column(Numeric(19, 2), nullable=False)
    date = Column(DateTime, nullable=False)
    type = Column(String(20), nullable=False)  # "INCOME" | "EXPENSE"
    subtype = Column(String(20), nullable=False)  # "FIXED" | "VARIABLE"
    source = Column(String(30), nullable=False)
    category_id = Column(String(36), ForeignKey("transaction_categories.id"), nullable=True)
    source_entity_id = Column(
        String(36), ForeignKey("transaction_source_entities.id"), nullable=True
    )
    external_reference = Column(String, nullable=True)
    bank_reference = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
