"""Ledger collaborator - where imported transactions are written.

The aggregation core only talks to the :class:`Ledger` protocol.
:class:`SqlLedger` is the default implementation over the local
``transactions`` / ``transaction_categories`` /
``transaction_source_entities`` tables.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import LedgerTransaction, TransactionCategory, TransactionSourceEntity

logger = logging.getLogger(__name__)


@dataclass
class LedgerTransactionDTO:
    """A transaction ready to be written to the ledger."""

    user_id: str
    description: str
    amount: Decimal
    date: datetime
    type: str  # "INCOME" | "EXPENSE"
    subtype: str  # "FIXED" | "VARIABLE"
    source: str  # "BANK_TRANSACTION" | "CREDIT_CARD" | "DEBIT_CARD" | "OTHER"
    category_id: str | None = None
    source_entity_id: str | None = None
    external_reference: str | None = None
    bank_reference: str | None = None


class Ledger(Protocol):
    def create_transaction(self, db: Session, dto: LedgerTransactionDTO) -> str: ...

    def exists_by_user_and_external_reference(
        self, db: Session, user_id: str, external_reference: str
    ) -> bool: ...

    def find_or_create_category(self, db: Session, name: str) -> str: ...

    def find_or_create_source_entity(
        self,
        db: Session,
        name: str,
        user_id: str,
        source_type: str = "BANK_TRANSACTION",
        bank_name: str | None = None,
        account_number: str | None = None,
    ) -> str: ...


class SqlLedger:
    """Ledger backed by the local database. Methods flush, never commit."""

    def create_transaction(self, db: Session, dto: LedgerTransactionDTO) -> str:
        transaction = LedgerTransaction(
            user_id=dto.user_id,
            description=dto.description,
            amount=dto.amount,
            date=dto.date,
            type=dto.type,
            subtype=dto.subtype,
            source=dto.source,
            category_id=dto.category_id,
            source_entity_id=dto.source_entity_id,
            external_reference=dto.external_reference,
            bank_reference=dto.bank_reference,
        )
        db.add(transaction)
        db.flush()
        return transaction.id

    def exists_by_user_and_external_reference(
        self, db: Session, user_id: str, external_reference: str
    ) -> bool:
        return (
            db.query(LedgerTransaction.id)
            .filter_by(user_id=user_id, external_reference=external_reference)
            .first()
            is not None
        )

    def find_or_create_category(self, db: Session, name: str) -> str:
        existing = (
            db.query(TransactionCategory)
            .filter(func.lower(TransactionCategory.name) == name.lower())
            .first()
        )
        if existing:
            return existing.id

        category = TransactionCategory(name=name)
        db.add(category)
        db.flush()
        logger.info("Created transaction category %r", name)
        return category.id

    def find_or_create_source_entity(
        self,
        db: Session,
        name: str,
        user_id: str,
        source_type: str = "BANK_TRANSACTION",
        bank_name: str | None = None,
        account_number: str | None = None,
    ) -> str:
        existing = (
            db.query(TransactionSourceEntity)
            .filter_by(user_id=user_id, name=name)
            .first()
        )
        if existing:
            return existing.id

        entity = TransactionSourceEntity(
            user_id=user_id,
            name=name,
            source_type=source_type,
            bank_name=bank_name,
            account_number=account_number,
            is_active=True,
        )
        db.add(entity)
        db.flush()
        logger.info("Created source entity %r for user %s", name, user_id)
        return entity.id
