"""Maps institution transactions onto ledger entries."""

from datetime import datetime

from integrations.institution_protocol import RemoteTransaction
from models import ConnectedAccount
from services.ledger_service import LedgerTransactionDTO

DEFAULT_DESCRIPTION = "Open Finance Transaction"
DEFAULT_CATEGORY = "Open Finance"

INCOME = "INCOME"
EXPENSE = "EXPENSE"
VARIABLE = "VARIABLE"

_SOURCE_BY_ACCOUNT_TYPE = {
    "CHECKING": "BANK_TRANSACTION",
    "SAVINGS": "BANK_TRANSACTION",
    "CREDIT_CARD": "CREDIT_CARD",
    "DEBIT_CARD": "DEBIT_CARD",
}


def transaction_type_for(credit_debit_indicator: str | None) -> str:
    """CREDIT is income; DEBIT, missing or unknown indicators are expenses."""
    if (credit_debit_indicator or "").strip().upper() == "CREDIT":
        return INCOME
    return EXPENSE


def source_for_account_type(account_type: str | None) -> str:
    return _SOURCE_BY_ACCOUNT_TYPE.get((account_type or "").strip().upper(), "OTHER")


def source_entity_name(account: ConnectedAccount) -> str:
    """``"{institution} - {account number or external id}"``."""
    return f"{account.institution.name} - {account.account_number or account.external_account_id}"


def map_remote_transaction(
    remote: RemoteTransaction,
    account: ConnectedAccount,
    category_id: str | None,
    source_entity_id: str | None,
    now: datetime,
) -> LedgerTransactionDTO:
    """Build the ledger DTO for one remote transaction.

    Args:
        remote: Transaction as returned by the institution.
        account: Account the transaction was fetched for.
        category_id: Shared "Open Finance" category.
        source_entity_id: Source entity derived from the account.
        now: Fallback date when the institution omits the booking date.
    """
    description = (remote.description or "").strip() or DEFAULT_DESCRIPTION
    return LedgerTransactionDTO(
        user_id=account.user_id,
        description=description,
        amount=abs(remote.amount),
        date=remote.booking_date or now,
        type=transaction_type_for(remote.credit_debit_indicator),
        subtype=VARIABLE,
        source=source_for_account_type(account.account_type),
        category_id=category_id,
        source_entity_id=source_entity_id,
        external_reference=remote.transaction_id,
        bank_reference=remote.transaction_id,
    )
