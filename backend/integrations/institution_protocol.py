"""Institution API protocol definitions.

Defines the typed results and the capability interface the aggregation
core uses to talk to an Open Finance institution. Institution-specific
encoding lives behind the protocol.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from models import Institution


@dataclass
class TokenResponse:
    """Result of an authorization-code exchange or a refresh."""

    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)  # None when not rotated
    expires_at: datetime | None = None  # naive UTC
    token_type: str = "Bearer"
    scope: str | None = None


@dataclass
class AccountInfo:
    """Normalized account data as listed by the institution."""

    external_id: str  # Institution's account id (unique per institution)
    account_type: str | None = None  # e.g. "CHECKING", "SAVINGS", "CREDIT_CARD"
    account_number: str | None = None
    branch: str | None = None
    holder_name: str | None = None
    currency: str = "BRL"


@dataclass
class RemoteTransaction:
    """One transaction as returned by the institution."""

    transaction_id: str | None  # Stable id; the dedup key
    amount: Decimal | None  # None when the institution sent no parseable amount
    description: str | None = None
    booking_date: datetime | None = None  # naive UTC
    credit_debit_indicator: str = "DEBIT"  # "CREDIT" | "DEBIT"
    raw_data: dict | None = None


@dataclass
class TransactionPage:
    transactions: list[RemoteTransaction]
    page: int = 1
    total_pages: int = 1


@dataclass
class AccountBalance:
    balance: Decimal
    currency: str = "BRL"


class InstitutionApiClient(Protocol):
    """Capability interface for institution OAuth and account data calls.

    All calls are blocking with a bounded timeout and raise
    :class:`integrations.exceptions.InstitutionError` subclasses on failure.
    No call retries.
    """

    def authorize_url(
        self, institution: "Institution", user_id: str, state: str, scopes: list[str]
    ) -> str:
        """Build the URL the user is redirected to in order to grant consent."""
        ...

    def exchange_code(
        self, institution: "Institution", code: str, redirect_uri: str
    ) -> TokenResponse:
        """Exchange an authorization code for an access/refresh token pair."""
        ...

    def refresh(self, institution: "Institution", refresh_token: str) -> TokenResponse:
        """Obtain a new access token (and possibly a rotated refresh token)."""
        ...

    def revoke(self, institution: "Institution", token: str, token_type: str) -> None:
        """Revoke a token at the institution."""
        ...

    def list_accounts(self, institution: "Institution", access_token: str) -> list[AccountInfo]:
        """List the accounts reachable with the given access token."""
        ...

    def list_transactions(
        self,
        institution: "Institution",
        access_token: str,
        external_account_id: str,
        from_date: datetime | None,
        to_date: datetime | None,
        page: int,
        page_size: int,
    ) -> TransactionPage:
        """Fetch one page of transactions for an account in a date window."""
        ...

    def get_balance(
        self, institution: "Institution", access_token: str, external_account_id: str
    ) -> AccountBalance:
        """Fetch the current balance of an account."""
        ...
