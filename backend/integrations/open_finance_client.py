"""Open Finance institution API client.

Implements the InstitutionApiClient protocol over httpx. Every request is
issued through the shared mutual-TLS context from the certificate
provisioner and carries a bounded timeout. OAuth calls use form posts with
client credentials; account reads follow the Open Finance Brasil
``/open-banking/accounts/v1`` resource layout.
"""

import logging
import threading
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING
from urllib.parse import urlencode

import httpx

from integrations.exceptions import (
    InstitutionAPIError,
    InstitutionAuthError,
    InstitutionConnectionError,
    InstitutionDataError,
)
from integrations.institution_protocol import (
    AccountBalance,
    AccountInfo,
    RemoteTransaction,
    TokenResponse,
    TransactionPage,
)
from integrations.parsing_utils import format_iso_datetime, parse_decimal, parse_naive_utc
from models.utils import utcnow

if TYPE_CHECKING:
    from models import Institution
    from services.certificate_provisioner import CertificateProvisioner

logger = logging.getLogger(__name__)

ACCOUNTS_ENDPOINT = "/open-banking/accounts/v1/accounts"
BALANCES_ENDPOINT = "/open-banking/accounts/v1/balances"
TRANSACTIONS_ENDPOINT = "/open-banking/accounts/v1/transactions"

DEFAULT_EXPIRES_IN = 3600


class OpenFinanceClient:
    """HTTP client for Open Finance institutions.

    One instance serves every institution; per-institution endpoints come
    from the :class:`models.Institution` row passed to each call.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        certificate_provisioner: "CertificateProvisioner | None" = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            client_id: OAuth client id registered with the institutions.
            client_secret: OAuth client secret.
            redirect_uri: Callback URL registered for the authorization code flow.
            certificate_provisioner: Source of the shared mTLS context.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._provisioner = certificate_provisioner
        self._timeout = timeout
        self._transport = transport
        self._http_client: httpx.Client | None = None
        self._http_lock = threading.Lock()

    def _http(self) -> httpx.Client:
        """Return the shared httpx client, creating it on first use.

        Pages and institutions share its connection pool.
        """
        with self._http_lock:
            if self._http_client is None:
                kwargs: dict = {"timeout": self._timeout}
                if self._transport is not None:
                    kwargs["transport"] = self._transport
                elif self._provisioner is not None:
                    kwargs["verify"] = self._provisioner.get_ssl_context()
                self._http_client = httpx.Client(**kwargs)
            return self._http_client

    def close(self) -> None:
        """Close the underlying HTTP client; the next request opens a new one."""
        with self._http_lock:
            if self._http_client is not None:
                self._http_client.close()
                self._http_client = None

    def _request(
        self,
        institution: "Institution",
        method: str,
        url: str,
        expect_json: bool = True,
        **kwargs,
    ) -> dict | None:
        """Issue one request and map failures onto the InstitutionError hierarchy."""
        code = institution.code
        try:
            response = self._http().request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in (401, 403):
                raise InstitutionAuthError(
                    f"{code} rejected credentials (HTTP {status})",
                    institution_code=code,
                ) from exc
            raise InstitutionAPIError(
                f"{code} API error (HTTP {status})",
                institution_code=code,
                status_code=status,
            ) from exc
        except httpx.TimeoutException as exc:
            raise InstitutionConnectionError(
                f"{code} request timed out after {self._timeout}s",
                institution_code=code,
            ) from exc
        except httpx.TransportError as exc:
            raise InstitutionConnectionError(
                f"{code} connection failed: {type(exc).__name__}",
                institution_code=code,
            ) from exc

        if not expect_json:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            raise InstitutionDataError(
                f"{code} returned a non-JSON response", institution_code=code
            ) from exc
        if not isinstance(body, dict):
            raise InstitutionDataError(
                f"{code} returned an unexpected payload", institution_code=code
            )
        return body

    @staticmethod
    def _bearer(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    # --- OAuth ---

    def authorize_url(
        self, institution: "Institution", user_id: str, state: str, scopes: list[str]
    ) -> str:
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
        }
        return f"{institution.authorization_url}?{urlencode(params)}"

    def exchange_code(
        self, institution: "Institution", code: str, redirect_uri: str
    ) -> TokenResponse:
        body = self._request(
            institution,
            "POST",
            institution.token_url,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
        )
        logger.info("%s: authorization code exchanged", institution.code)
        return self._parse_token_response(institution, body)

    def refresh(self, institution: "Institution", refresh_token: str) -> TokenResponse:
        body = self._request(
            institution,
            "POST",
            institution.token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
        )
        logger.info("%s: access token refreshed", institution.code)
        return self._parse_token_response(institution, body)

    def revoke(self, institution: "Institution", token: str, token_type: str) -> None:
        self._request(
            institution,
            "POST",
            institution.effective_revocation_url,
            expect_json=False,
            data={
                "token": token,
                "token_type_hint": token_type,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
            },
        )
        logger.info("%s: %s revoked", institution.code, token_type)

    def _parse_token_response(self, institution: "Institution", body: dict) -> TokenResponse:
        access_token = body.get("access_token")
        if not access_token:
            raise InstitutionDataError(
                f"{institution.code} token response missing access_token",
                institution_code=institution.code,
            )
        try:
            expires_in = int(body.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        return TokenResponse(
            access_token=access_token,
            refresh_token=body.get("refresh_token") or None,
            expires_at=utcnow() + timedelta(seconds=expires_in),
            token_type=body.get("token_type") or "Bearer",
            scope=body.get("scope"),
        )

    # --- Account information ---

    def list_accounts(self, institution: "Institution", access_token: str) -> list[AccountInfo]:
        body = self._request(
            institution,
            "GET",
            institution.api_base_url.rstrip("/") + ACCOUNTS_ENDPOINT,
            headers=self._bearer(access_token),
        )
        data = body.get("data") or []
        if not isinstance(data, list):
            raise InstitutionDataError(
                f"{institution.code} accounts payload is not a list",
                institution_code=institution.code,
            )

        accounts = []
        for item in data:
            external_id = item.get("accountId")
            if not external_id:
                logger.warning("%s: skipping account without accountId", institution.code)
                continue
            accounts.append(
                AccountInfo(
                    external_id=str(external_id),
                    account_type=item.get("accountType"),
                    account_number=item.get("number"),
                    branch=item.get("branch"),
                    holder_name=item.get("name"),
                    currency=item.get("currency") or "BRL",
                )
            )
        logger.info("%s: %d accounts listed", institution.code, len(accounts))
        return accounts

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
        params: dict[str, str | int] = {"page": page, "page-size": page_size}
        if from_date is not None:
            params["fromBookingDateTime"] = format_iso_datetime(from_date)
        if to_date is not None:
            params["toBookingDateTime"] = format_iso_datetime(to_date)

        body = self._request(
            institution,
            "GET",
            f"{institution.api_base_url.rstrip('/')}{TRANSACTIONS_ENDPOINT}/{external_account_id}",
            params=params,
            headers=self._bearer(access_token),
        )
        data = body.get("data") or {}
        items = data.get("transaction") if isinstance(data, dict) else None
        if items is None and isinstance(data, dict):
            items = []
        if not isinstance(items, list):
            raise InstitutionDataError(
                f"{institution.code} transactions payload is malformed",
                institution_code=institution.code,
            )

        transactions = [self._map_transaction(institution, item) for item in items]

        meta = body.get("meta") or {}
        try:
            total_pages = max(int(meta.get("totalPages") or 1), 1)
            current_page = int(meta.get("page") or page)
        except (TypeError, ValueError) as exc:
            raise InstitutionDataError(
                f"{institution.code} pagination metadata is malformed",
                institution_code=institution.code,
            ) from exc

        return TransactionPage(
            transactions=transactions, page=current_page, total_pages=total_pages
        )

    def _map_transaction(self, institution: "Institution", item: dict) -> RemoteTransaction:
        transaction_id = item.get("transactionId")
        amount = parse_decimal(item.get("amount"))
        if amount is None:
            # The sync engine counts it as a failed record
            logger.warning(
                "%s: transaction %s has no parseable amount",
                institution.code, transaction_id or "<no id>",
            )
        return RemoteTransaction(
            transaction_id=str(transaction_id) if transaction_id else None,
            amount=amount,
            description=item.get("transactionInformation"),
            booking_date=parse_naive_utc(item.get("bookingDateTime")),
            credit_debit_indicator=(item.get("creditDebitIndicator") or "DEBIT").upper(),
            raw_data=item,
        )

    def get_balance(
        self, institution: "Institution", access_token: str, external_account_id: str
    ) -> AccountBalance:
        body = self._request(
            institution,
            "GET",
            f"{institution.api_base_url.rstrip('/')}{BALANCES_ENDPOINT}/{external_account_id}",
            headers=self._bearer(access_token),
        )
        balance = (body.get("data") or {}).get("balance") or {}
        amount = parse_decimal(balance.get("amount"))
        return AccountBalance(
            balance=amount if amount is not None else Decimal("0"),
            currency=balance.get("currency") or "BRL",
        )
