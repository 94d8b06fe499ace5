"""Connected account endpoints: discovery, balances, transaction sync."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import (
    account_response_dict,
    domain_errors,
    get_aggregation_core,
    get_current_user_id,
    sync_outcome_dict,
)
from database import get_db
from integrations.exceptions import InstitutionError
from models import AccountSyncLog
from schemas import (
    AccountBalanceResponse,
    AccountSyncLogResponse,
    ConnectedAccountResponse,
    SyncRequest,
    SyncStatusResponse,
)
from services.aggregation import AggregationCore
from services.exceptions import OpenFinanceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/open-finance/accounts", tags=["open-finance"])


@router.post("/discover/{consent_id}", response_model=list[ConnectedAccountResponse])
def discover_accounts(
    consent_id: str,
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    """List the consent's remote accounts and upsert them locally.

    Raises:
        HTTPException:
            - 403 Forbidden: Consent belongs to another user
            - 404 Not Found: Unknown consent
            - 409 Conflict: Consent is not active
            - 502 Bad Gateway: Institution call failed
    """
    with domain_errors("Account discovery"):
        accounts = core.accounts.discover_accounts(db, consent_id, user_id)
        db.commit()
        return [account_response_dict(a) for a in accounts]


@router.get("", response_model=list[ConnectedAccountResponse])
def list_accounts(
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    return [account_response_dict(a) for a in core.accounts.list_user_accounts(db, user_id)]


@router.get("/{account_id}", response_model=ConnectedAccountResponse)
def get_account(
    account_id: str,
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    with domain_errors("Account lookup"):
        return account_response_dict(core.accounts.get_account(db, account_id, user_id))


@router.post("/{account_id}/sync-balance", response_model=AccountBalanceResponse)
def sync_balance(
    account_id: str,
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    """Fetch the account's current balance from the institution."""
    with domain_errors("Balance sync"):
        try:
            result = core.accounts.sync_balance(db, account_id, user_id)
        except (InstitutionError, OpenFinanceError):
            # Persist the FAILED balance log written before the error surfaced
            db.commit()
            raise
        db.commit()
    return {
        "account_id": result.account_id,
        "balance": result.balance,
        "currency": result.currency,
        "synced_at": result.synced_at,
    }


@router.post("/{account_id}/sync", response_model=SyncStatusResponse)
def sync_transactions(
    account_id: str,
    request: Optional[SyncRequest] = Body(default=None),
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    """Sync the account's transactions.

    Institution failures do not produce an error status: the response has
    ``success: false`` and an ``error_message``.

    Raises:
        HTTPException:
            - 400 Bad Request: Invalid window
            - 404 Not Found: Unknown account
            - 409 Conflict: Account disabled or consent inactive
            - 409 Conflict: Another sync of the account is still running
    """
    request = request or SyncRequest()
    with domain_errors("Transaction sync"):
        core.accounts.get_account(db, account_id, user_id)
        try:
            outcome = core.sync_engine.sync_transactions(
                db, account_id, request.from_date, request.to_date
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    return sync_outcome_dict(outcome)


@router.get("/{account_id}/sync-logs", response_model=list[AccountSyncLogResponse])
def list_sync_logs(
    account_id: str,
    limit: int = 20,
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    """Most recent sync attempts for the account."""
    with domain_errors("Sync log lookup"):
        core.accounts.get_account(db, account_id, user_id)
    return (
        db.query(AccountSyncLog)
        .filter_by(account_id=account_id)
        .order_by(AccountSyncLog.synced_at.desc())
        .limit(max(1, min(limit, 200)))
        .all()
    )


@router.delete("/{account_id}", response_model=ConnectedAccountResponse)
def disconnect_account(
    account_id: str,
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    """Stop syncing the account. The record is kept as DISABLED."""
    with domain_errors("Account disconnect"):
        account = core.accounts.disconnect_account(db, account_id, user_id)
        db.commit()
        return account_response_dict(account)
