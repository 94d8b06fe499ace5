"""Pydantic schemas for API request/response validation."""

from .open_finance import (
    AccountBalanceResponse,
    AccountSyncLogResponse,
    BalanceSweepResponse,
    BatchSyncResponse,
    ConnectedAccountResponse,
    ConsentInitiateRequest,
    ConsentInitiateResponse,
    ConsentResponse,
    InstitutionResponse,
    SyncRequest,
    SyncStatusResponse,
    TokenRefreshSweepResponse,
)

__all__ = [
    "AccountBalanceResponse",
    "AccountSyncLogResponse",
    "BalanceSweepResponse",
    "BatchSyncResponse",
    "ConnectedAccountResponse",
    "ConsentInitiateRequest",
    "ConsentInitiateResponse",
    "ConsentResponse",
    "InstitutionResponse",
    "SyncRequest",
    "SyncStatusResponse",
    "TokenRefreshSweepResponse",
]
