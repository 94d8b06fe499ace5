"""Pydantic schemas for the Open Finance API.

Token ciphertext and state hashes are never part of a response.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class InstitutionResponse(BaseModel):
    id: str
    name: str
    code: str
    certificate_required: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ConsentInitiateRequest(BaseModel):
    """Schema for starting the consent flow."""

    institution_id: str
    scopes: Optional[list[str]] = None


class ConsentInitiateResponse(BaseModel):
    consent_id: str
    authorization_url: str
    state: str


class ConsentResponse(BaseModel):
    """Schema for Consent API response.

    ``status`` is the effective status: AUTHORIZED consents past their
    expiry are reported as EXPIRED.
    """

    id: str
    user_id: str
    institution_id: str
    institution_name: Optional[str] = None
    status: str
    scopes: list[str] = []
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    authorized_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    is_active: bool


class ConnectedAccountResponse(BaseModel):
    """Schema for ConnectedAccount API response."""

    id: str
    user_id: str
    consent_id: str
    institution_id: str
    institution_name: Optional[str] = None
    external_account_id: str
    account_type: Optional[str] = None
    account_number: Optional[str] = None
    branch: Optional[str] = None
    account_holder_name: Optional[str] = None
    balance: Optional[Decimal] = None
    currency: str
    last_synced_at: Optional[datetime] = None
    balance_updated_at: Optional[datetime] = None
    sync_status: str


class AccountBalanceResponse(BaseModel):
    account_id: str
    balance: Decimal
    currency: str
    synced_at: datetime


class SyncRequest(BaseModel):
    """Optional explicit window for a single-account sync."""

    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self) -> "SyncRequest":
        if not (self.from_date and self.to_date):
            return self
        if (self.from_date.tzinfo is None) != (self.to_date.tzinfo is None):
            raise ValueError("from_date and to_date must both carry a timezone or neither")
        if self.from_date > self.to_date:
            raise ValueError("from_date must not be after to_date")
        return self


class SyncStatusResponse(BaseModel):
    """Outcome of a sync attempt. ``success`` is false for FAILED attempts."""

    account_id: str
    sync_status: str
    sync_type: str
    records_imported: int
    records_failed: int = 0
    error_message: Optional[str] = None
    synced_at: Optional[datetime] = None
    success: bool


class AccountSyncLogResponse(BaseModel):
    id: str
    account_id: str
    sync_type: str
    status: str
    records_imported: int
    records_failed: int
    error_message: Optional[str] = None
    synced_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TokenRefreshSweepResponse(BaseModel):
    refreshed: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


class BatchSyncResponse(BaseModel):
    results: list[SyncStatusResponse]
    succeeded: int
    failed: int


class BalanceSweepResponse(BaseModel):
    results: dict[str, str]
