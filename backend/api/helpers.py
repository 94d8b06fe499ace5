"""Shared API helpers for route handlers.

Dependencies for the current user and the aggregation core, the mapping
from domain errors to HTTP status codes, and response builders used
across the Open Finance route files.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from fastapi import Header, HTTPException

from integrations.exceptions import InstitutionError
from models import ConnectedAccount, Consent
from services.aggregation import AggregationCore
from services.exceptions import (
    AccessDeniedError,
    CertificateConfigurationError,
    NotFoundError,
    StateConflictError,
)
from services.transaction_sync_service import SyncOutcome

logger = logging.getLogger(__name__)

_aggregation_core: Optional[AggregationCore] = None


def set_aggregation_core(core: Optional[AggregationCore]) -> None:
    """Install (or clear) the process-wide aggregation core."""
    global _aggregation_core
    _aggregation_core = core


def get_aggregation_core() -> AggregationCore:
    """Dependency returning the aggregation core.

    Raises:
        HTTPException: 404 when Open Finance is not enabled.
    """
    if _aggregation_core is None:
        raise HTTPException(status_code=404, detail="Open Finance is not enabled")
    return _aggregation_core


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Dependency resolving the requesting user from the ``X-User-Id`` header.

    Authentication itself happens upstream; this only reads the identity
    the gateway forwards.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


@contextmanager
def domain_errors(action: str) -> Iterator[None]:
    """Translate domain and institution errors into HTTP responses.

    - NotFoundError -> 404
    - AccessDeniedError -> 403
    - StateConflictError -> 409
    - InstitutionError -> 502
    - anything else -> 500 with a generic detail
    """
    try:
        yield
    except HTTPException:
        raise
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except AccessDeniedError as e:
        logger.warning("%s denied: %s", action, e)
        raise HTTPException(status_code=403, detail="Access denied") from e
    except StateConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except InstitutionError as e:
        logger.warning("%s failed at institution: %s", action, e)
        raise HTTPException(status_code=502, detail=str(e)) from e
    except CertificateConfigurationError as e:
        logger.error("%s failed: %s", action, e)
        raise HTTPException(
            status_code=500, detail="Open Finance transport is misconfigured"
        ) from e
    except Exception as e:
        logger.error("%s failed unexpectedly", action, exc_info=True)
        raise HTTPException(status_code=500, detail=f"{action} failed") from e


def consent_response_dict(consent: Consent) -> dict:
    """Build a ConsentResponse-compatible dict from a Consent."""
    return {
        "id": consent.id,
        "user_id": consent.user_id,
        "institution_id": consent.institution_id,
        "institution_name": consent.institution.name if consent.institution else None,
        "status": consent.effective_status(),
        "scopes": consent.scope_list,
        "expires_at": consent.expires_at,
        "created_at": consent.created_at,
        "authorized_at": consent.authorized_at,
        "revoked_at": consent.revoked_at,
        "is_active": consent.is_active(),
    }


def account_response_dict(account: ConnectedAccount) -> dict:
    """Build a ConnectedAccountResponse-compatible dict from a ConnectedAccount."""
    return {
        "id": account.id,
        "user_id": account.user_id,
        "consent_id": account.consent_id,
        "institution_id": account.institution_id,
        "institution_name": account.institution.name if account.institution else None,
        "external_account_id": account.external_account_id,
        "account_type": account.account_type,
        "account_number": account.account_number,
        "branch": account.branch,
        "account_holder_name": account.account_holder_name,
        "balance": account.balance,
        "currency": account.currency,
        "last_synced_at": account.last_synced_at,
        "balance_updated_at": account.balance_updated_at,
        "sync_status": account.sync_status,
    }


def sync_outcome_dict(outcome: SyncOutcome) -> dict:
    """Build a SyncStatusResponse-compatible dict from a SyncOutcome."""
    return {
        "account_id": outcome.account_id,
        "sync_status": outcome.status,
        "sync_type": outcome.sync_type,
        "records_imported": outcome.records_imported,
        "records_failed": outcome.records_failed,
        "error_message": outcome.error_message,
        "synced_at": outcome.synced_at,
        "success": outcome.success,
    }
