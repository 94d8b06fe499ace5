"""Open Finance consent endpoints.

Covers the authorization-code flow (initiate, callback) and consent
management (list, detail, refresh, revoke).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import (
    consent_response_dict,
    domain_errors,
    get_aggregation_core,
    get_current_user_id,
)
from database import get_db
from schemas import ConsentInitiateRequest, ConsentInitiateResponse, ConsentResponse
from services.aggregation import AggregationCore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/open-finance/consents", tags=["open-finance"])


@router.post("/initiate", response_model=ConsentInitiateResponse, status_code=201)
def initiate_consent(
    request: ConsentInitiateRequest,
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    """Start the consent flow and return the institution's authorization URL.

    Raises:
        HTTPException:
            - 404 Not Found: Unknown or inactive institution
            - 409 Conflict: An active consent already exists for the institution
    """
    with domain_errors("Consent initiation"):
        initiation = core.consents.initiate_consent(
            db, user_id, request.institution_id, request.scopes
        )
        db.commit()
    return {
        "consent_id": initiation.consent_id,
        "authorization_url": initiation.authorization_url,
        "state": initiation.state,
    }


@router.get("/callback", response_model=ConsentResponse)
def consent_callback(
    consent_id: str = Query(...),
    code: str = Query(...),
    state: str = Query(...),
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
):
    """OAuth redirect target: validate ``state`` then authorize the consent.

    Raises:
        HTTPException:
            - 403 Forbidden: ``state`` does not match the consent
            - 404 Not Found: Unknown consent
            - 409 Conflict: Consent is not PENDING
            - 502 Bad Gateway: Code exchange failed at the institution
    """
    with domain_errors("Consent callback"):
        if not core.consents.verify_state(db, consent_id, state):
            logger.warning("Consent %s: callback state mismatch", consent_id)
            raise HTTPException(status_code=403, detail="Invalid state")
        consent = core.consents.handle_callback(db, consent_id, code, state)
        db.commit()
        return consent_response_dict(consent)


@router.get("", response_model=list[ConsentResponse])
def list_consents(
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    """List the requesting user's consents, newest first."""
    return [consent_response_dict(c) for c in core.consents.list_user_consents(db, user_id)]


@router.get("/{consent_id}", response_model=ConsentResponse)
def get_consent(
    consent_id: str,
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    with domain_errors("Consent lookup"):
        return consent_response_dict(core.consents.get_consent(db, consent_id, user_id))


@router.post("/{consent_id}/refresh", response_model=ConsentResponse)
def refresh_consent(
    consent_id: str,
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    """Refresh the consent's access token now."""
    with domain_errors("Token refresh"):
        core.consents.get_consent(db, consent_id, user_id)
        consent = core.consents.refresh_token(db, consent_id)
        db.commit()
        return consent_response_dict(consent)


@router.delete("/{consent_id}", response_model=ConsentResponse)
def revoke_consent(
    consent_id: str,
    db: Session = Depends(get_db),
    core: AggregationCore = Depends(get_aggregation_core),
    user_id: str = Depends(get_current_user_id),
):
    """Revoke the consent. Remote revocation is best-effort."""
    with domain_errors("Consent revocation"):
        consent = core.consents.revoke_consent(db, consent_id, user_id)
        db.commit()
        return consent_response_dict(consent)
