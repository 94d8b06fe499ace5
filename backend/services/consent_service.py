"""Consent lifecycle - creation, authorization callback, refresh, revocation.

State machine::

    PENDING --callback--> AUTHORIZED --revoke--> REVOKED
                             |  ^
                             +--+ refresh (in place)

``EXPIRED`` is derived from ``expires_at`` and never stored. At most one
active consent exists per (user, institution) pair.
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from integrations.institution_protocol import InstitutionApiClient
from integrations.realtime import CONSENTS_TOPIC, RealtimeNotifier, SafeNotifier
from integrations.telemetry import SafeTelemetry, Telemetry
from models import Consent, ConsentStatus, Institution, to_naive_utc, utcnow
from services.exceptions import (
    AccessDeniedError,
    NotFoundError,
    StateConflictError,
    TokenUnavailableError,
)
from services.token_vault import TokenVault

logger = logging.getLogger(__name__)


@dataclass
class ConsentInitiation:
    """What the web layer needs to redirect the user to the institution."""

    consent_id: str
    authorization_url: str
    state: str = field(repr=False)


@dataclass
class RefreshSweepResult:
    refreshed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # consent id -> error


def _hash_state(state: str) -> str:
    return hashlib.sha256(state.encode("utf-8")).hexdigest()


def consent_event(consent: Consent) -> dict:
    """Realtime payload for a consent change. Carries no token material."""
    return {
        "id": consent.id,
        "institution_id": consent.institution_id,
        "status": consent.effective_status(),
        "expires_at": consent.expires_at.isoformat() if consent.expires_at else None,
        "revoked_at": consent.revoked_at.isoformat() if consent.revoked_at else None,
    }


class ConsentLifecycleManager:
    """Owns the consent state machine.

    Methods take the caller's session and only ``flush()``; the caller
    commits. :meth:`refresh_expiring_tokens` is the exception: it commits
    per consent.
    """

    def __init__(
        self,
        client: InstitutionApiClient,
        vault: TokenVault,
        redirect_uri: str,
        default_scopes: list[str],
        refresh_lookahead: timedelta = timedelta(minutes=5),
        telemetry: Telemetry | None = None,
        notifier: RealtimeNotifier | None = None,
    ):
        self._client = client
        self._vault = vault
        self._redirect_uri = redirect_uri
        self._default_scopes = list(default_scopes)
        self._refresh_lookahead = refresh_lookahead
        self._telemetry = telemetry if isinstance(telemetry, SafeTelemetry) else SafeTelemetry(telemetry)
        self._notifier = notifier if isinstance(notifier, SafeNotifier) else SafeNotifier(notifier)

    # --- lookups ---

    @staticmethod
    def _get_consent(db: Session, consent_id: str) -> Consent:
        consent = db.get(Consent, consent_id)
        if consent is None:
            raise NotFoundError(f"Consent {consent_id} not found")
        return consent

    @staticmethod
    def _find_active_consent(
        db: Session, user_id: str, institution_id: str, exclude_id: str | None = None
    ) -> Consent | None:
        now = utcnow()
        query = db.query(Consent).filter(
            Consent.user_id == user_id,
            Consent.institution_id == institution_id,
            Consent.status == ConsentStatus.AUTHORIZED.value,
            Consent.revoked_at.is_(None),
            or_(Consent.expires_at.is_(None), Consent.expires_at > now),
        )
        if exclude_id is not None:
            query = query.filter(Consent.id != exclude_id)
        return query.first()

    def get_consent(self, db: Session, consent_id: str, user_id: str) -> Consent:
        consent = self._get_consent(db, consent_id)
        if consent.user_id != user_id:
            raise AccessDeniedError(f"Consent {consent_id} does not belong to the requesting user")
        return consent

    def list_user_consents(self, db: Session, user_id: str) -> list[Consent]:
        return (
            db.query(Consent)
            .filter_by(user_id=user_id)
            .order_by(Consent.created_at.desc())
            .all()
        )

    # --- transitions ---

    def initiate_consent(
        self,
        db: Session,
        user_id: str,
        institution_id: str,
        scopes: list[str] | None = None,
    ) -> ConsentInitiation:
        """Create a PENDING consent and build the authorization URL.

        Raises:
            NotFoundError: Institution missing or inactive.
            StateConflictError: The user already holds an active consent there.
        """
        institution = db.get(Institution, institution_id)
        if institution is None or not institution.is_active:
            raise NotFoundError(f"Institution {institution_id} not found")

        active = self._find_active_consent(db, user_id, institution_id)
        if active is not None:
            raise StateConflictError(
                f"An active consent ({active.id}) already exists for institution {institution.code}"
            )

        scope_list = list(scopes) if scopes else list(self._default_scopes)
        state = secrets.token_urlsafe(32)
        consent = Consent(
            user_id=user_id,
            institution_id=institution.id,
            status=ConsentStatus.PENDING.value,
            scopes=",".join(scope_list),
            state_hash=_hash_state(state),
        )
        db.add(consent)
        db.flush()

        url = self._client.authorize_url(institution, user_id, state, scope_list)
        self._telemetry.record_consent_created()
        logger.info(
            "Consent %s initiated for user %s at %s (scopes: %s)",
            consent.id, user_id, institution.code, consent.scopes,
        )
        return ConsentInitiation(consent_id=consent.id, authorization_url=url, state=state)

    def verify_state(self, db: Session, consent_id: str, state: str | None) -> bool:
        """Constant-time check of a callback ``state`` against the stored hash."""
        consent = self._get_consent(db, consent_id)
        if not state or not consent.state_hash:
            return False
        return hmac.compare_digest(consent.state_hash, _hash_state(state))

    def handle_callback(
        self, db: Session, consent_id: str, code: str, state: str | None = None
    ) -> Consent:
        """Exchange the authorization code and move the consent to AUTHORIZED.

        ``state`` is expected to have been validated by the web layer; when
        passed here it is checked again.

        Raises:
            NotFoundError: Consent missing.
            StateConflictError: Consent not PENDING, or another active
                consent now exists for the same user and institution.
            AccessDeniedError: ``state`` does not match.
            InstitutionError: The code exchange failed.
        """
        consent = self._get_consent(db, consent_id)
        if consent.status != ConsentStatus.PENDING.value:
            raise StateConflictError(f"Consent {consent_id} is {consent.status}, expected PENDING")
        if state is not None and not (
            consent.state_hash and hmac.compare_digest(consent.state_hash, _hash_state(state))
        ):
            raise AccessDeniedError(f"Callback state does not match consent {consent_id}")

        other = self._find_active_consent(
            db, consent.user_id, consent.institution_id, exclude_id=consent.id
        )
        if other is not None:
            raise StateConflictError(
                f"An active consent ({other.id}) already exists for this institution"
            )

        tokens = self._client.exchange_code(consent.institution, code, self._redirect_uri)

        now = utcnow()
        consent.access_token_cipher = self._vault.encrypt(tokens.access_token)
        consent.refresh_token_cipher = self._vault.encrypt(tokens.refresh_token)
        consent.expires_at = to_naive_utc(tokens.expires_at)
        consent.authorized_at = now
        consent.status = ConsentStatus.AUTHORIZED.value
        consent.state_hash = None
        db.flush()

        logger.info(
            "Consent %s authorized (expires %s)",
            consent.id, consent.expires_at.isoformat() if consent.expires_at else "never",
        )
        self._notifier.broadcast_to_user(CONSENTS_TOPIC, consent.user_id, consent_event(consent))
        return consent

    def refresh_token(self, db: Session, consent_id: str) -> Consent:
        """Exchange the stored refresh token for a new access token.

        The refresh token is only replaced when the institution rotates it.

        Raises:
            NotFoundError: Consent missing.
            StateConflictError: Consent not active.
            TokenUnavailableError: No readable refresh token is stored.
            InstitutionError: The refresh call failed.
        """
        consent = self._get_consent(db, consent_id)
        if not consent.is_active():
            raise StateConflictError(f"Consent {consent_id} is not active")

        refresh_token = self._vault.decrypt(consent.refresh_token_cipher)
        if not refresh_token:
            raise TokenUnavailableError(
                f"Consent {consent_id} has no usable refresh token; re-authorization required"
            )

        tokens = self._client.refresh(consent.institution, refresh_token)

        consent.access_token_cipher = self._vault.encrypt(tokens.access_token)
        if tokens.refresh_token:
            consent.refresh_token_cipher = self._vault.encrypt(tokens.refresh_token)
        consent.expires_at = to_naive_utc(tokens.expires_at)
        db.flush()

        logger.info(
            "Consent %s refreshed (refresh token %s)",
            consent.id, "rotated" if tokens.refresh_token else "kept",
        )
        return consent

    def revoke_consent(self, db: Session, consent_id: str, user_id: str | None = None) -> Consent:
        """Revoke a consent locally, and best-effort at the institution.

        Raises:
            NotFoundError: Consent missing.
            AccessDeniedError: ``user_id`` given and not the owner.
            StateConflictError: Consent already revoked.
        """
        consent = self._get_consent(db, consent_id)
        if user_id is not None and consent.user_id != user_id:
            raise AccessDeniedError(f"Consent {consent_id} does not belong to the requesting user")
        if consent.status == ConsentStatus.REVOKED.value:
            raise StateConflictError(f"Consent {consent_id} is already revoked")

        for cipher, hint in (
            (consent.access_token_cipher, "access_token"),
            (consent.refresh_token_cipher, "refresh_token"),
        ):
            token = self._vault.decrypt(cipher)
            if not token:
                continue
            try:
                self._client.revoke(consent.institution, token, hint)
            except Exception as e:
                logger.warning(
                    "Remote revoke of %s for consent %s failed: %s", hint, consent.id, e
                )

        consent.status = ConsentStatus.REVOKED.value
        consent.revoked_at = utcnow()
        consent.state_hash = None
        db.flush()

        logger.info("Consent %s revoked", consent.id)
        self._telemetry.record_consent_revoked()
        self._notifier.broadcast_to_user(CONSENTS_TOPIC, consent.user_id, consent_event(consent))
        return consent

    def get_access_token(self, db: Session, consent_id: str) -> str:
        """Return the plaintext access token for immediate, single use.

        Callers must not persist or log the returned value.

        Raises:
            NotFoundError: Consent missing.
            StateConflictError: Consent not active.
            TokenUnavailableError: The stored ciphertext is unreadable.
        """
        consent = self._get_consent(db, consent_id)
        if not consent.is_active():
            raise StateConflictError(f"Consent {consent_id} is not active")
        token = self._vault.decrypt(consent.access_token_cipher)
        if not token:
            raise TokenUnavailableError(
                f"Consent {consent_id} has no usable access token; re-authorization required"
            )
        return token

    # --- sweep ---

    def refresh_expiring_tokens(self, db: Session) -> RefreshSweepResult:
        """Refresh every active consent expiring within the lookahead window.

        Each consent is committed (or rolled back) on its own; one failure
        never stops the sweep.
        """
        now = utcnow()
        horizon = now + self._refresh_lookahead
        consent_ids = [
            row.id
            for row in db.query(Consent.id)
            .filter(
                Consent.status == ConsentStatus.AUTHORIZED.value,
                Consent.revoked_at.is_(None),
                Consent.expires_at.isnot(None),
                Consent.expires_at >= now,
                Consent.expires_at <= horizon,
            )
            .order_by(Consent.expires_at)
            .all()
        ]

        result = RefreshSweepResult()
        for consent_id in consent_ids:
            try:
                self.refresh_token(db, consent_id)
                db.commit()
                result.refreshed.append(consent_id)
            except Exception as e:
                db.rollback()
                logger.warning("Token refresh failed for consent %s: %s", consent_id, e)
                result.failed[consent_id] = str(e)

        logger.info(
            "Token refresh sweep: %d refreshed, %d failed",
            len(result.refreshed), len(result.failed),
        )
        return result
