"""Realtime notifier collaborator.

Pushes update events to a user's connected clients. Optional: when no
notifier is configured the core gets a :class:`NullNotifier`, and every
notifier is wrapped in :class:`SafeNotifier` so delivery failures are
logged and dropped.
"""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

CONSENTS_TOPIC = "open_finance_consents"
ACCOUNTS_TOPIC = "connected_accounts"


class RealtimeNotifier(Protocol):
    def notify_transaction_update(self, user_id: str, payload: dict[str, Any]) -> None: ...

    def broadcast_to_user(self, topic: str, user_id: str, payload: dict[str, Any]) -> None: ...


class NullNotifier:
    def notify_transaction_update(self, user_id: str, payload: dict[str, Any]) -> None:
        pass

    def broadcast_to_user(self, topic: str, user_id: str, payload: dict[str, Any]) -> None:
        pass


class SafeNotifier:
    """Wraps a notifier so that a failed push never reaches the caller."""

    def __init__(self, inner: RealtimeNotifier | None = None):
        self._inner = inner or NullNotifier()

    def notify_transaction_update(self, user_id: str, payload: dict[str, Any]) -> None:
        try:
            self._inner.notify_transaction_update(user_id, payload)
        except Exception:
            logger.warning("Realtime transaction update for user %s failed", user_id, exc_info=True)

    def broadcast_to_user(self, topic: str, user_id: str, payload: dict[str, Any]) -> None:
        try:
            self._inner.broadcast_to_user(topic, user_id, payload)
        except Exception:
            logger.warning("Realtime broadcast on %s for user %s failed", topic, user_id, exc_info=True)
