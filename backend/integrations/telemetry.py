"""Telemetry collaborator for the aggregation core.

Counters are fire-and-forget: the core only ever talks to a
:class:`SafeTelemetry`, so a failing sink can never break a sync or a
consent operation.
"""

import logging
import threading
from collections import Counter
from typing import Protocol

logger = logging.getLogger(__name__)


class Telemetry(Protocol):
    def record_sync_success(self) -> None: ...

    def record_sync_failure(self) -> None: ...

    def record_imported_record(self) -> None: ...

    def record_consent_created(self) -> None: ...

    def record_consent_revoked(self) -> None: ...


class NullTelemetry:
    """Default sink used when no telemetry backend is configured."""

    def record_sync_success(self) -> None:
        pass

    def record_sync_failure(self) -> None:
        pass

    def record_imported_record(self) -> None:
        pass

    def record_consent_created(self) -> None:
        pass

    def record_consent_revoked(self) -> None:
        pass


class LoggingTelemetry:
    """In-process counters, logged at DEBUG as they change."""

    def __init__(self):
        self._lock = threading.Lock()
        self.counters: Counter[str] = Counter()

    def _incr(self, name: str) -> None:
        with self._lock:
            self.counters[name] += 1
            value = self.counters[name]
        logger.debug("telemetry %s=%d", name, value)

    def record_sync_success(self) -> None:
        self._incr("open_finance.sync.success")

    def record_sync_failure(self) -> None:
        self._incr("open_finance.sync.failure")

    def record_imported_record(self) -> None:
        self._incr("open_finance.transactions.imported")

    def record_consent_created(self) -> None:
        self._incr("open_finance.consent.created")

    def record_consent_revoked(self) -> None:
        self._incr("open_finance.consent.revoked")


class SafeTelemetry:
    """Wraps any telemetry sink and swallows (but logs) its failures."""

    def __init__(self, inner: Telemetry | None = None):
        self._inner = inner or NullTelemetry()

    def _call(self, name: str) -> None:
        try:
            getattr(self._inner, name)()
        except Exception:
            logger.warning("Telemetry call %s failed", name, exc_info=True)

    def record_sync_success(self) -> None:
        self._call("record_sync_success")

    def record_sync_failure(self) -> None:
        self._call("record_sync_failure")

    def record_imported_record(self) -> None:
        self._call("record_imported_record")

    def record_consent_created(self) -> None:
        self._call("record_consent_created")

    def record_consent_revoked(self) -> None:
        self._call("record_consent_revoked")
