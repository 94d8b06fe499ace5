"""Tests for the telemetry and realtime collaborators."""

import logging

from integrations.realtime import NullNotifier, SafeNotifier
from integrations.telemetry import LoggingTelemetry, NullTelemetry, SafeTelemetry
from tests.fixtures.mocks import RecordingNotifier, RecordingTelemetry


class TestTelemetry:
    def test_logging_telemetry_counts(self, caplog):
        telemetry = LoggingTelemetry()
        with caplog.at_level(logging.DEBUG, logger="integrations.telemetry"):
            telemetry.record_sync_success()
            telemetry.record_sync_success()
            telemetry.record_imported_record()
        assert telemetry.counters["open_finance.sync.success"] == 2
        assert telemetry.counters["open_finance.transactions.imported"] == 1
        assert "open_finance.sync.success=2" in caplog.text

    def test_safe_telemetry_forwards(self):
        inner = RecordingTelemetry()
        safe = SafeTelemetry(inner)
        safe.record_consent_created()
        safe.record_consent_revoked()
        safe.record_sync_failure()
        assert inner.events == ["consent_created", "consent_revoked", "sync_failure"]

    def test_safe_telemetry_swallows_failures(self, caplog):
        SafeTelemetry(RecordingTelemetry(should_fail=True)).record_sync_success()
        assert "Telemetry call record_sync_success failed" in caplog.text

    def test_defaults_to_null(self):
        SafeTelemetry().record_sync_success()
        NullTelemetry().record_imported_record()


class TestNotifier:
    def test_safe_notifier_forwards(self):
        inner = RecordingNotifier()
        safe = SafeNotifier(inner)
        safe.broadcast_to_user("topic", "user-1", {"id": "x"})
        safe.notify_transaction_update("user-1", {"id": "t"})
        assert inner.broadcasts == [("topic", "user-1", {"id": "x"})]
        assert inner.transaction_updates == [("user-1", {"id": "t"})]

    def test_safe_notifier_swallows_failures(self, caplog):
        safe = SafeNotifier(RecordingNotifier(should_fail=True))
        safe.broadcast_to_user("topic", "user-1", {})
        safe.notify_transaction_update("user-1", {})
        assert "Realtime broadcast on topic" in caplog.text
        assert "Realtime transaction update" in caplog.text

    def test_null_notifier(self):
        SafeNotifier().broadcast_to_user("t", "u", {})
        NullNotifier().notify_transaction_update("u", {})
