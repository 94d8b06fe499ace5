"""Tests for the add_institution and run_sync_jobs scripts."""

import sys
from unittest.mock import MagicMock, patch

import pytest

from models import Institution
from scripts import add_institution, run_sync_jobs
from services.consent_service import RefreshSweepResult
from services.transaction_sync_service import SyncOutcome

ARGS = [
    "add_institution",
    "--code", "BANCOX",
    "--name", "Banco X",
    "--api-base-url", "https://api.bancox.example",
    "--authorization-url", "https://auth.bancox.example/authorize",
    "--token-url", "https://auth.bancox.example/token",
]


class TestAddInstitution:
    def test_creates_then_updates(self, db, session_factory, capsys):
        with patch.object(add_institution, "get_session_local", return_value=session_factory):
            with patch.object(sys, "argv", ARGS):
                add_institution.main()
            with patch.object(sys, "argv", [*ARGS[:4], "Banco X S.A.", *ARGS[5:], "--inactive"]):
                add_institution.main()

        out = capsys.readouterr().out
        assert "Created institution BANCOX" in out
        assert "Updated institution BANCOX" in out

        db.expire_all()
        institution = db.query(Institution).filter_by(code="BANCOX").one()
        assert institution.name == "Banco X S.A."
        assert institution.is_active is False
        assert institution.effective_revocation_url == "https://auth.bancox.example/revoke"


class TestRunJob:
    def test_refresh_tokens(self, capsys):
        jobs = MagicMock()
        jobs.refresh_expiring_tokens.return_value = RefreshSweepResult(
            refreshed=["c1"], failed={"c2": "Consent c2 is not active"}
        )
        assert run_sync_jobs.run_job(jobs, "refresh-tokens") == 1
        out = capsys.readouterr().out
        assert "Tokens refreshed: 1, failed: 1" in out
        assert "c2: Consent c2 is not active" in out

    def test_sync_accounts(self, capsys):
        jobs = MagicMock()
        jobs.sync_all_accounts.return_value = [
            SyncOutcome(account_id="a1", status="SUCCESS", sync_type="TRANSACTIONS", records_imported=4),
            SyncOutcome(
                account_id="a2", status="FAILED", sync_type="TRANSACTIONS",
                records_imported=0, error_message="timeout",
            ),
        ]
        assert run_sync_jobs.run_job(jobs, "sync-accounts") == 1
        assert "records imported: 4" in capsys.readouterr().out

    def test_sync_balances_all_ok(self):
        jobs = MagicMock()
        jobs.sync_all_balances.return_value = {"a1": "SUCCESS"}
        assert run_sync_jobs.run_job(jobs, "sync-balances") == 0


class TestRunSyncJobsMain:
    def test_disabled_is_noop(self, capsys):
        with patch.object(run_sync_jobs.settings, "OPEN_FINANCE_ENABLED", False), \
                patch.object(sys, "argv", ["run_sync_jobs", "sync-accounts"]), \
                patch.object(run_sync_jobs, "build_aggregation_core") as mock_build:
            run_sync_jobs.main()
        mock_build.assert_not_called()
        assert "disabled" in capsys.readouterr().out

    def test_exit_code_reflects_failures(self):
        core = MagicMock()
        core.jobs.sync_all_balances.return_value = {"a1": "timeout"}
        with patch.object(run_sync_jobs.settings, "OPEN_FINANCE_ENABLED", True), \
                patch.object(sys, "argv", ["run_sync_jobs", "sync-balances"]), \
                patch.object(run_sync_jobs, "get_session_local"), \
                patch.object(run_sync_jobs, "build_aggregation_core", return_value=core):
            with pytest.raises(SystemExit) as exc_info:
                run_sync_jobs.main()
        assert exc_info.value.code == 1
