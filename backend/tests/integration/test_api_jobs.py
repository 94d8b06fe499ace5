"""Integration tests for the job trigger API."""

from datetime import timedelta

from tests.fixtures import create_authorized_consent, create_connected_account
from tests.fixtures.mocks import make_transaction


class TestRefreshTokensJob:
    """Tests for POST /api/open-finance/jobs/refresh-tokens."""

    def test_refreshes_only_expiring(self, client, db, token_vault, institution, consent, institution_client):
        expiring = create_authorized_consent(
            db, token_vault, institution, user_id="user-3", expires_in=timedelta(minutes=2)
        )

        response = client.post("/api/open-finance/jobs/refresh-tokens")
        assert response.status_code == 200
        assert response.json() == {"refreshed": [expiring.id], "failed": {}}

    def test_failures_reported(self, client, db, token_vault, institution, institution_client):
        expiring = create_authorized_consent(
            db, token_vault, institution, expires_in=timedelta(minutes=2)
        )
        institution_client.should_fail = True

        response = client.post("/api/open-finance/jobs/refresh-tokens")
        assert response.status_code == 200
        assert list(response.json()["failed"]) == [expiring.id]


class TestSyncAccountsJob:
    """Tests for POST /api/open-finance/jobs/sync-accounts."""

    def test_syncs_due_accounts(self, client, db, consent, institution_client):
        create_connected_account(db, consent, external_account_id="ext-acc-1")
        create_connected_account(db, consent, external_account_id="ext-acc-2", account_number="98765-4")
        institution_client.pages["ext-acc-1"] = [[make_transaction("tx-1")]]
        institution_client.failing_accounts = {"ext-acc-2"}

        response = client.post("/api/open-finance/jobs/sync-accounts")
        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"] == 1
        assert data["failed"] == 1
        assert len(data["results"]) == 2


class TestSyncBalancesJob:
    """Tests for POST /api/open-finance/jobs/sync-balances."""

    def test_reports_per_account(self, client, connected_account):
        response = client.post("/api/open-finance/jobs/sync-balances")
        assert response.status_code == 200
        assert response.json() == {"results": {connected_account.id: "SUCCESS"}}


class TestJobsDisabled:
    def test_open_finance_disabled_404(self, client_without_core):
        response = client_without_core.post("/api/open-finance/jobs/sync-accounts")
        assert response.status_code == 404
