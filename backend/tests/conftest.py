"""Pytest configuration and fixtures."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.helpers import get_aggregation_core
from database import Base, get_db
from main import app
from services.account_service import AccountDiscoveryService
from services.aggregation import AggregationCore
from services.certificate_provisioner import CertificateProvisioner, CertificateSettings
from services.consent_service import ConsentLifecycleManager
from services.sync_jobs import SyncJobs
from services.transaction_sync_service import TransactionSyncEngine
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    connected_account,
    consent,
    institution,
    token_vault,
)
from tests.fixtures.mocks import MockInstitutionClient, RecordingNotifier, RecordingTelemetry

REDIRECT_URI = "http://localhost:8000/api/open-finance/consents/callback"


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="institution_client")
def institution_client_fixture():
    return MockInstitutionClient()


@pytest.fixture(name="telemetry")
def telemetry_fixture():
    return RecordingTelemetry()


@pytest.fixture(name="notifier")
def notifier_fixture():
    return RecordingNotifier()


@pytest.fixture(name="consent_manager")
def consent_manager_fixture(institution_client, token_vault, telemetry, notifier):
    return ConsentLifecycleManager(
        institution_client,
        token_vault,
        redirect_uri=REDIRECT_URI,
        default_scopes=["accounts", "transactions"],
        refresh_lookahead=timedelta(minutes=5),
        telemetry=telemetry,
        notifier=notifier,
    )


@pytest.fixture(name="account_service")
def account_service_fixture(institution_client, consent_manager, telemetry, notifier):
    return AccountDiscoveryService(
        institution_client, consent_manager, telemetry=telemetry, notifier=notifier
    )


@pytest.fixture(name="sync_engine")
def sync_engine_fixture(institution_client, consent_manager, telemetry, notifier):
    return TransactionSyncEngine(
        institution_client,
        consent_manager,
        page_size=50,
        telemetry=telemetry,
        notifier=notifier,
    )


@pytest.fixture(name="core")
def core_fixture(
    institution_client,
    token_vault,
    consent_manager,
    account_service,
    sync_engine,
    session_factory,
):
    """Aggregation core wired to the mock institution client."""
    return AggregationCore(
        provisioner=CertificateProvisioner(CertificateSettings()),
        client=institution_client,
        vault=token_vault,
        consents=consent_manager,
        accounts=account_service,
        sync_engine=sync_engine,
        jobs=SyncJobs(consent_manager, sync_engine, account_service, session_factory),
    )


@pytest.fixture(name="client")
def client_fixture(db, core):
    """Create a test client with the test database and a mocked aggregation core."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_aggregation_core] = lambda: core
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="client_without_core")
def client_without_core_fixture(db):
    """Test client for a deployment with Open Finance disabled."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
