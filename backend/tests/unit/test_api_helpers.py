"""Tests for api.helpers."""

import pytest
from fastapi import HTTPException

from api.helpers import (
    domain_errors,
    get_aggregation_core,
    get_current_user_id,
    set_aggregation_core,
)
from integrations.exceptions import InstitutionAPIError
from services.exceptions import (
    AccessDeniedError,
    CertificateConfigurationError,
    NotFoundError,
    StateConflictError,
    TokenUnavailableError,
)


class TestDomainErrors:
    @pytest.mark.parametrize(
        "error, status",
        [
            (NotFoundError("missing"), 404),
            (AccessDeniedError("nope"), 403),
            (StateConflictError("busy"), 409),
            (TokenUnavailableError("reauth"), 409),
            (InstitutionAPIError("down", status_code=503), 502),
            (CertificateConfigurationError("bad key"), 500),
            (RuntimeError("boom"), 500),
        ],
    )
    def test_maps_status(self, error, status):
        with pytest.raises(HTTPException) as exc_info:
            with domain_errors("Doing it"):
                raise error
        assert exc_info.value.status_code == status

    def test_access_denied_detail_is_generic(self):
        with pytest.raises(HTTPException) as exc_info:
            with domain_errors("Lookup"):
                raise AccessDeniedError("Consent abc belongs to user-9")
        assert exc_info.value.detail == "Access denied"

    def test_unexpected_error_detail_is_generic(self):
        with pytest.raises(HTTPException) as exc_info:
            with domain_errors("Account discovery"):
                raise RuntimeError("password=hunter2")
        assert exc_info.value.detail == "Account discovery failed"

    def test_http_exception_passes_through(self):
        with pytest.raises(HTTPException) as exc_info:
            with domain_errors("Anything"):
                raise HTTPException(status_code=418, detail="teapot")
        assert exc_info.value.status_code == 418


class TestDependencies:
    def test_core_not_enabled(self):
        set_aggregation_core(None)
        with pytest.raises(HTTPException) as exc_info:
            get_aggregation_core()
        assert exc_info.value.status_code == 404

    def test_core_installed(self, core):
        set_aggregation_core(core)
        try:
            assert get_aggregation_core() is core
        finally:
            set_aggregation_core(None)

    def test_user_header(self):
        assert get_current_user_id(" user-1 ") == "user-1"
        for value in (None, "", "  "):
            with pytest.raises(HTTPException) as exc_info:
                get_current_user_id(value)
            assert exc_info.value.status_code == 401
