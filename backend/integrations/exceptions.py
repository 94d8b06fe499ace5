"""Typed exception hierarchy for institution API errors.

Provides structured exceptions for differentiated error handling
(auth errors vs transient network errors vs data issues). Messages
never carry token, code or key material.
"""


class InstitutionError(Exception):
    """Base exception for all institution-related errors.

    Carries the institution code so callers can identify which institution failed.
    """

    def __init__(self, message: str, institution_code: str = ""):
        self.institution_code = institution_code
        super().__init__(message)


class InstitutionAuthError(InstitutionError):
    """Credentials missing, expired, or rejected (HTTP 401/403)."""

    pass


class InstitutionConnectionError(InstitutionError):
    """Network failures: timeouts, DNS resolution, connection refused, TLS.

    Retriable by default.
    """

    def __init__(self, message: str, institution_code: str = "", retriable: bool = True):
        self.retriable = retriable
        super().__init__(message, institution_code)


class InstitutionAPIError(InstitutionError):
    """Non-2xx responses from the institution API."""

    def __init__(
        self,
        message: str,
        institution_code: str = "",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, institution_code)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class InstitutionDataError(InstitutionError):
    """Malformed or unparseable response from the institution."""

    pass
