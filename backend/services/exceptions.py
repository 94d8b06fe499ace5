"""Domain exceptions raised by the Open Finance services.

The API layer maps these onto HTTP status codes; batch jobs catch them
per item. Messages identify records by id only and never include token
or key material.
"""


class OpenFinanceError(Exception):
    """Base class for aggregation-core domain errors."""

    pass


class NotFoundError(OpenFinanceError):
    """A referenced institution, consent or account does not exist."""

    pass


class StateConflictError(OpenFinanceError):
    """The record is not in a state that allows the requested operation."""

    pass


class TokenUnavailableError(StateConflictError):
    """A stored token is missing or cannot be decrypted; re-authorization is required."""

    pass


class AccessDeniedError(OpenFinanceError):
    """The record does not belong to the requesting user."""

    pass


class CertificateConfigurationError(OpenFinanceError):
    """Certificate material is configured but unreadable or inconsistent."""

    pass
