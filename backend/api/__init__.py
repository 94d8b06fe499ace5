"""API route handlers."""
from . import connected_accounts, consents, institutions, jobs

__all__ = ["connected_accounts", "consents", "institutions", "jobs"]
