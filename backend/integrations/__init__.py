"""External API integrations.

This package contains:
- Institution protocol: The interface the aggregation core uses for OAuth and account data
- Open Finance client: httpx implementation of the protocol over mTLS
- Blob store: Object storage client used to fetch certificate material
- Telemetry and realtime collaborators, each with a no-op default
"""

from integrations.exceptions import InstitutionError
from integrations.institution_protocol import (
    AccountBalance,
    AccountInfo,
    InstitutionApiClient,
    RemoteTransaction,
    TokenResponse,
    TransactionPage,
)
from integrations.open_finance_client import OpenFinanceClient

__all__ = [
    "AccountBalance",
    "AccountInfo",
    "InstitutionApiClient",
    "InstitutionError",
    "OpenFinanceClient",
    "RemoteTransaction",
    "TokenResponse",
    "TransactionPage",
]
