"""Object storage client used to fetch mTLS material.

Speaks the Supabase Storage object API
(``GET {base}/storage/v1/object/{bucket}/{name}``) with a service token.
"""

import logging
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class BlobStoreError(Exception):
    """The storage backend could not be reached or refused the request."""

    pass


class BlobStore(Protocol):
    def download(self, bucket: str, name: str) -> bytes | None:
        """Return the object's bytes, or ``None`` when it does not exist."""
        ...


class HttpBlobStore:
    """Reads objects from a Supabase-compatible storage endpoint."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self._base_url and self._token)

    def download(self, bucket: str, name: str) -> bytes | None:
        headers = {"Authorization": f"Bearer {self._token}", "apikey": self._token}
        try:
            with httpx.Client(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = client.get(f"/storage/v1/object/{bucket}/{name}", headers=headers)
        except httpx.TransportError as exc:
            raise BlobStoreError(
                f"Storage request for {bucket}/{name} failed: {type(exc).__name__}"
            ) from exc

        # Supabase answers 400 for a missing object in some versions
        if response.status_code in (400, 404):
            logger.info("Storage object %s/%s not found", bucket, name)
            return None
        if response.status_code >= 400:
            raise BlobStoreError(
                f"Storage request for {bucket}/{name} failed (HTTP {response.status_code})"
            )
        logger.info("Downloaded %s/%s from storage (%d bytes)", bucket, name, len(response.content))
        return response.content
