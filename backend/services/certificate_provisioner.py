"""Mutual-TLS context provisioning for institution calls.

Builds one ``ssl.SSLContext`` per process from the first configured
source, in priority order:

1. Object storage (``client-certificate.pem``, ``private-key.pem`` and an
   optional ``ca-certificate.pem`` in the configured bucket)
2. A PKCS#12 keystore with password
3. PEM files for the client certificate and private key

CA material, when present, replaces the system trust store. Parsing and
key/certificate matching use ``cryptography``; the context itself is the
standard-library ``ssl`` one that httpx accepts as ``verify=``.
"""

import logging
import os
import secrets
import ssl
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from integrations.blob_store import BlobStore, BlobStoreError
from services.exceptions import CertificateConfigurationError

logger = logging.getLogger(__name__)

CLIENT_CERT_OBJECT = "client-certificate.pem"
PRIVATE_KEY_OBJECT = "private-key.pem"
CA_CERT_OBJECT = "ca-certificate.pem"


@dataclass
class CertificateSettings:
    """Where to find the client identity and CA material."""

    storage_enabled: bool = False
    storage_bucket: str = "certificates"
    keystore_path: str = ""
    keystore_password: str = ""
    client_cert_path: str = ""
    private_key_path: str = ""
    ca_cert_path: str = ""

    @classmethod
    def from_settings(cls, settings) -> "CertificateSettings":
        return cls(
            storage_enabled=settings.CERT_STORAGE_ENABLED,
            storage_bucket=settings.CERT_STORAGE_BUCKET,
            keystore_path=settings.OPEN_FINANCE_KEYSTORE_PATH,
            keystore_password=settings.OPEN_FINANCE_KEYSTORE_PASSWORD,
            client_cert_path=settings.OPEN_FINANCE_CLIENT_CERT_PATH,
            private_key_path=settings.OPEN_FINANCE_PRIVATE_KEY_PATH,
            ca_cert_path=settings.OPEN_FINANCE_CA_CERT_PATH,
        )


@dataclass
class _ClientIdentity:
    certificates: list[x509.Certificate]  # leaf first
    private_key: object


class CertificateProvisioner:
    """Builds and caches the shared client TLS context.

    The context is built lazily on first use under a lock; later calls
    return the cached instance without locking. ``ssl.SSLContext`` is safe
    for concurrent use once configured.
    """

    def __init__(self, config: CertificateSettings, blob_store: BlobStore | None = None):
        self._config = config
        self._blob_store = blob_store
        self._lock = threading.Lock()
        self._context: ssl.SSLContext | None = None
        self._source: str | None = None

    @property
    def source(self) -> str | None:
        """``"blob"``, ``"keystore"``, ``"files"`` or ``"none"`` once built."""
        return self._source

    @property
    def has_client_identity(self) -> bool:
        return self._source not in (None, "none")

    def get_ssl_context(self) -> ssl.SSLContext:
        """Return the shared context, building it on first call.

        Raises:
            CertificateConfigurationError: If configured material cannot be
                read, parsed, or does not form a matching key pair.
        """
        context = self._context
        if context is not None:
            return context
        with self._lock:
            if self._context is None:
                self._context = self._build()
            return self._context

    def _build(self) -> ssl.SSLContext:
        identity, ca_pem, source = self._load_material()

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.minimum_version = ssl.TLSVersion.TLSv1_2

        if ca_pem:
            self._load_ca(context, ca_pem)
        else:
            logger.warning("No CA certificate configured; using the system trust store")
            context.load_default_certs(ssl.Purpose.SERVER_AUTH)

        if identity is None:
            logger.warning(
                "No client certificate configured; institution calls requiring mTLS will fail"
            )
        else:
            self._load_identity(context, identity)
            subject = identity.certificates[0].subject.rfc4514_string()
            logger.info("mTLS client identity loaded from %s (%s)", source, subject)

        self._source = source
        return context

    # --- material loading ---

    def _load_material(self) -> tuple[_ClientIdentity | None, bytes | None, str]:
        cfg = self._config

        if cfg.storage_enabled:
            if self._blob_store is not None:
                logger.info("Loading certificates from storage bucket %s", cfg.storage_bucket)
                return self._load_from_blob_store()
            logger.warning("Certificate storage enabled but no storage client is configured")

        ca_pem = self._read_file(cfg.ca_cert_path, "CA certificate") if cfg.ca_cert_path else None

        if cfg.keystore_path:
            logger.info("Loading certificates from keystore %s", cfg.keystore_path)
            return self._load_keystore(), ca_pem, "keystore"

        if cfg.client_cert_path and cfg.private_key_path:
            logger.info("Loading certificates from files")
            cert_pem = self._read_file(cfg.client_cert_path, "client certificate")
            key_pem = self._read_file(cfg.private_key_path, "private key")
            return self._parse_pem_identity(cert_pem, key_pem), ca_pem, "files"

        return None, ca_pem, "none"

    def _load_from_blob_store(self) -> tuple[_ClientIdentity, bytes | None, str]:
        bucket = self._config.storage_bucket
        try:
            cert_pem = self._blob_store.download(bucket, CLIENT_CERT_OBJECT)
            key_pem = self._blob_store.download(bucket, PRIVATE_KEY_OBJECT)
            ca_pem = self._blob_store.download(bucket, CA_CERT_OBJECT)
        except BlobStoreError as exc:
            raise CertificateConfigurationError(
                f"Could not download certificates from bucket {bucket}"
            ) from exc

        if not cert_pem or not key_pem:
            raise CertificateConfigurationError(
                f"Bucket {bucket} is missing {CLIENT_CERT_OBJECT} or {PRIVATE_KEY_OBJECT}"
            )
        return self._parse_pem_identity(cert_pem, key_pem), ca_pem, "blob"

    def _load_keystore(self) -> _ClientIdentity:
        data = self._read_file(self._config.keystore_path, "keystore")
        password = self._config.keystore_password.encode() or None
        try:
            key, cert, additional = pkcs12.load_key_and_certificates(data, password)
        except (ValueError, TypeError) as exc:
            raise CertificateConfigurationError(
                "Keystore could not be opened (wrong password or not PKCS#12)"
            ) from exc
        if key is None or cert is None:
            raise CertificateConfigurationError("Keystore holds no private key/certificate pair")
        identity = _ClientIdentity(certificates=[cert, *(additional or [])], private_key=key)
        self._check_key_matches(identity)
        return identity

    def _parse_pem_identity(self, cert_pem: bytes, key_pem: bytes) -> _ClientIdentity:
        try:
            certificates = x509.load_pem_x509_certificates(cert_pem)
        except ValueError as exc:
            raise CertificateConfigurationError("Client certificate is not valid PEM") from exc
        try:
            key = serialization.load_pem_private_key(key_pem, password=None)
        except (ValueError, TypeError) as exc:
            raise CertificateConfigurationError(
                "Private key is not an unencrypted PEM key"
            ) from exc
        identity = _ClientIdentity(certificates=certificates, private_key=key)
        self._check_key_matches(identity)
        return identity

    @staticmethod
    def _check_key_matches(identity: _ClientIdentity) -> None:
        spki = serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        cert_public = identity.certificates[0].public_key().public_bytes(*spki)
        key_public = identity.private_key.public_key().public_bytes(*spki)
        if cert_public != key_public:
            raise CertificateConfigurationError(
                "Private key does not match the client certificate"
            )

    @staticmethod
    def _read_file(path: str, label: str) -> bytes:
        try:
            return Path(path).expanduser().read_bytes()
        except OSError as exc:
            raise CertificateConfigurationError(f"Cannot read {label} file {path}") from exc

    # --- context configuration ---

    @staticmethod
    def _load_ca(context: ssl.SSLContext, ca_pem: bytes) -> None:
        try:
            ca_certs = x509.load_pem_x509_certificates(ca_pem)
            context.load_verify_locations(
                cadata="".join(
                    c.public_bytes(serialization.Encoding.PEM).decode("ascii") for c in ca_certs
                )
            )
        except (ValueError, ssl.SSLError) as exc:
            raise CertificateConfigurationError("CA certificate is not valid PEM") from exc
        logger.info("Pinned trust to %d CA certificate(s)", len(ca_certs))

    @staticmethod
    def _load_identity(context: ssl.SSLContext, identity: _ClientIdentity) -> None:
        """Install the client identity.

        ``load_cert_chain`` only reads files, so the chain and an encrypted
        copy of the key go to a private temp directory that is removed
        right after loading.
        """
        passphrase = secrets.token_bytes(32)
        chain_pem = b"".join(
            c.public_bytes(serialization.Encoding.PEM) for c in identity.certificates
        )
        key_pem = identity.private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(passphrase),
        )

        with tempfile.TemporaryDirectory(prefix="finlink-mtls-") as tmp:
            cert_file = os.path.join(tmp, "client.pem")
            key_file = os.path.join(tmp, "client.key")
            for path, data in ((cert_file, chain_pem), (key_file, key_pem)):
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
            try:
                context.load_cert_chain(cert_file, key_file, password=passphrase)
            except ssl.SSLError as exc:
                raise CertificateConfigurationError(
                    "Client certificate chain could not be loaded"
                ) from exc
