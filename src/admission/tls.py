from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from pathlib import Path

LOG = logging.getLogger(__name__)

# Offered in this order during the TLS handshake.
ALPN_PROTOCOLS = ("h2", "http/1.1")


class TlsMaterialError(Exception):
    """Raised when the certificate or private key cannot be loaded."""


@dataclass(frozen=True)
class TlsMaterial:
    cert_path: Path
    key_path: Path


def load_tls_material(cert_path: Path, key_path: Path) -> TlsMaterial:
    """Check that the certificate/key pair loads before the server binds."""

    for label, path in (("certificate", cert_path), ("private key", key_path)):
        if not path.is_file():
            raise TlsMaterialError(f"{label} file not found: {path}")
    LOG.debug("loading certificate %s and key %s", cert_path, key_path)
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_cert_chain(str(cert_path), str(key_path))
    except (ssl.SSLError, OSError) as exc:
        raise TlsMaterialError(f"bad certificate/key pair: {exc}") from exc
    return TlsMaterial(cert_path=cert_path, key_path=key_path)


__all__ = [
    "ALPN_PROTOCOLS",
    "TlsMaterial",
    "TlsMaterialError",
    "load_tls_material",
]
