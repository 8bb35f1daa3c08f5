"""
Builds ssl.SSLContext objects from trust stores and server identities.
"""
import logging
import ssl

from ..errors import CertificateLoadError
from .models import ConnectionIdentity, TrustStore


TLS_VERSIONS = {
    "TLSv1.2": ssl.TLSVersion.TLSv1_2,
    "TLSv1.3": ssl.TLSVersion.TLSv1_3,
}

CIPHERS = 'ECDHE+AESGCM:ECDHE+CHACHA20:DHE+AESGCM:DHE+CHACHA20:!aNULL:!MD5:!DSS'

logger = logging.getLogger(__name__)


def create_client_context(trust_store: TrustStore, minimum_version: str = "TLSv1.2") -> ssl.SSLContext:
    """
    Create an initiator context that trusts exactly the store's anchors.

    Hostname checking and certificate verification are always on.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = TLS_VERSIONS[minimum_version]
    context.set_ciphers(CIPHERS)
    context.load_verify_locations(cadata=trust_store.cadata())

    source = "default roots" if trust_store.is_default else trust_store.source
    logger.debug(f"Client SSL context created with {len(trust_store)} anchors ({source})")
    return context


def create_server_context(identity: ConnectionIdentity, minimum_version: str = "TLSv1.2") -> ssl.SSLContext:
    """
    Create a responder context holding the identity's chain and key.

    The TLS engine only loads from files, so this reads ``cert_path`` and
    ``key_path`` again. Build it straight after ``load_identity`` so the
    engine gets the same files that passed the key match and size checks.

    Raises:
        CertificateLoadError: If the TLS engine rejects the chain or key
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = TLS_VERSIONS[minimum_version]
    context.set_ciphers(CIPHERS)

    try:
        context.load_cert_chain(certfile=identity.cert_path, keyfile=identity.key_path)
    except (ssl.SSLError, OSError) as e:
        raise CertificateLoadError(identity.cert_path, f"TLS engine rejected identity: {e}") from e

    logger.info("Server SSL context configured")
    return context


def describe_handshake_failure(error: BaseException) -> str:
    """Short human readable reason for a failed negotiation."""
    if isinstance(error, ssl.SSLCertVerificationError):
        return f"certificate verification failed: {error.verify_message}"
    if isinstance(error, ssl.SSLError):
        return error.reason or str(error)
    return str(error) or type(error).__name__
