"""
easytls: small asyncio facade for authenticated TLS client and server streams.
"""

from .errors import (
    TlsError, AddressResolutionError, MalformedPemError, OversizedInputError,
    MaterialError, CertificateLoadError, KeyMismatchError, NoPrivateKeyError,
    EmptyTrustStoreError, HandshakeError, HandshakeStateError
)
from .security import PemDecoder, TrustStoreBuilder, MaterialLoader, default_trust_store
from .services import AuthenticatedStream, ClientConnector, ServerListener, PendingConnection, connect

__version__ = "0.1.0"

__all__ = [
    'TlsError',
    'AddressResolutionError',
    'MalformedPemError',
    'OversizedInputError',
    'MaterialError',
    'CertificateLoadError',
    'KeyMismatchError',
    'NoPrivateKeyError',
    'EmptyTrustStoreError',
    'HandshakeError',
    'HandshakeStateError',
    'PemDecoder',
    'TrustStoreBuilder',
    'MaterialLoader',
    'default_trust_store',
    'AuthenticatedStream',
    'ClientConnector',
    'ServerListener',
    'PendingConnection',
    'connect'
]
