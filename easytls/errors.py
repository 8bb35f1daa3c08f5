"""
Exception taxonomy for TLS material loading and connection establishment.
"""
from typing import Optional


class TlsError(Exception):
    """Base class for all errors raised by easytls."""


class AddressResolutionError(TlsError):
    """A host or interface name could not be resolved to an address."""

    def __init__(self, host: str, port: Optional[int] = None, reason: Optional[str] = None):
        self.host = host
        self.port = port
        self.reason = reason
        target = f"{host}:{port}" if port is not None else host
        message = f"Failed to resolve address for '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MalformedPemError(TlsError):
    """PEM text violates the BEGIN/body/END structure."""

    def __init__(self, message: str, block_index: Optional[int] = None,
                 begin_label: Optional[str] = None, end_label: Optional[str] = None):
        self.block_index = block_index
        self.begin_label = begin_label
        self.end_label = end_label
        if block_index is not None:
            message = f"PEM block {block_index}: {message}"
        super().__init__(message)


class OversizedInputError(TlsError):
    """Input exceeded the configured size cap and was rejected."""

    def __init__(self, size: int, limit: int, source: Optional[str] = None):
        self.size = size
        self.limit = limit
        self.source = source
        where = f" ({source})" if source else ""
        super().__init__(f"PEM input{where} exceeds {limit} bytes (read at least {size})")


class MaterialError(TlsError):
    """Certificate or key material could not be assembled into a usable configuration."""


class CertificateLoadError(MaterialError):
    """A certificate file could not be read or its contents could not be used."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load certificates from {path}: {reason}")


class KeyMismatchError(CertificateLoadError):
    """The private key does not belong to the leaf certificate."""


class NoPrivateKeyError(MaterialError):
    """A key file contained no usable private key block."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No private key found in {path}")


class EmptyTrustStoreError(MaterialError):
    """A CA file contained no certificate blocks."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"CA file contains no certificates: {path}")


class HandshakeError(TlsError):
    """TLS negotiation failed for a single connection."""

    def __init__(self, peer: str, reason: str):
        self.peer = peer
        self.reason = reason
        super().__init__(f"TLS handshake with {peer} failed: {reason}")


class HandshakeStateError(TlsError, RuntimeError):
    """A pending connection was handshaked more than once."""
