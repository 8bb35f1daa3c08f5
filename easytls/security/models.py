"""
Security models for PEM material, trust anchors and server identities.
"""
import base64
import textwrap
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization


PEM_LINE_LENGTH = 64
CERTIFICATE_LABEL = "CERTIFICATE"


@dataclass(frozen=True)
class PemBlock:
    """A labeled binary object extracted from PEM text."""
    label: str
    payload: bytes = field(repr=False)
    index: int = 0

    def to_pem(self) -> str:
        """Re-encode the block as PEM text."""
        body = base64.b64encode(self.payload).decode("ascii")
        lines = textwrap.wrap(body, PEM_LINE_LENGTH) if body else []
        return "\n".join([f"-----BEGIN {self.label}-----", *lines, f"-----END {self.label}-----"]) + "\n"


@dataclass
class CertificateInfo:
    """Information about a certificate."""
    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    is_valid: bool
    fingerprint: str


@dataclass(frozen=True)
class Certificate:
    """A DER-encoded X.509 certificate."""
    der: bytes = field(repr=False)

    def to_x509(self) -> x509.Certificate:
        return x509.load_der_x509_certificate(self.der)

    def info(self) -> CertificateInfo:
        """Extract subject, issuer and validity information."""
        cert = self.to_x509()
        now = datetime.now(timezone.utc)

        not_before = cert.not_valid_before_utc
        not_after = cert.not_valid_after_utc

        return CertificateInfo(
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            serial_number=str(cert.serial_number),
            not_before=not_before,
            not_after=not_after,
            is_valid=not_before <= now <= not_after,
            fingerprint=cert.fingerprint(hashes.SHA256()).hex()
        )

    def public_key_info(self) -> bytes:
        """DER SubjectPublicKeyInfo of the certificate's public key."""
        return self.to_x509().public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )


@dataclass(frozen=True)
class PrivateKey:
    """A DER-encoded private key. The key bytes never appear in repr()."""
    der: bytes = field(repr=False)
    algorithm: str = "pkcs8"

    def public_key_info(self) -> bytes:
        """DER SubjectPublicKeyInfo derived from the private key."""
        key = serialization.load_der_private_key(self.der, password=None)
        return key.public_key().public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )


@dataclass(frozen=True)
class TrustAnchor:
    """A certificate treated as an authoritative root for chain validation."""
    subject: str
    spki: bytes = field(repr=False)
    name_constraints: Optional[bytes] = field(default=None, repr=False)
    der: bytes = field(default=b"", repr=False, compare=False)

    @classmethod
    def from_certificate(cls, certificate: Certificate) -> "TrustAnchor":
        cert = certificate.to_x509()
        try:
            constraints = cert.extensions.get_extension_for_class(x509.NameConstraints)
            name_constraints = constraints.value.public_bytes()
        except x509.ExtensionNotFound:
            name_constraints = None

        return cls(
            subject=cert.subject.rfc4514_string(),
            spki=certificate.public_key_info(),
            name_constraints=name_constraints,
            der=certificate.der
        )


@dataclass(frozen=True)
class TrustStore:
    """An immutable set of trust anchors."""
    anchors: Tuple[TrustAnchor, ...]
    is_default: bool = False
    source: Optional[str] = None

    def __len__(self) -> int:
        return len(self.anchors)

    def __iter__(self) -> Iterator[TrustAnchor]:
        return iter(self.anchors)

    def contains(self, certificate: Certificate) -> bool:
        """Check whether a certificate is one of the store's anchors."""
        anchor = TrustAnchor.from_certificate(certificate)
        return anchor in self.anchors

    def cadata(self) -> bytes:
        """Concatenated DER of every anchor, as accepted by SSLContext.load_verify_locations."""
        return b"".join(anchor.der for anchor in self.anchors)


@dataclass(frozen=True)
class ConnectionIdentity:
    """Server identity: a leaf-first certificate chain and the leaf's private key."""
    chain: Tuple[Certificate, ...]
    key: PrivateKey
    cert_path: str
    key_path: str

    def __post_init__(self):
        if not self.chain:
            raise ValueError("ConnectionIdentity requires a non-empty certificate chain")

    @property
    def leaf(self) -> Certificate:
        return self.chain[0]
