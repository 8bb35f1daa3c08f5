"""
Loads the server's certificate chain and private key from PEM files.
"""
import logging
import os
from typing import List, Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm

from ..errors import CertificateLoadError, KeyMismatchError, NoPrivateKeyError
from .models import CERTIFICATE_LABEL, Certificate, ConnectionIdentity, PrivateKey
from .pem_decoder import PemDecoder


# PEM label -> key algorithm tag
PRIVATE_KEY_LABELS = {
    "PRIVATE KEY": "pkcs8",
    "RSA PRIVATE KEY": "rsa",
}

PathLike = Union[str, os.PathLike]


class MaterialLoader:
    """Reads certificate chains and private keys for a server identity."""

    def __init__(self, decoder: Optional[PemDecoder] = None):
        self.decoder = decoder or PemDecoder()
        self.logger = logging.getLogger(__name__)

    def load_certificates(self, path: PathLike) -> List[Certificate]:
        """
        Load every certificate in a PEM file, preserving file order (leaf first).

        Raises:
            CertificateLoadError: If the file cannot be read or holds no certificates
            MalformedPemError: If the file is not well-formed PEM
        """
        path = os.fspath(path)
        certificates = [
            Certificate(block.payload)
            for block in self.decoder.decode_file(path)
            if block.label == CERTIFICATE_LABEL
        ]

        if not certificates:
            raise CertificateLoadError(path, "no CERTIFICATE blocks found")

        self.logger.debug(f"Loaded {len(certificates)} certificates from {path}")
        return certificates

    def load_private_key(self, path: PathLike) -> PrivateKey:
        """
        Load the first private key in a PEM file.

        Only one key is used. If the file holds several, the first wins and
        the rest are reported in a warning.

        Raises:
            NoPrivateKeyError: If the file holds no PRIVATE KEY / RSA PRIVATE KEY block
            CertificateLoadError: If the file cannot be read
            MalformedPemError: If the file is not well-formed PEM
        """
        path = os.fspath(path)
        keys = [
            PrivateKey(der=block.payload, algorithm=PRIVATE_KEY_LABELS[block.label])
            for block in self.decoder.decode_file(path)
            if block.label in PRIVATE_KEY_LABELS
        ]

        if not keys:
            raise NoPrivateKeyError(path)

        if len(keys) > 1:
            self.logger.warning(
                f"Key file {path} contains {len(keys)} private keys; using the first and ignoring {len(keys) - 1}"
            )

        return keys[0]

    def load_identity(self, cert_path: PathLike, key_path: PathLike) -> ConnectionIdentity:
        """
        Load a certificate chain and its private key as a server identity.

        Raises:
            KeyMismatchError: If the key does not belong to the leaf certificate
        """
        cert_path = os.fspath(cert_path)
        key_path = os.fspath(key_path)

        chain = self.load_certificates(cert_path)
        key = self.load_private_key(key_path)

        try:
            leaf_info = chain[0].info()
            leaf_spki = chain[0].public_key_info()
        except (ValueError, UnsupportedAlgorithm) as e:
            raise CertificateLoadError(cert_path, f"leaf certificate is not valid DER: {e}") from e

        try:
            key_spki = key.public_key_info()
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            # Key material must not reach the error message
            raise CertificateLoadError(key_path, "private key could not be parsed") from e

        if key_spki != leaf_spki:
            raise KeyMismatchError(key_path, f"private key does not match leaf certificate {leaf_info.subject}")

        if not leaf_info.is_valid:
            self.logger.warning(
                f"Leaf certificate {leaf_info.subject} is outside its validity window "
                f"({leaf_info.not_before.isoformat()} - {leaf_info.not_after.isoformat()})"
            )

        self.logger.info(
            f"Loaded identity {leaf_info.subject} (chain length {len(chain)}, "
            f"expires {leaf_info.not_after.isoformat()}, sha256 {leaf_info.fingerprint})"
        )

        return ConnectionIdentity(chain=tuple(chain), key=key, cert_path=cert_path, key_path=key_path)
