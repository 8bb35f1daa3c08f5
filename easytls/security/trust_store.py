"""
Trust store construction: the shared public-root bundle or a caller's CA file.
"""
import logging
import os
import threading
from typing import List, Optional, Union

import certifi
from cryptography.exceptions import UnsupportedAlgorithm

from ..errors import CertificateLoadError, EmptyTrustStoreError
from .models import CERTIFICATE_LABEL, Certificate, TrustAnchor, TrustStore
from .pem_decoder import PemDecoder


logger = logging.getLogger(__name__)

_default_store: Optional[TrustStore] = None
_default_store_lock = threading.Lock()


def default_trust_store() -> TrustStore:
    """
    Return the process-wide store of public root anchors.

    Built from the certifi bundle on first use, then shared by reference.
    """
    global _default_store
    if _default_store is None:
        with _default_store_lock:
            if _default_store is None:
                _default_store = _load_default_store()
    return _default_store


def _load_default_store() -> TrustStore:
    bundle_path = certifi.where()
    anchors: List[TrustAnchor] = []

    # The bundle ships with the package and is far larger than the cap used for caller files
    for block in PemDecoder(max_size=None).decode_file(bundle_path):
        if block.label != CERTIFICATE_LABEL:
            continue
        try:
            anchors.append(TrustAnchor.from_certificate(Certificate(block.payload)))
        except (ValueError, UnsupportedAlgorithm) as e:
            logger.warning(f"Skipping unusable root {block.index} in {bundle_path}: {e}")

    logger.info(f"Loaded default trust store with {len(anchors)} anchors from {bundle_path}")
    return TrustStore(anchors=tuple(anchors), is_default=True, source=bundle_path)


class TrustStoreBuilder:
    """Builds TrustStores from the default bundle or from a CA file."""

    def __init__(self, decoder: Optional[PemDecoder] = None):
        self.decoder = decoder or PemDecoder()
        self.logger = logging.getLogger(__name__)

    def build(self, ca_file: Optional[Union[str, os.PathLike]] = None) -> TrustStore:
        """
        Build a trust store.

        Args:
            ca_file: Path to a PEM file of CA certificates, or None for the
                default public roots

        Returns:
            The shared default store, or a store holding exactly the CA
            file's certificates

        Raises:
            CertificateLoadError: If the file cannot be read or holds an
                undecodable certificate
            MalformedPemError: If the file is not well-formed PEM
            EmptyTrustStoreError: If the file holds no certificates
        """
        if ca_file is None:
            return default_trust_store()
        return self._build_from_file(os.fspath(ca_file))

    def _build_from_file(self, path: str) -> TrustStore:
        anchors: List[TrustAnchor] = []

        for block in self.decoder.decode_file(path):
            if block.label != CERTIFICATE_LABEL:
                self.logger.debug(f"Ignoring {block.label} block {block.index} in CA file {path}")
                continue
            try:
                anchors.append(TrustAnchor.from_certificate(Certificate(block.payload)))
            except (ValueError, UnsupportedAlgorithm) as e:
                raise CertificateLoadError(path, f"certificate {block.index} is not valid DER: {e}") from e

        if not anchors:
            raise EmptyTrustStoreError(path)

        self.logger.info(f"Loaded {len(anchors)} trust anchors from {path}")
        return TrustStore(anchors=tuple(anchors), is_default=False, source=path)
