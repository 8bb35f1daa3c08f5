"""
Security package for PEM decoding, trust stores and server identity material.
"""
from .models import (
    PemBlock, Certificate, CertificateInfo, PrivateKey,
    TrustAnchor, TrustStore, ConnectionIdentity
)
from .pem_decoder import PemDecoder, DEFAULT_MAX_PEM_SIZE
from .trust_store import TrustStoreBuilder, default_trust_store
from .material_loader import MaterialLoader

__all__ = [
    'PemBlock',
    'Certificate',
    'CertificateInfo',
    'PrivateKey',
    'TrustAnchor',
    'TrustStore',
    'ConnectionIdentity',
    'PemDecoder',
    'DEFAULT_MAX_PEM_SIZE',
    'TrustStoreBuilder',
    'default_trust_store',
    'MaterialLoader'
]
