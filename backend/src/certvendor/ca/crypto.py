"""Cryptographic utilities for certificate operations.

Provides CSR parsing, thumbprint computation and PEM bundle assembly.
"""

import hashlib
import logging

from cryptography import x509
from cryptography.hazmat.primitives import serialization

logger = logging.getLogger(__name__)


class CryptoError(Exception):
    """Raised when a cryptographic operation fails."""

    pass


def load_csr(csr_pem: str) -> x509.CertificateSigningRequest:
    """Parse a PEM CSR and verify its self-signature.

    Args:
        csr_pem: The certificate signing request in PEM format.

    Returns:
        The parsed CSR.

    Raises:
        CryptoError: If the CSR cannot be parsed or its signature is invalid.
    """
    try:
        csr = x509.load_pem_x509_csr(csr_pem.encode("utf-8"))
    except ValueError as e:
        raise CryptoError(f"Failed to parse CSR: {e}") from e

    if not csr.is_signature_valid:
        raise CryptoError("CSR signature is invalid")
    return csr


def compute_thumbprint(cert_pem: str) -> str:
    """Compute SHA-256 thumbprint of the first certificate in a PEM string.

    Args:
        cert_pem: Certificate (or leaf-first bundle) in PEM format.

    Returns:
        Lowercase hexadecimal SHA-256 thumbprint.

    Raises:
        CryptoError: If thumbprint computation fails.
    """
    try:
        cert = x509.load_pem_x509_certificate(cert_pem.encode("utf-8"))
        der_bytes = cert.public_bytes(serialization.Encoding.DER)
        return hashlib.sha256(der_bytes).hexdigest().lower()
    except Exception as e:
        raise CryptoError(f"Failed to compute certificate thumbprint: {e}") from e


def join_pem_bundle(leaf_pem: str, chain_pem: str) -> str:
    """Concatenate a leaf certificate and its chain into one bundle, leaf first."""
    return f"{leaf_pem}\n{chain_pem}"
