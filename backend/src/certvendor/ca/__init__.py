"""Certificate authority module for the certificate vendor.

This module provides:
- CA key loading from the secret parameter store
- CSR signing for the local-key backend
- Local-key and managed (ACM PCA) identity authorities and their selection
"""

from certvendor.ca.authority import (
    AliasTable,
    AuthoritySelector,
    IdentityAuthority,
    LocalKeyAuthority,
    ManagedAuthority,
)
from certvendor.ca.certificate_generator import CertificateGenerator
from certvendor.ca.key_manager import KeyManager

__all__ = [
    "AliasTable",
    "AuthoritySelector",
    "CertificateGenerator",
    "IdentityAuthority",
    "KeyManager",
    "LocalKeyAuthority",
    "ManagedAuthority",
]
