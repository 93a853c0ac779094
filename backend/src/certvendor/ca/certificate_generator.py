"""X.509 certificate signing for device CSRs.

Signs device certificate signing requests with a CA key fetched from the
parameter store (local-key backend).
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed448, ed25519
from opentelemetry import trace

from certvendor.ca.crypto import CryptoError, compute_thumbprint, load_csr
from certvendor.ca.key_manager import CAKeyPair

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CertificateGenerationError(Exception):
    """Raised when signing a CSR fails."""

    pass


@dataclass
class SignedCertificate:
    """Result of CSR signing."""

    certificate_pem: str
    serial_number: str
    thumbprint: str
    not_before: datetime
    not_after: datetime


class CertificateGenerator:
    """Signs device CSRs with the CA.

    Certificate attributes:
    - Subject and public key: copied from the CSR
    - Issuer: CA certificate subject
    - Validity: now() to now() + validity_days
    - Basic Constraints: CA=false (critical)
    - Subject/Authority Key Identifiers
    - Digest: SHA-256 (none for Ed25519/Ed448 CA keys)
    """

    def __init__(self, ca_key_pair: CAKeyPair) -> None:
        """Initialize generator with CA key pair.

        Args:
            ca_key_pair: The CA's private key and certificate for signing.
        """
        self._ca = ca_key_pair

    def sign_csr(self, csr_pem: str, validity_days: int) -> SignedCertificate:
        """Issue a certificate for a CSR.

        Args:
            csr_pem: Device certificate signing request in PEM format.
            validity_days: Certificate validity in days.

        Returns:
            SignedCertificate with the PEM and its details.

        Raises:
            CertificateGenerationError: If the CSR is invalid or signing fails.
        """
        with tracer.start_as_current_span("CertificateGenerator.sign_csr") as span:
            span.set_attribute("ca_certificate_id", self._ca.ca_certificate_id)
            span.set_attribute("validity_days", validity_days)

            start_time = time.time()

            if validity_days < 1:
                raise CertificateGenerationError("Certificate validity must be at least 1 day")

            try:
                csr = load_csr(csr_pem)
            except CryptoError as e:
                raise CertificateGenerationError(str(e)) from e

            try:
                serial_number = x509.random_serial_number()
                serial_str = format(serial_number, "x")
                span.set_attribute("serial", serial_str)

                now = datetime.now(timezone.utc)
                not_before = now
                not_after = now + timedelta(days=validity_days)

                public_key = csr.public_key()
                ca_public_key = self._ca.private_key.public_key()

                cert_builder = (
                    x509.CertificateBuilder()
                    .subject_name(csr.subject)
                    .issuer_name(self._ca.certificate.subject)
                    .public_key(public_key)  # type: ignore[arg-type]
                    .serial_number(serial_number)
                    .not_valid_before(not_before)
                    .not_valid_after(not_after)
                    .add_extension(
                        x509.BasicConstraints(ca=False, path_length=None),
                        critical=True,
                    )
                    .add_extension(
                        x509.SubjectKeyIdentifier.from_public_key(public_key),  # type: ignore[arg-type]
                        critical=False,
                    )
                    .add_extension(
                        x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_public_key),  # type: ignore[arg-type]
                        critical=False,
                    )
                )

                certificate = cert_builder.sign(self._ca.private_key, self._digest())
                cert_pem = certificate.public_bytes(serialization.Encoding.PEM).decode("utf-8")
                thumbprint = compute_thumbprint(cert_pem)

                duration = time.time() - start_time
                logger.info(
                    "certificate_signed",
                    extra={
                        "ca_certificate_id": self._ca.ca_certificate_id,
                        "serial": serial_str,
                        "thumbprint": thumbprint,
                        "not_after": not_after.isoformat(),
                        "duration_seconds": duration,
                    },
                )

                return SignedCertificate(
                    certificate_pem=cert_pem,
                    serial_number=serial_str,
                    thumbprint=thumbprint,
                    not_before=not_before,
                    not_after=not_after,
                )

            except Exception as e:
                logger.error(
                    "certificate_signing_failed",
                    extra={"ca_certificate_id": self._ca.ca_certificate_id, "error": str(e)},
                )
                raise CertificateGenerationError(f"Failed to sign certificate: {e}") from e

    def _digest(self) -> hashes.HashAlgorithm | None:
        if isinstance(self._ca.private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
            return None
        return hashes.SHA256()
