"""CA key loading from the secret parameter store.

The local-key backend keeps one CA private key per registry CA certificate,
stored as a SecureString parameter named from CA_KEY_PARAMETER_TEMPLATE.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes
from opentelemetry import trace
from shared.aws import error_code

from certvendor.domain.errors import UpstreamError
from certvendor.domain.states import ErrorCode

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class CAKeyPair:
    """Holds CA private key and certificate."""

    private_key: CertificateIssuerPrivateKeyTypes
    certificate: x509.Certificate
    ca_certificate_id: str

    @property
    def certificate_pem(self) -> str:
        """Get CA certificate as PEM string."""
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("utf-8")

    @property
    def algorithm_name(self) -> str:
        key = self.private_key
        if isinstance(key, rsa.RSAPrivateKey):
            return f"RSA-{key.key_size}"
        elif isinstance(key, ec.EllipticCurvePrivateKey):
            return f"ECDSA-{key.curve.name}"
        elif isinstance(key, ed25519.Ed25519PrivateKey):
            return "Ed25519"
        elif isinstance(key, ed448.Ed448PrivateKey):
            return "Ed448"
        return "UNKNOWN"


class KeyManager:
    """Fetches CA keys from the parameter store, keyed by CA certificate ID."""

    def __init__(self, ssm_client: Any, parameter_template: str) -> None:
        self._ssm = ssm_client
        self._parameter_template = parameter_template

    def parameter_name(self, ca_certificate_id: str) -> str:
        return self._parameter_template.format(ca_certificate_id=ca_certificate_id)

    async def load(self, ca_certificate_id: str, ca_certificate_pem: str) -> CAKeyPair:
        """Load the CA key for ``ca_certificate_id`` and pair it with its certificate.

        Raises:
            UpstreamError: UNABLE_TO_FETCH_CA_KEY if the parameter cannot be
                read or does not hold a usable signing key.
        """
        with tracer.start_as_current_span("KeyManager.load") as span:
            name = self.parameter_name(ca_certificate_id)
            span.set_attribute("ca_certificate_id", ca_certificate_id)

            try:
                response = await asyncio.to_thread(
                    self._ssm.get_parameter, Name=name, WithDecryption=True
                )
                key_pem = response["Parameter"]["Value"]
            except (ClientError, BotoCoreError, KeyError) as e:
                logger.debug(
                    "ca_key_fetch_failed",
                    extra={"parameter": name, "error_code": error_code(e)},
                )
                raise UpstreamError(ErrorCode.UNABLE_TO_FETCH_CA_KEY) from e

            try:
                private_key = serialization.load_pem_private_key(
                    key_pem.encode("utf-8"), password=None
                )
                certificate = x509.load_pem_x509_certificate(ca_certificate_pem.encode("utf-8"))
            except (ValueError, TypeError) as e:
                logger.error(
                    "ca_key_load_failed",
                    extra={"ca_certificate_id": ca_certificate_id, "error": str(e)},
                )
                raise UpstreamError(ErrorCode.UNABLE_TO_FETCH_CA_KEY, "unusable CA key") from e

            if not isinstance(
                private_key,
                (
                    rsa.RSAPrivateKey,
                    ec.EllipticCurvePrivateKey,
                    ed25519.Ed25519PrivateKey,
                    ed448.Ed448PrivateKey,
                ),
            ):
                raise UpstreamError(ErrorCode.UNABLE_TO_FETCH_CA_KEY, "CA key cannot sign")

            key_pair = CAKeyPair(
                private_key=private_key,
                certificate=certificate,
                ca_certificate_id=ca_certificate_id,
            )
            span.set_attribute("algorithm", key_pair.algorithm_name)
            span.set_attribute(
                "ca_cert_expires", certificate.not_valid_after_utc.isoformat()
            )

            logger.info(
                "ca_key_loaded",
                extra={
                    "ca_certificate_id": ca_certificate_id,
                    "algorithm": key_pair.algorithm_name,
                },
            )
            return key_pair
