"""Identity authority backends and per-request backend selection.

Two interchangeable backends issue certificates from a device CSR:

- LocalKeyAuthority signs with a CA key held in the parameter store.
- ManagedAuthority submits the CSR to ACM Private CA and polls until the
  certificate is issued or a deadline passes.

Both fetch the CA certificate PEM from the device registry by CA certificate ID.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Collection, Mapping
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from opentelemetry import trace
from shared.aws import error_code

from certvendor.ca.certificate_generator import CertificateGenerator
from certvendor.ca.crypto import join_pem_bundle
from certvendor.ca.key_manager import KeyManager
from certvendor.domain.errors import NotFoundError, UpstreamError, ValidationError
from certvendor.domain.models import (
    AuthorityParameters,
    AuthoritySelection,
    IssuedCertificate,
)
from certvendor.domain.states import AuthorityBackend, ErrorCode
from certvendor.metrics import vendor_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# ACM PCA reports this while an issued certificate is not yet retrievable
_IN_PROGRESS = "RequestInProgressException"


class IdentityAuthority(ABC):
    """Uniform issuance contract over a certificate authority backend."""

    backend: AuthorityBackend

    def __init__(self, iot_client: Any) -> None:
        self._iot = iot_client

    async def fetch_authority_certificate(self, ca_certificate_id: str) -> str:
        """Return the PEM of a CA certificate registered with the device registry.

        Raises:
            UpstreamError: UNABLE_TO_GET_CA_CERTIFICATE
        """
        with tracer.start_as_current_span("IdentityAuthority.fetch_authority_certificate") as span:
            span.set_attribute("ca_certificate_id", ca_certificate_id)
            try:
                response = await asyncio.to_thread(
                    self._iot.describe_ca_certificate, certificateId=ca_certificate_id
                )
                return response["certificateDescription"]["certificatePem"]
            except (ClientError, BotoCoreError, KeyError) as e:
                logger.debug(
                    "ca_certificate_fetch_failed",
                    extra={"ca_certificate_id": ca_certificate_id, "error_code": error_code(e)},
                )
                raise UpstreamError(ErrorCode.UNABLE_TO_GET_CA_CERTIFICATE) from e

    @abstractmethod
    async def issue(
        self,
        csr: str,
        selection: AuthoritySelection,
        ca_pem: str,
        device_id: str,
    ) -> IssuedCertificate:
        """Issue a certificate for ``csr`` from the selected authority."""
        ...


class LocalKeyAuthority(IdentityAuthority):
    """Signs CSRs synchronously with a CA key from the parameter store."""

    backend = AuthorityBackend.LOCAL_KEY

    def __init__(self, iot_client: Any, key_manager: KeyManager, validity_days: int) -> None:
        super().__init__(iot_client)
        self._key_manager = key_manager
        self._validity_days = validity_days

    async def issue(
        self,
        csr: str,
        selection: AuthoritySelection,
        ca_pem: str,
        device_id: str,
    ) -> IssuedCertificate:
        """Sign ``csr`` with the CA key.

        Raises:
            UpstreamError: UNABLE_TO_FETCH_CA_KEY
            CertificateGenerationError: Signing failed (propagated as-is).
        """
        with tracer.start_as_current_span("LocalKeyAuthority.issue") as span:
            span.set_attribute("device_id", device_id)
            span.set_attribute("ca_certificate_id", selection.ca_certificate_id)
            start_time = time.time()

            key_pair = await self._key_manager.load(selection.ca_certificate_id, ca_pem)
            signed = CertificateGenerator(key_pair).sign_csr(csr, self._validity_days)

            vendor_metrics.record_certificate_issued(self.backend.value, time.time() - start_time)
            return IssuedCertificate(
                pem=signed.certificate_pem,
                authority_id=selection.ca_certificate_id,
                device_id=device_id,
            )


class ManagedAuthority(IdentityAuthority):
    """Issues through ACM Private CA and polls to completion.

    Polling backs off exponentially from ``poll_interval`` up to
    ``max_poll_interval`` and gives up once ``timeout`` seconds have passed.
    Cancelling the awaiting task abandons the wait.
    """

    backend = AuthorityBackend.MANAGED

    def __init__(
        self,
        iot_client: Any,
        acmpca_client: Any,
        signing_algorithm: str,
        validity_days: int,
        poll_interval: float = 1.0,
        max_poll_interval: float = 8.0,
        backoff: float = 2.0,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(iot_client)
        self._acmpca = acmpca_client
        self._signing_algorithm = signing_algorithm
        self._validity_days = validity_days
        self._poll_interval = poll_interval
        self._max_poll_interval = max_poll_interval
        self._backoff = backoff
        self._timeout = timeout

    async def issue(
        self,
        csr: str,
        selection: AuthoritySelection,
        ca_pem: str,
        device_id: str,
    ) -> IssuedCertificate:
        """Submit ``csr`` and wait for the leaf and chain.

        Raises:
            UpstreamError: UNABLE_TO_ISSUE_CERTIFICATE on submit failure,
                authority-side failure or timeout.
        """
        with tracer.start_as_current_span("ManagedAuthority.issue") as span:
            span.set_attribute("device_id", device_id)
            span.set_attribute("ca_arn", selection.ca_arn or "")
            start_time = time.time()

            if not selection.ca_arn:
                raise ValidationError(
                    "managed CA ARN is required", code=ErrorCode.INVALID_AUTHORITY_PARAMETERS
                )

            request: dict[str, Any] = {
                "Csr": csr.encode("utf-8"),
                "CertificateAuthorityArn": selection.ca_arn,
                "SigningAlgorithm": self._signing_algorithm,
                "Validity": {"Value": self._validity_days, "Type": "DAYS"},
            }
            if selection.subject is not None:
                request["ApiPassthrough"] = {"Subject": selection.subject.to_api_subject()}

            try:
                submitted = await asyncio.to_thread(self._acmpca.issue_certificate, **request)
                certificate_arn = submitted["CertificateArn"]
            except (ClientError, BotoCoreError, KeyError) as e:
                logger.debug(
                    "managed_issue_submit_failed",
                    extra={"ca_arn": selection.ca_arn, "error_code": error_code(e)},
                )
                raise UpstreamError(ErrorCode.UNABLE_TO_ISSUE_CERTIFICATE) from e

            span.set_attribute("certificate_arn", certificate_arn)
            leaf_pem, chain_pem = await self._wait_for_certificate(selection.ca_arn, certificate_arn)

            vendor_metrics.record_certificate_issued(self.backend.value, time.time() - start_time)
            logger.info(
                "managed_certificate_issued",
                extra={"device_id": device_id, "certificate_arn": certificate_arn},
            )
            return IssuedCertificate(
                pem=join_pem_bundle(leaf_pem, chain_pem),
                chain_pem=chain_pem,
                authority_id=selection.ca_arn,
                device_id=device_id,
            )

    async def _wait_for_certificate(self, ca_arn: str, certificate_arn: str) -> tuple[str, str]:
        """Poll until the leaf and chain are available; return them in that order.

        Each poll is bounded by the time left before the deadline, so a slow
        call under transport retries cannot outlive ``timeout``.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        interval = self._poll_interval
        attempts = 0

        while True:
            attempts += 1
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise self._timed_out(certificate_arn, attempts)
            try:
                response = await asyncio.wait_for(
                    asyncio.to_thread(
                        self._acmpca.get_certificate,
                        CertificateAuthorityArn=ca_arn,
                        CertificateArn=certificate_arn,
                    ),
                    timeout=remaining,
                )
            except asyncio.TimeoutError as e:
                raise self._timed_out(certificate_arn, attempts) from e
            except ClientError as e:
                if error_code(e) != _IN_PROGRESS:
                    logger.debug(
                        "managed_issue_failed",
                        extra={"certificate_arn": certificate_arn, "error_code": error_code(e)},
                    )
                    raise UpstreamError(ErrorCode.UNABLE_TO_ISSUE_CERTIFICATE) from e
            except BotoCoreError as e:
                raise UpstreamError(ErrorCode.UNABLE_TO_ISSUE_CERTIFICATE) from e
            else:
                try:
                    leaf_pem, chain_pem = response["Certificate"], response["CertificateChain"]
                except KeyError as e:
                    logger.debug(
                        "managed_issue_incomplete",
                        extra={"certificate_arn": certificate_arn, "missing": str(e)},
                    )
                    raise UpstreamError(
                        ErrorCode.UNABLE_TO_ISSUE_CERTIFICATE, f"response missing {e}"
                    ) from e
                vendor_metrics.record_poll_attempts(attempts)
                return leaf_pem, chain_pem

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise self._timed_out(certificate_arn, attempts)
            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * self._backoff, self._max_poll_interval)

    def _timed_out(self, certificate_arn: str, attempts: int) -> UpstreamError:
        logger.warning(
            "managed_issue_timed_out",
            extra={"certificate_arn": certificate_arn, "attempts": attempts},
        )
        return UpstreamError(
            ErrorCode.UNABLE_TO_ISSUE_CERTIFICATE,
            f"not issued within {self._timeout:g}s",
        )


class AliasTable:
    """Environment-scoped alias lookup, e.g. ``CA_<ALIAS>`` -> CA certificate ID.

    Variables named in ``reserved`` (the application's own settings that share
    the prefix, such as ``CA_KEY_PARAMETER_TEMPLATE``) never resolve as aliases.
    """

    def __init__(
        self,
        prefix: str,
        environ: Mapping[str, str] | None = None,
        reserved: Collection[str] = (),
    ) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ
        self._reserved = frozenset(name.upper() for name in reserved)

    def resolve(self, alias: str) -> str | None:
        name = f"{self._prefix}{alias.upper()}"
        if name in self._reserved:
            logger.warning("reserved_alias_rejected", extra={"alias": alias})
            return None
        value = self._environ.get(name)
        return value or None


class AuthoritySelector:
    """Resolves request-level AuthorityParameters against configured defaults.

    Request parameters override defaults. For each identifier an alias, when
    given, wins over the explicit value and must resolve; otherwise the
    explicit value is required.
    """

    def __init__(
        self,
        managed_enabled: bool,
        default_ca_certificate_id: str,
        default_ca_arn: str,
        registry_aliases: AliasTable,
        managed_aliases: AliasTable,
    ) -> None:
        self._managed_enabled = managed_enabled
        self._default_ca_certificate_id = default_ca_certificate_id
        self._default_ca_arn = default_ca_arn
        self._registry_aliases = registry_aliases
        self._managed_aliases = managed_aliases

    def select(self, parameters: AuthorityParameters | None) -> AuthoritySelection:
        """Pick the backend and identifiers for one request.

        Raises:
            NotFoundError: INVALID_ALIAS if an alias does not resolve.
            ValidationError: INVALID_AUTHORITY_PARAMETERS if no identifier results.
        """
        ca_certificate_id = self._default_ca_certificate_id
        ca_arn = self._default_ca_arn
        subject = None

        if parameters is not None:
            ca_certificate_id = self._resolve(
                parameters.registry_ca_alias,
                parameters.registry_ca_id,
                self._registry_aliases,
                "registryCaAlias",
                "registryCaId",
                required=self._managed_enabled,
            ) or ca_certificate_id
            if self._managed_enabled:
                ca_arn = self._resolve(
                    parameters.managed_ca_alias,
                    parameters.managed_ca_arn,
                    self._managed_aliases,
                    "managedCaAlias",
                    "managedCaArn",
                    required=True,
                ) or ca_arn
                subject = parameters.subject

        if not ca_certificate_id:
            raise ValidationError(
                "no CA certificate configured", code=ErrorCode.INVALID_AUTHORITY_PARAMETERS
            )

        if self._managed_enabled:
            if not ca_arn:
                raise ValidationError(
                    "no managed CA configured", code=ErrorCode.INVALID_AUTHORITY_PARAMETERS
                )
            return AuthoritySelection(
                backend=AuthorityBackend.MANAGED,
                ca_certificate_id=ca_certificate_id,
                ca_arn=ca_arn,
                subject=subject,
            )

        return AuthoritySelection(
            backend=AuthorityBackend.LOCAL_KEY, ca_certificate_id=ca_certificate_id
        )

    @staticmethod
    def _resolve(
        alias: str | None,
        explicit: str | None,
        table: AliasTable,
        alias_field: str,
        explicit_field: str,
        required: bool,
    ) -> str | None:
        if alias:
            resolved = table.resolve(alias)
            if not resolved:
                raise NotFoundError(ErrorCode.INVALID_ALIAS, f"unknown {alias_field} {alias!r}")
            return resolved
        if explicit:
            return explicit
        if required:
            raise ValidationError(
                f"either {alias_field} or {explicit_field} must be provided",
                code=ErrorCode.INVALID_AUTHORITY_PARAMETERS,
            )
        return None
