"""Shared fixtures: in-memory collaborators and test certificate material."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.x509.oid import NameOID

from certvendor.ca.authority import AliasTable, AuthoritySelector
from certvendor.domain.errors import NotFoundError, UpstreamError
from certvendor.domain.models import (
    AuthoritySelection,
    IdentityHandle,
    IssuedCertificate,
    ResponseOutcome,
)
from certvendor.domain.states import (
    AccessMode,
    AuthorityBackend,
    CertificateStatus,
    ErrorCode,
)
from certvendor.services.lifecycle_service import CertificateLifecycleService, LifecycleConfig

REGION = "us-east-1"
ACCOUNT_ID = "123456789012"
CA_PEM = "-----BEGIN CERTIFICATE-----\nCA\n-----END CERTIFICATE-----"


class InMemoryRegistry:
    """Device registry state with the DeviceRegistryGateway call surface.

    ``fail_on`` maps a method name to the error code it should raise.
    ``calls`` records every call as (method, *args) in order.
    """

    def __init__(self) -> None:
        self.devices: dict[str, dict[str, str]] = {}
        self.groups: dict[str, set[str]] = {}
        self.certificates: dict[str, str] = {}
        self.bindings: dict[str, list[str]] = {}
        self.attached: dict[str, list[str]] = {}
        self.effective: dict[str, list[str]] = {}
        self.fail_on: dict[str, ErrorCode] = {}
        self.calls: list[tuple] = []
        self._serial = 0

    # Setup helpers

    def add_device(self, device_id: str, eligible: bool = True, groups: tuple[str, ...] = ()) -> None:
        self.devices[device_id] = {"eligible": "true" if eligible else "false"}
        for group in groups:
            self.groups.setdefault(group, set()).add(device_id)

    def add_certificate(
        self,
        certificate_id: str,
        devices: tuple[str, ...] = (),
        policies: tuple[str, ...] = (),
        status: CertificateStatus = CertificateStatus.ACTIVE,
    ) -> IdentityHandle:
        self.certificates[certificate_id] = status.value
        self.bindings[certificate_id] = list(devices)
        self.attached[certificate_id] = list(policies)
        return self.handle_for(certificate_id)

    def mutations(self) -> list[tuple]:
        read_only = {
            "is_eligible",
            "list_principals_for_device",
            "list_devices_for_principal",
            "list_effective_policies",
            "list_attached_policies",
        }
        return [call for call in self.calls if call[0] not in read_only]

    def _record(self, method: str, *args: object) -> None:
        self.calls.append((method, *args))
        if method in self.fail_on:
            raise UpstreamError(self.fail_on[method])

    # DeviceRegistryGateway surface

    def handle_for(self, certificate_id: str) -> IdentityHandle:
        return IdentityHandle.for_certificate(REGION, ACCOUNT_ID, certificate_id)

    async def is_eligible(self, device_id: str) -> bool:
        self._record("is_eligible", device_id)
        device = self.devices.get(device_id)
        return device is not None and device["eligible"] == "true"

    async def update_device_status(self, device_id: str) -> None:
        self._record("update_device_status", device_id)
        self.devices[device_id]["status"] = "active"

    async def remove_from_group(self, device_id: str, group_name: str) -> None:
        self._record("remove_from_group", device_id, group_name)
        self.groups.get(group_name, set()).discard(device_id)

    async def register(self, ca_pem: str, certificate_pem: str) -> IdentityHandle:
        self._record("register", ca_pem, certificate_pem)
        self._serial += 1
        certificate_id = f"{self._serial:064x}"
        self.add_certificate(certificate_id)
        return self.handle_for(certificate_id)

    async def set_certificate_status(self, handle: IdentityHandle, status: CertificateStatus) -> None:
        self._record("set_certificate_status", handle.certificate_id, status)
        self.certificates[handle.certificate_id] = status.value

    async def delete_certificate(self, handle: IdentityHandle) -> None:
        self._record("delete_certificate", handle.certificate_id)
        del self.certificates[handle.certificate_id]

    async def bind_principal(self, handle: IdentityHandle, device_id: str) -> None:
        self._record("bind_principal", handle.arn, device_id)
        self.bindings.setdefault(handle.certificate_id, []).append(device_id)

    async def unbind_principal(self, handle: IdentityHandle, device_id: str) -> None:
        self._record("unbind_principal", handle.certificate_id, device_id)
        self.bindings[handle.certificate_id].remove(device_id)

    async def list_principals_for_device(self, device_id: str) -> list[IdentityHandle]:
        self._record("list_principals_for_device", device_id)
        return [
            self.handle_for(certificate_id)
            for certificate_id, devices in self.bindings.items()
            if device_id in devices
        ]

    async def list_devices_for_principal(self, handle: IdentityHandle) -> list[str]:
        self._record("list_devices_for_principal", handle.certificate_id)
        return list(self.bindings.get(handle.certificate_id, []))

    async def attach_policy(self, handle: IdentityHandle, policy_name: str) -> None:
        self._record("attach_policy", handle.arn, policy_name)
        self.attached.setdefault(handle.certificate_id, []).append(policy_name)

    async def detach_policy(self, handle: IdentityHandle, policy_name: str) -> None:
        self._record("detach_policy", handle.certificate_id, policy_name)
        self.attached[handle.certificate_id].remove(policy_name)

    async def list_effective_policies(self, handle: IdentityHandle) -> list[str]:
        self._record("list_effective_policies", handle.certificate_id)
        if handle.certificate_id in self.effective:
            return list(self.effective[handle.certificate_id])
        return list(self.attached.get(handle.certificate_id, []))

    async def list_attached_policies(self, handle: IdentityHandle) -> list[str]:
        self._record("list_attached_policies", handle.certificate_id)
        return list(self.attached.get(handle.certificate_id, []))


class StubAuthority:
    """Identity authority that 'signs' by wrapping the CSR text."""

    def __init__(self, backend: AuthorityBackend = AuthorityBackend.LOCAL_KEY) -> None:
        self.backend = backend
        self.issued: list[tuple[str, AuthoritySelection]] = []
        self.fetched: list[str] = []
        self.fail_fetch: ErrorCode | None = None
        self.fail_issue: Exception | None = None
        self.issue_delay = 0.0

    async def fetch_authority_certificate(self, ca_certificate_id: str) -> str:
        self.fetched.append(ca_certificate_id)
        if self.fail_fetch:
            raise UpstreamError(self.fail_fetch)
        return CA_PEM

    async def issue(
        self, csr: str, selection: AuthoritySelection, ca_pem: str, device_id: str
    ) -> IssuedCertificate:
        self.issued.append((csr, selection))
        if self.issue_delay:
            await asyncio.sleep(self.issue_delay)
        if self.fail_issue:
            raise self.fail_issue
        return IssuedCertificate(
            pem=f"CERT({csr})", authority_id=selection.ca_certificate_id, device_id=device_id
        )


class StubObjectStore:
    """Staged artifacts keyed by object key; ``staged[key]`` is the certificate ID tag."""

    def __init__(self) -> None:
        self.staged: dict[str, str | None] = {}
        self.presigned: list[tuple[str, str, int, AccessMode]] = []
        self.fail_presign = False

    async def get_certificate_id(self, bucket: str, key: str) -> str:
        if key not in self.staged:
            raise NotFoundError(ErrorCode.CERTIFICATE_NOT_FOUND)
        certificate_id = self.staged[key]
        if not certificate_id:
            raise NotFoundError(ErrorCode.MISSING_CERTIFICATE_ID)
        return certificate_id

    def presign(
        self, bucket: str, key: str, expires_in_seconds: int, mode: AccessMode = AccessMode.GET
    ) -> str:
        self.presigned.append((bucket, key, expires_in_seconds, mode))
        if self.fail_presign:
            raise UpstreamError(ErrorCode.UNABLE_TO_PRESIGN_URL)
        return f"https://{bucket}.s3.amazonaws.com/{key}?X-Amz-Expires={expires_in_seconds}"


class RecordingChannel:
    """Collects published outcomes as (topic, outcome)."""

    def __init__(self) -> None:
        self.published: list[tuple[str, ResponseOutcome]] = []
        self.fail_statuses: set[str] = set()

    async def publish(self, topic_template: str, outcome: ResponseOutcome) -> None:
        if outcome.status.value in self.fail_statuses:
            raise UpstreamError(ErrorCode.UNABLE_TO_PUBLISH_RESPONSE)
        self.published.append((topic_template.replace("{deviceId}", outcome.device_id), outcome))


def make_config(**overrides: object) -> LifecycleConfig:
    values: dict[str, object] = {
        "certificates_bucket": "cdf-certificates",
        "certificates_prefix": "certificates/",
        "certificates_suffix": "/certs.zip",
        "presigned_url_expires_in_seconds": 300,
        "get_success_topic": "cdf/certificates/{deviceId}/get/accepted",
        "get_failure_topic": "cdf/certificates/{deviceId}/get/rejected",
        "ack_success_topic": "cdf/certificates/{deviceId}/ack/accepted",
        "ack_failure_topic": "cdf/certificates/{deviceId}/ack/rejected",
        "pending_group": "cdfRotateCertificates",
        "default_policy": "policy-default",
        "use_default_policy": False,
        "delete_previous_certificate": True,
    }
    values.update(overrides)
    return LifecycleConfig(**values)  # type: ignore[arg-type]


@pytest.fixture
def registry() -> InMemoryRegistry:
    registry = InMemoryRegistry()
    registry.add_device("dev-1", groups=("cdfRotateCertificates",))
    return registry


@pytest.fixture
def authority() -> StubAuthority:
    return StubAuthority()


@pytest.fixture
def object_store() -> StubObjectStore:
    return StubObjectStore()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def make_service(
    registry: InMemoryRegistry,
    authority: StubAuthority,
    object_store: StubObjectStore,
    channel: RecordingChannel,
) -> Callable[..., CertificateLifecycleService]:
    """Factory building a service over the shared fakes; kwargs override LifecycleConfig."""

    def _make(**overrides: object) -> CertificateLifecycleService:
        selector = AuthoritySelector(
            managed_enabled=False,
            default_ca_certificate_id="ca-1",
            default_ca_arn="",
            registry_aliases=AliasTable("CA_", environ={"CA_FACTORY": "ca-factory"}),
            managed_aliases=AliasTable("PCA_", environ={}),
        )
        return CertificateLifecycleService(
            config=make_config(**overrides),
            registry=registry,  # type: ignore[arg-type]
            authorities={AuthorityBackend.LOCAL_KEY: authority},  # type: ignore[dict-item]
            selector=selector,
            object_store=object_store,  # type: ignore[arg-type]
            channel=channel,  # type: ignore[arg-type]
        )

    return _make


def create_ca(private_key=None, common_name: str = "Test Device CA") -> tuple[str, str]:
    """Create a self-signed CA and return (key_pem, cert_pem)."""
    private_key = private_key or ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    digest = None if isinstance(private_key, ed25519.Ed25519PrivateKey) else hashes.SHA256()
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(private_key, digest)
    )
    key_pem = private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("utf-8")
    return key_pem, cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")


def create_csr(common_name: str = "dev-1") -> str:
    """Create a device CSR in PEM format."""
    key = ec.generate_private_key(ec.SECP256R1())
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.PEM).decode("utf-8")


def create_ssm(key_pem: str) -> MagicMock:
    ssm = MagicMock()
    ssm.get_parameter.return_value = {"Parameter": {"Name": "cdf-ca-key-ca-1", "Value": key_pem}}
    return ssm


