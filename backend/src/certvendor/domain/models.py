"""Value objects passed between the lifecycle engine and its collaborators."""

from dataclasses import dataclass, field
from typing import Any

from .states import AuthorityBackend, ResponseStatus

# Registry ARN resource form: arn:aws:iot:<region>:<account>:cert/<certificateId>
_ARN_PARTS = 6


@dataclass(frozen=True)
class SubjectInfo:
    """Structured subject fields passed through to a managed CA."""

    country: str | None = None
    organization: str | None = None
    organizational_unit: str | None = None
    state_name: str | None = None
    common_name: str | None = None

    def to_api_subject(self) -> dict[str, str]:
        """Render as an ACM PCA ``ApiPassthrough.Subject`` block, omitting empty fields."""
        subject = {
            "Country": self.country,
            "Organization": self.organization,
            "OrganizationalUnit": self.organizational_unit,
            "State": self.state_name,
            "CommonName": self.common_name,
        }
        return {key: str(value) for key, value in subject.items() if value}


@dataclass(frozen=True)
class AuthorityParameters:
    """Request-level override of the configured certificate authority."""

    registry_ca_alias: str | None = None
    registry_ca_id: str | None = None
    managed_ca_alias: str | None = None
    managed_ca_arn: str | None = None
    subject: SubjectInfo | None = None


@dataclass(frozen=True)
class DeviceRequest:
    """Inbound request for one device. ``csr`` selects the issuance path."""

    device_id: str
    csr: str | None = None
    certificate_id: str | None = None
    previous_certificate_id: str | None = None
    authority_parameters: AuthorityParameters | None = None


@dataclass(frozen=True)
class AuthoritySelection:
    """The backend and identifiers resolved once per issuance request."""

    backend: AuthorityBackend
    ca_certificate_id: str
    ca_arn: str | None = None
    subject: SubjectInfo | None = None


@dataclass(frozen=True)
class IssuedCertificate:
    """A freshly issued certificate. ``pem`` is the form registered downstream."""

    pem: str
    authority_id: str
    device_id: str
    chain_pem: str | None = None


@dataclass(frozen=True)
class IdentityHandle:
    """Structured form of a registry certificate ARN."""

    arn: str
    authority_namespace: str
    certificate_id: str

    @classmethod
    def from_arn(cls, arn: str) -> "IdentityHandle":
        """Parse ``arn:<partition>:<service>:<region>:<account>:<namespace>/<id>``.

        Raises:
            ValueError: If the ARN has no ``namespace/id`` resource part.
        """
        parts = arn.split(":", _ARN_PARTS - 1)
        if len(parts) != _ARN_PARTS or parts[0] != "arn":
            raise ValueError(f"Not an ARN: {arn!r}")
        namespace, sep, certificate_id = parts[-1].partition("/")
        if not sep or not certificate_id:
            raise ValueError(f"ARN has no certificate id: {arn!r}")
        return cls(arn=arn, authority_namespace=namespace, certificate_id=certificate_id)

    @classmethod
    def for_certificate(cls, region: str, account_id: str, certificate_id: str) -> "IdentityHandle":
        arn = f"arn:aws:iot:{region}:{account_id}:cert/{certificate_id}"
        return cls(arn=arn, authority_namespace="cert", certificate_id=certificate_id)


@dataclass(frozen=True)
class ResponseOutcome:
    """Terminal outcome of one public operation, published exactly once."""

    device_id: str
    status: ResponseStatus
    message: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(
        cls, device_id: str, message: str | None = None, **payload: Any
    ) -> "ResponseOutcome":
        return cls(
            device_id=device_id, status=ResponseStatus.SUCCESS, message=message, payload=payload
        )

    @classmethod
    def failed(cls, device_id: str, message: str) -> "ResponseOutcome":
        return cls(device_id=device_id, status=ResponseStatus.FAILED, message=message)

    def to_message(self) -> dict[str, Any]:
        """Wire form: payload fields at top level, as devices read them."""
        body: dict[str, Any] = {"deviceId": self.device_id, "status": self.status.value}
        body.update(self.payload)
        if self.message is not None:
            body["message"] = self.message
        return body
