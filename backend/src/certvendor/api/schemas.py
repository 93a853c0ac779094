"""Pydantic schemas for the certificate API request/response validation.

Field aliases follow the device-facing camelCase wire names.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from certvendor.domain.models import AuthorityParameters, SubjectInfo


class CertInfo(BaseModel):
    """Subject fields passed through to the managed CA."""

    model_config = ConfigDict(populate_by_name=True)

    country: str | None = None
    organization: str | None = None
    organizational_unit: str | None = Field(None, alias="organizationalUnit")
    state_name: str | None = Field(None, alias="stateName")
    common_name: str | None = Field(None, alias="commonName")

    def to_domain(self) -> SubjectInfo:
        return SubjectInfo(
            country=self.country,
            organization=self.organization,
            organizational_unit=self.organizational_unit,
            state_name=self.state_name,
            common_name=self.common_name,
        )


class AuthorityParametersBody(BaseModel):
    """Request-level CA override. Aliases resolve through CA_<ALIAS> / PCA_<ALIAS>."""

    model_config = ConfigDict(populate_by_name=True)

    awsiot_ca_alias: str | None = Field(None, alias="awsiotCaAlias")
    awsiot_ca_id: str | None = Field(None, alias="awsiotCaId")
    acmpca_ca_alias: str | None = Field(None, alias="acmpcaCaAlias")
    acmpca_ca_arn: str | None = Field(None, alias="acmpcaCaArn")
    cert_info: CertInfo | None = Field(None, alias="certInfo")

    def to_domain(self) -> AuthorityParameters:
        return AuthorityParameters(
            registry_ca_alias=self.awsiot_ca_alias,
            registry_ca_id=self.awsiot_ca_id,
            managed_ca_alias=self.acmpca_ca_alias,
            managed_ca_arn=self.acmpca_ca_arn,
            subject=self.cert_info.to_domain() if self.cert_info else None,
        )


class ActivateWithCsrRequest(BaseModel):
    """Request body for issuing a certificate from a device CSR."""

    model_config = ConfigDict(populate_by_name=True)

    csr: str = Field(..., min_length=1)
    previous_certificate_id: str | None = Field(None, alias="previousCertificateId")
    acmpca_parameters: AuthorityParametersBody | None = Field(None, alias="acmpcaParameters")


class AcknowledgeRequest(BaseModel):
    """Request body for acknowledging a rotated certificate."""

    model_config = ConfigDict(populate_by_name=True)

    certificate_id: str = Field(..., min_length=1, alias="certificateId")
    previous_certificate_id: str | None = Field(None, alias="previousCertificateId")


class OperationResponse(BaseModel):
    """The outcome published to the device, echoed to the HTTP caller."""

    device_id: str
    status: str
    message: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    code: str
    detail: str | None = None
