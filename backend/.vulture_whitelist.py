from backend.src.certvendor.api.operations import acknowledge, activate, activate_with_csr
from backend.src.certvendor.api.schemas import (
    AcknowledgeRequest,
    ActivateWithCsrRequest,
    AuthorityParametersBody,
    CertInfo,
    ErrorResponse,
)
from backend.src.certvendor.domain.states import AccessMode, ErrorCode
from backend.src.main import health_check, lifespan
from backend.src.shared.config import Settings

# Pydantic Settings
Settings.model_config
Settings.LOG_LEVEL
Settings.IOT_DATA_ENDPOINT
Settings.DEVICE_WHITELIST_ATTRIBUTE
Settings.DEVICE_STATUS_ATTRIBUTE
Settings.ACMPCA_POLL_BACKOFF
Settings.API_KEY_HASH

# Request/response schemas (populated from the wire by FastAPI)
CertInfo.model_config
CertInfo.organizational_unit
CertInfo.state_name
AuthorityParametersBody.awsiot_ca_alias
AuthorityParametersBody.awsiot_ca_id
AuthorityParametersBody.acmpca_ca_alias
AuthorityParametersBody.acmpca_ca_arn
ActivateWithCsrRequest.previous_certificate_id
ActivateWithCsrRequest.acmpca_parameters
AcknowledgeRequest.certificate_id
ErrorResponse.error

# Enums
AccessMode.PUT
ErrorCode.INVALID_AUTHORITY_PARAMETERS

# FastAPI
health_check
lifespan
activate
activate_with_csr
acknowledge
