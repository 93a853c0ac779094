from enum import StrEnum


class Operation(StrEnum):
    """Public lifecycle operations."""

    ACTIVATE = "activate"
    ACTIVATE_WITH_CSR = "activate_with_csr"
    ACKNOWLEDGE = "acknowledge"


class Step(StrEnum):
    """Fallible steps an operation pipeline is built from."""

    VALIDATE_REQUEST = "validate_request"
    CHECK_ELIGIBILITY = "check_eligibility"
    RESOLVE_STAGED_CERTIFICATE = "resolve_staged_certificate"
    ACTIVATE_CERTIFICATE = "activate_certificate"
    PRESIGN_URL = "presign_url"
    SELECT_AUTHORITY = "select_authority"
    FETCH_AUTHORITY_CERTIFICATE = "fetch_authority_certificate"
    ISSUE_CERTIFICATE = "issue_certificate"
    REGISTER_CERTIFICATE = "register_certificate"
    BIND_PRINCIPAL = "bind_principal"
    ATTACH_POLICIES = "attach_policies"
    LEAVE_PENDING_GROUP = "leave_pending_group"
    REMOVE_PREVIOUS_CERTIFICATE = "remove_previous_certificate"
    UPDATE_DEVICE_STATUS = "update_device_status"
    PUBLISH_RESPONSE = "publish_response"


class ResponseStatus(StrEnum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class CertificateStatus(StrEnum):
    """Registry-side certificate states this service writes."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class AuthorityBackend(StrEnum):
    LOCAL_KEY = "local_key"
    MANAGED = "managed"


class PolicySource(StrEnum):
    INHERITED = "inherited"
    DEFAULT = "default"


class AccessMode(StrEnum):
    """Object store presign access mode."""

    GET = "get_object"
    PUT = "put_object"


class ErrorCode(StrEnum):
    """Stable error codes surfaced in failure outcomes."""

    # Validation
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_AUTHORITY_PARAMETERS = "INVALID_AUTHORITY_PARAMETERS"

    # Authorization
    DEVICE_NOT_WHITELISTED = "DEVICE_NOT_WHITELISTED"

    # Not found
    MISSING_CERTIFICATE_ID = "MISSING_CERTIFICATE_ID"
    CERTIFICATE_NOT_FOUND = "CERTIFICATE_NOT_FOUND"
    INVALID_ALIAS = "INVALID_ALIAS"

    # Upstream
    UNABLE_TO_VERIFY_DEVICE = "UNABLE_TO_VERIFY_DEVICE"
    UNABLE_TO_ACTIVATE_CERTIFICATE = "UNABLE_TO_ACTIVATE_CERTIFICATE"
    UNABLE_TO_PRESIGN_URL = "UNABLE_TO_PRESIGN_URL"
    UNABLE_TO_GET_CA_CERTIFICATE = "UNABLE_TO_GET_CA_CERTIFICATE"
    UNABLE_TO_FETCH_CA_KEY = "UNABLE_TO_FETCH_CA_KEY"
    UNABLE_TO_ISSUE_CERTIFICATE = "UNABLE_TO_ISSUE_CERTIFICATE"
    UNABLE_TO_REGISTER_CERTIFICATE = "UNABLE_TO_REGISTER_CERTIFICATE"
    UNABLE_TO_ATTACH_CERTIFICATE = "UNABLE_TO_ATTACH_CERTIFICATE"
    UNABLE_TO_ATTACH_POLICY = "UNABLE_TO_ATTACH_POLICY"
    UNABLE_TO_UPDATE_DEVICE_STATUS = "UNABLE_TO_UPDATE_DEVICE_STATUS"
    UNABLE_TO_REMOVE_FROM_GROUP = "UNABLE_TO_REMOVE_FROM_GROUP"
    UNABLE_TO_LIST_PRINCIPALS = "UNABLE_TO_LIST_PRINCIPALS"
    UNABLE_TO_DETACH_CERTIFICATE = "UNABLE_TO_DETACH_CERTIFICATE"
    UNABLE_TO_DETACH_POLICY = "UNABLE_TO_DETACH_POLICY"
    UNABLE_TO_DEACTIVATE_CERTIFICATE = "UNABLE_TO_DEACTIVATE_CERTIFICATE"
    UNABLE_TO_DELETE_CERTIFICATE = "UNABLE_TO_DELETE_CERTIFICATE"
    UNABLE_TO_PUBLISH_RESPONSE = "UNABLE_TO_PUBLISH_RESPONSE"

    # Aborted
    OPERATION_CANCELLED = "OPERATION_CANCELLED"
