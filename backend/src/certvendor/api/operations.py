"""Certificate lifecycle API endpoints.

Each endpoint runs one lifecycle operation. The outcome is also published to
the device's response topic by the service; the HTTP response echoes it.
"""

import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, status

from certvendor.api.auth import require_api_key
from certvendor.api.schemas import (
    AcknowledgeRequest,
    ActivateWithCsrRequest,
    ErrorResponse,
    OperationResponse,
)
from certvendor.ca.certificate_generator import CertificateGenerationError
from certvendor.domain.errors import (
    AuthorizationError,
    CertificateVendorError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from certvendor.domain.models import ResponseOutcome
from certvendor.domain.states import ErrorCode
from certvendor.services.device_locks import DeviceLocks
from certvendor.services.lifecycle_service import CertificateLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/certificates",
    tags=["certificates"],
    dependencies=[Depends(require_api_key)],
)

# Global lifecycle service instance, set at startup
_lifecycle_service: CertificateLifecycleService | None = None
_device_locks = DeviceLocks()

_STATUS_BY_ERROR: dict[type[CertificateVendorError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    UpstreamError: status.HTTP_502_BAD_GATEWAY,
}


def set_lifecycle_service(service: CertificateLifecycleService) -> None:
    """Set the global lifecycle service instance."""
    global _lifecycle_service
    _lifecycle_service = service


def get_lifecycle_service() -> CertificateLifecycleService:
    """Get the global lifecycle service instance."""
    if _lifecycle_service is None:
        raise RuntimeError("CertificateLifecycleService not initialized")
    return _lifecycle_service


def to_http_exception(err: CertificateVendorError | CertificateGenerationError) -> HTTPException:
    """Map a lifecycle error to an HTTP error with an ErrorResponse body."""
    if isinstance(err, CertificateGenerationError):
        # Signing failures stem from the submitted CSR
        status_code = status.HTTP_400_BAD_REQUEST
        body = ErrorResponse(
            error=type(err).__name__, code=ErrorCode.INVALID_REQUEST.value, detail=str(err)
        )
    else:
        status_code = next(
            (code for kind, code in _STATUS_BY_ERROR.items() if isinstance(err, kind)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        body = ErrorResponse(error=type(err).__name__, code=err.code.value, detail=err.detail)
    return HTTPException(status_code=status_code, detail=body.model_dump())


def to_response(outcome: ResponseOutcome) -> OperationResponse:
    return OperationResponse(
        device_id=outcome.device_id,
        status=outcome.status.value,
        message=outcome.message,
        payload=outcome.payload,
    )


async def _run_serialized(
    device_id: str, operation: Callable[[], Awaitable[ResponseOutcome]]
) -> OperationResponse:
    async with _device_locks.hold(device_id):
        try:
            outcome = await operation()
        except (CertificateVendorError, CertificateGenerationError) as e:
            raise to_http_exception(e) from None
    return to_response(outcome)


@router.post("/{device_id}/activate", response_model=OperationResponse)
async def activate(
    device_id: str,
    service: CertificateLifecycleService = Depends(get_lifecycle_service),
) -> OperationResponse:
    """
    Activate the certificate staged for a device.

    - Auth: API key
    - Returns: presigned download URL as payload.location
    - Errors: 403 (not whitelisted), 404 (no staged certificate), 502 (upstream)
    """
    return await _run_serialized(device_id, lambda: service.activate(device_id))


@router.post("/{device_id}/csr", response_model=OperationResponse)
async def activate_with_csr(
    device_id: str,
    body: ActivateWithCsrRequest,
    service: CertificateLifecycleService = Depends(get_lifecycle_service),
) -> OperationResponse:
    """
    Issue, register and bind a certificate from a device CSR.

    - Auth: API key
    - Returns: payload.certificate (PEM) and payload.certificateId
    - Errors: 400 (validation, bad CSR), 403, 404 (unknown alias), 502 (upstream)
    """
    parameters = body.acmpca_parameters.to_domain() if body.acmpca_parameters else None
    return await _run_serialized(
        device_id,
        lambda: service.activate_with_csr(
            device_id,
            body.csr,
            previous_certificate_id=body.previous_certificate_id,
            authority_parameters=parameters,
        ),
    )


@router.post("/{device_id}/ack", response_model=OperationResponse)
async def acknowledge(
    device_id: str,
    body: AcknowledgeRequest,
    service: CertificateLifecycleService = Depends(get_lifecycle_service),
) -> OperationResponse:
    """
    Acknowledge that a device switched to its new certificate.

    - Auth: API key
    - Effect: leaves the rotation group; optionally deletes previous certificates
    - Errors: 400, 403, 502 (upstream)
    """
    return await _run_serialized(
        device_id,
        lambda: service.acknowledge(
            device_id,
            body.certificate_id,
            previous_certificate_id=body.previous_certificate_id,
        ),
    )
