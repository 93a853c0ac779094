"""Error taxonomy for the certificate lifecycle.

Every error carries a stable ``ErrorCode``; ``str(err)`` is what a device sees
in the ``message`` field of a failure outcome.
"""

from certvendor.domain.states import ErrorCode


class CertificateVendorError(Exception):
    """Base class for errors with a stable, device-facing code."""

    def __init__(self, code: ErrorCode, detail: str | None = None):
        self.code = code
        self.detail = detail
        super().__init__(f"{code.value}: {detail}" if detail else code.value)


class ValidationError(CertificateVendorError):
    """Raised when a request is missing or has malformed required fields."""

    def __init__(self, detail: str, code: ErrorCode = ErrorCode.INVALID_REQUEST):
        super().__init__(code, detail)


class AuthorizationError(CertificateVendorError):
    """Raised when a device may not take part in the lifecycle."""

    pass


class NotFoundError(CertificateVendorError):
    """Raised when a staged pointer, certificate or alias cannot be resolved."""

    pass


class UpstreamError(CertificateVendorError):
    """Raised when a registry, authority, object store or channel call fails."""

    pass
