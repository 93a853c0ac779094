"""OpenTelemetry metrics for the certificate vendor."""

from opentelemetry import metrics

# Get meter for the certvendor module
meter = metrics.get_meter("certvendor")

# Operation outcomes
operations_total = meter.create_counter(
    name="certvendor_operations_total",
    description="Total lifecycle operations by outcome",
    unit="1",
)

# ============================================================================
# Issuance
# ============================================================================

certificates_issued_total = meter.create_counter(
    name="certvendor_certificates_issued_total",
    description="Total certificates issued",
    unit="1",
)

certificate_issuance_duration = meter.create_histogram(
    name="certvendor_certificate_issuance_duration_seconds",
    description="Certificate issuance duration in seconds",
    unit="s",
)

authority_poll_attempts = meter.create_histogram(
    name="certvendor_authority_poll_attempts",
    description="Managed CA polls needed before a certificate was issued",
    unit="1",
)

policies_attached_total = meter.create_counter(
    name="certvendor_policies_attached_total",
    description="Total policies attached to new certificates",
    unit="1",
)

# ============================================================================
# Rotation cleanup
# ============================================================================

principals_unbound_total = meter.create_counter(
    name="certvendor_principals_unbound_total",
    description="Total previous certificates detached from a device",
    unit="1",
)

certificates_deleted_total = meter.create_counter(
    name="certvendor_certificates_deleted_total",
    description="Total orphaned previous certificates deleted",
    unit="1",
)


class VendorMetrics:
    """Facade for certificate vendor metrics with proper labels."""

    def record_operation(self, operation: str, status: str) -> None:
        """Record an operation outcome. Labels: operation, status=SUCCESS|FAILED"""
        operations_total.add(1, {"operation": operation, "status": status})

    def record_certificate_issued(self, backend: str, duration_seconds: float) -> None:
        """Record issuance. Labels: backend=local_key|managed"""
        certificates_issued_total.add(1, {"backend": backend})
        certificate_issuance_duration.record(duration_seconds, {"backend": backend})

    def record_poll_attempts(self, attempts: int) -> None:
        authority_poll_attempts.record(attempts)

    def record_policies_attached(self, source: str, count: int) -> None:
        """Labels: source=inherited|default"""
        policies_attached_total.add(count, {"source": source})

    def record_principal_unbound(self) -> None:
        principals_unbound_total.add(1)

    def record_certificate_deleted(self) -> None:
        certificates_deleted_total.add(1)


# Singleton instance
vendor_metrics = VendorMetrics()
