"""Certificate lifecycle service: activation, CSR issuance and rotation acknowledgement."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass

from opentelemetry import trace

from certvendor.ca.authority import AuthoritySelector, IdentityAuthority
from certvendor.domain.errors import AuthorizationError, UpstreamError, ValidationError
from certvendor.domain.models import (
    AuthorityParameters,
    DeviceRequest,
    IdentityHandle,
    ResponseOutcome,
)
from certvendor.domain.pipeline import PipelineContext
from certvendor.domain.states import (
    AccessMode,
    AuthorityBackend,
    CertificateStatus,
    ErrorCode,
    Operation,
    PolicySource,
    ResponseStatus,
    Step,
)
from certvendor.messaging.response_channel import ResponseChannel
from certvendor.metrics import vendor_metrics
from certvendor.registry.gateway import DeviceRegistryGateway
from certvendor.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class LifecycleConfig:
    """Deployment configuration the lifecycle reads, resolved once at startup."""

    certificates_bucket: str
    certificates_prefix: str
    certificates_suffix: str
    presigned_url_expires_in_seconds: int
    get_success_topic: str
    get_failure_topic: str
    ack_success_topic: str
    ack_failure_topic: str
    pending_group: str
    default_policy: str
    use_default_policy: bool = False
    delete_previous_certificate: bool = False

    def staged_key(self, device_id: str) -> str:
        return f"{self.certificates_prefix}{device_id}{self.certificates_suffix}"


class CertificateLifecycleService:
    """Orchestrates certificate activation, issuance and rotation cleanup.

    Each public operation is a linear pipeline with one failure boundary: any
    step error is published as a FAILED outcome on the operation's failure
    topic and then re-raised to the caller. No step is retried here.

    At most one operation per device should be in flight; callers serialize
    (see DeviceLocks).
    """

    def __init__(
        self,
        config: LifecycleConfig,
        registry: DeviceRegistryGateway,
        authorities: Mapping[AuthorityBackend, IdentityAuthority],
        selector: AuthoritySelector,
        object_store: ObjectStore,
        channel: ResponseChannel,
    ) -> None:
        self.config = config
        self.registry = registry
        self.authorities = authorities
        self.selector = selector
        self.object_store = object_store
        self.channel = channel

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def activate(self, device_id: str) -> ResponseOutcome:
        """Activate the certificate staged for the device and hand out its download URL.

        - Resolves: staged certificate ID from the artifact's metadata
        - Sets: certificate status ACTIVE
        - Presigns: GET URL to the staged artifact
        - Publishes: {location} on the get success topic
        """
        request = DeviceRequest(device_id=_require_device_id(device_id))
        ctx = PipelineContext(Operation.ACTIVATE, request)
        return await self._run(
            ctx, self.config.get_success_topic, self.config.get_failure_topic, self._activate
        )

    async def activate_with_csr(
        self,
        device_id: str,
        csr: str,
        previous_certificate_id: str | None = None,
        authority_parameters: AuthorityParameters | None = None,
    ) -> ResponseOutcome:
        """Issue, register and bind a certificate for a device CSR.

        - Selects: CA backend (request parameters override configuration)
        - Issues: certificate from the CSR
        - Registers + binds: certificate to the device
        - Attaches: inherited policies of the previous certificate, or the
          default policy when none is named or USE_DEFAULT_POLICY is set
        - Publishes: {certificate, certificateId} on the get success topic
        """
        request = DeviceRequest(
            device_id=_require_device_id(device_id),
            csr=csr,
            previous_certificate_id=previous_certificate_id or None,
            authority_parameters=authority_parameters,
        )
        ctx = PipelineContext(Operation.ACTIVATE_WITH_CSR, request)
        return await self._run(
            ctx, self.config.get_success_topic, self.config.get_failure_topic, self._issue
        )

    async def acknowledge(
        self,
        device_id: str,
        certificate_id: str,
        previous_certificate_id: str | None = None,
    ) -> ResponseOutcome:
        """Confirm the device switched to ``certificate_id``.

        - Removes: the device from the pending rotation group
        - Cleans up: previous certificates when DELETE_PREVIOUS_CERTIFICATE is set
        - Publishes: {message: OK} on the ack success topic
        """
        request = DeviceRequest(
            device_id=_require_device_id(device_id),
            certificate_id=certificate_id,
            previous_certificate_id=previous_certificate_id or None,
        )
        ctx = PipelineContext(Operation.ACKNOWLEDGE, request)
        return await self._run(
            ctx, self.config.ack_success_topic, self.config.ack_failure_topic, self._acknowledge
        )

    # ------------------------------------------------------------------
    # Failure boundary
    # ------------------------------------------------------------------

    async def _run(
        self,
        ctx: PipelineContext,
        success_topic: str,
        failure_topic: str,
        pipeline: Callable[[PipelineContext], Awaitable[ResponseOutcome]],
    ) -> ResponseOutcome:
        operation = ctx.operation.value
        with tracer.start_as_current_span(f"CertificateLifecycleService.{operation}") as span:
            span.set_attribute("device_id", ctx.device_id)
            try:
                outcome = await pipeline(ctx)
                async with ctx.step(Step.PUBLISH_RESPONSE):
                    await self.channel.publish(success_topic, outcome)
            except asyncio.CancelledError as err:
                self._record_failure(ctx, span, err, ErrorCode.OPERATION_CANCELLED.value)
                # The device still gets its single outcome when the caller aborts
                await asyncio.shield(
                    self._publish_failure(
                        failure_topic,
                        ResponseOutcome.failed(ctx.device_id, ErrorCode.OPERATION_CANCELLED.value),
                    )
                )
                raise
            except Exception as err:
                self._record_failure(ctx, span, err, str(err))
                await self._publish_failure(failure_topic, ResponseOutcome.failed(ctx.device_id, str(err)))
                raise

            vendor_metrics.record_operation(operation, ResponseStatus.SUCCESS.value)
            logger.info(
                "operation_succeeded", extra={"operation": operation, "device_id": ctx.device_id}
            )
            return outcome

    def _record_failure(
        self, ctx: PipelineContext, span: trace.Span, err: BaseException, message: str
    ) -> None:
        operation = ctx.operation.value
        failed_step = ctx.failed_step.value if ctx.failed_step else "unknown"
        span.record_exception(err)
        span.set_attribute("failed_step", failed_step)
        logger.error(
            "operation_failed",
            extra={
                "operation": operation,
                "device_id": ctx.device_id,
                "failed_step": failed_step,
                "error": message,
            },
        )
        vendor_metrics.record_operation(operation, ResponseStatus.FAILED.value)

    async def _publish_failure(self, failure_topic: str, outcome: ResponseOutcome) -> None:
        # The caller re-raises the originating error either way
        try:
            await self.channel.publish(failure_topic, outcome)
        except UpstreamError as publish_err:
            logger.error(
                "failure_outcome_not_published",
                extra={"device_id": outcome.device_id, "error": str(publish_err)},
            )

    async def _check_eligibility(self, device_id: str) -> None:
        if not await self.registry.is_eligible(device_id):
            logger.warning("device_not_whitelisted", extra={"device_id": device_id})
            raise AuthorizationError(ErrorCode.DEVICE_NOT_WHITELISTED)

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def _activate(self, ctx: PipelineContext) -> ResponseOutcome:
        device_id = ctx.device_id
        bucket = self.config.certificates_bucket
        key = self.config.staged_key(device_id)

        async with ctx.step(Step.VALIDATE_REQUEST):
            if not bucket:
                raise ValidationError("no certificates bucket configured")

        async with ctx.step(Step.CHECK_ELIGIBILITY):
            await self._check_eligibility(device_id)

        async with ctx.step(Step.RESOLVE_STAGED_CERTIFICATE):
            certificate_id = await self.object_store.get_certificate_id(bucket, key)

        async with ctx.step(Step.ACTIVATE_CERTIFICATE):
            await self.registry.set_certificate_status(
                self.registry.handle_for(certificate_id), CertificateStatus.ACTIVE
            )

        async with ctx.step(Step.PRESIGN_URL):
            location = self.object_store.presign(
                bucket, key, self.config.presigned_url_expires_in_seconds, AccessMode.GET
            )

        async with ctx.step(Step.UPDATE_DEVICE_STATUS):
            await self.registry.update_device_status(device_id)

        logger.info(
            "certificate_activated",
            extra={"device_id": device_id, "certificate_id": certificate_id},
        )
        return ResponseOutcome.success(device_id, location=location)

    async def _issue(self, ctx: PipelineContext) -> ResponseOutcome:
        request = ctx.request
        device_id = ctx.device_id
        inherit = bool(request.previous_certificate_id) and not self.config.use_default_policy

        async with ctx.step(Step.VALIDATE_REQUEST):
            if not isinstance(request.csr, str) or not request.csr.strip():
                raise ValidationError("csr must be a non-empty string")
            if not inherit and not self.config.default_policy:
                raise ValidationError("no default policy configured")

        async with ctx.step(Step.CHECK_ELIGIBILITY):
            await self._check_eligibility(device_id)

        async with ctx.step(Step.SELECT_AUTHORITY):
            selection = self.selector.select(request.authority_parameters)
            authority = self.authorities[selection.backend]

        async with ctx.step(Step.FETCH_AUTHORITY_CERTIFICATE):
            ca_pem = await authority.fetch_authority_certificate(selection.ca_certificate_id)

        async with ctx.step(Step.ISSUE_CERTIFICATE):
            issued = await authority.issue(request.csr, selection, ca_pem, device_id)

        async with ctx.step(Step.REGISTER_CERTIFICATE):
            handle = await self.registry.register(ca_pem, issued.pem)

        async with ctx.step(Step.BIND_PRINCIPAL):
            await self.registry.bind_principal(handle, device_id)

        async with ctx.step(Step.ATTACH_POLICIES):
            await self._attach_policies(handle, request.previous_certificate_id if inherit else None)

        async with ctx.step(Step.UPDATE_DEVICE_STATUS):
            await self.registry.update_device_status(device_id)

        logger.info(
            "certificate_issued",
            extra={
                "device_id": device_id,
                "certificate_id": handle.certificate_id,
                "backend": selection.backend.value,
            },
        )
        return ResponseOutcome.success(
            device_id, certificate=issued.pem, certificateId=handle.certificate_id
        )

    async def _attach_policies(
        self, handle: IdentityHandle, inherit_from: str | None
    ) -> list[str]:
        """Attach inherited policies when ``inherit_from`` is set, else the default policy.

        Policies are attached one at a time; the first failure aborts the rest.
        """
        if inherit_from:
            previous = self.registry.handle_for(inherit_from)
            # Effective policies may repeat a name across sources
            policies = list(dict.fromkeys(await self.registry.list_effective_policies(previous)))
            source = PolicySource.INHERITED
        else:
            policies = [self.config.default_policy]
            source = PolicySource.DEFAULT

        for policy_name in policies:
            await self.registry.attach_policy(handle, policy_name)

        vendor_metrics.record_policies_attached(source.value, len(policies))
        logger.info(
            "policies_attached",
            extra={
                "certificate_id": handle.certificate_id,
                "source": source.value,
                "count": len(policies),
            },
        )
        return policies

    async def _acknowledge(self, ctx: PipelineContext) -> ResponseOutcome:
        request = ctx.request
        device_id = ctx.device_id

        async with ctx.step(Step.VALIDATE_REQUEST):
            if not isinstance(request.certificate_id, str) or not request.certificate_id.strip():
                raise ValidationError("certificateId must be a non-empty string")

        async with ctx.step(Step.CHECK_ELIGIBILITY):
            await self._check_eligibility(device_id)

        async with ctx.step(Step.LEAVE_PENDING_GROUP):
            await self.registry.remove_from_group(device_id, self.config.pending_group)

        if self.config.delete_previous_certificate:
            async with ctx.step(Step.REMOVE_PREVIOUS_CERTIFICATE):
                await self.remove_previous_certificates(
                    device_id, request.certificate_id, request.previous_certificate_id
                )

        return ResponseOutcome.success(device_id, message="OK")

    # ------------------------------------------------------------------
    # Rotation cleanup
    # ------------------------------------------------------------------

    async def remove_previous_certificates(
        self,
        device_id: str,
        current_certificate_id: str,
        previous_certificate_id: str | None = None,
    ) -> list[str]:
        """Unbind stale certificates from the device and delete the orphaned ones.

        Invariants:
        - The certificate matching ``current_certificate_id`` is never touched.
        - When ``previous_certificate_id`` is given, only that certificate is considered.
        - A certificate is deleted only once no device is bound to it; policies
          are detached and it is set INACTIVE first.

        Returns:
            IDs of the certificates deleted.
        """
        with tracer.start_as_current_span("CertificateLifecycleService.remove_previous") as span:
            span.set_attribute("device_id", device_id)
            span.set_attribute("current_certificate_id", current_certificate_id)

            deleted: list[str] = []
            for handle in await self.registry.list_principals_for_device(device_id):
                if handle.certificate_id == current_certificate_id:
                    continue
                if previous_certificate_id and handle.certificate_id != previous_certificate_id:
                    continue

                await self.registry.unbind_principal(handle, device_id)
                vendor_metrics.record_principal_unbound()

                remaining = await self.registry.list_devices_for_principal(handle)
                if remaining:
                    logger.info(
                        "previous_certificate_still_bound",
                        extra={
                            "device_id": device_id,
                            "certificate_id": handle.certificate_id,
                            "remaining_devices": len(remaining),
                        },
                    )
                    continue

                for policy_name in await self.registry.list_attached_policies(handle):
                    await self.registry.detach_policy(handle, policy_name)
                await self.registry.set_certificate_status(handle, CertificateStatus.INACTIVE)
                await self.registry.delete_certificate(handle)

                vendor_metrics.record_certificate_deleted()
                deleted.append(handle.certificate_id)
                logger.info(
                    "previous_certificate_deleted",
                    extra={"device_id": device_id, "certificate_id": handle.certificate_id},
                )

            span.set_attribute("deleted", len(deleted))
            return deleted


def _require_device_id(device_id: str) -> str:
    # Without a device ID there is no topic to publish a failure on
    if not isinstance(device_id, str) or not device_id.strip():
        raise ValidationError("deviceId must be a non-empty string")
    return device_id
