"""Device registry gateway over AWS IoT.

Each method is one registry call. Failures are mapped to a single stable error
code per call and are never retried here; retries belong to the botocore
transport beneath.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from opentelemetry import trace
from shared.aws import error_code

from certvendor.domain.errors import UpstreamError
from certvendor.domain.models import IdentityHandle
from certvendor.domain.states import CertificateStatus, ErrorCode

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_NOT_FOUND = "ResourceNotFoundException"


class DeviceRegistryGateway:
    """Capability surface for device eligibility, status and certificate bindings."""

    def __init__(
        self,
        iot_client: Any,
        region: str,
        account_id: str,
        whitelist_attribute: str | None = None,
        whitelist_value: str = "true",
        status_attribute: str = "status",
        status_value: str = "active",
    ) -> None:
        self._iot = iot_client
        self._region = region
        self._account_id = account_id
        self._whitelist_attribute = whitelist_attribute
        self._whitelist_value = whitelist_value
        self._status_attribute = status_attribute
        self._status_value = status_value

    async def _call(self, code: ErrorCode, operation: Callable[..., Any], **params: Any) -> Any:
        try:
            return await asyncio.to_thread(operation, **params)
        except (ClientError, BotoCoreError) as e:
            logger.debug(
                "registry_call_failed",
                extra={
                    "operation": getattr(operation, "__name__", str(operation)),
                    "error_code": error_code(e),
                },
            )
            raise UpstreamError(code) from e

    def handle_for(self, certificate_id: str) -> IdentityHandle:
        """Build the identity handle of a certificate known only by ID."""
        return IdentityHandle.for_certificate(self._region, self._account_id, certificate_id)

    # ------------------------------------------------------------------
    # Device
    # ------------------------------------------------------------------

    async def is_eligible(self, device_id: str) -> bool:
        """Whether the device may take part in certificate rotation.

        A device is eligible when it exists and, if a whitelist attribute is
        configured, that attribute holds the whitelist value.
        """
        with tracer.start_as_current_span("DeviceRegistryGateway.is_eligible") as span:
            span.set_attribute("device_id", device_id)
            try:
                thing = await asyncio.to_thread(self._iot.describe_thing, thingName=device_id)
            except ClientError as e:
                if error_code(e) == _NOT_FOUND:
                    span.set_attribute("eligible", False)
                    return False
                raise UpstreamError(ErrorCode.UNABLE_TO_VERIFY_DEVICE) from e
            except BotoCoreError as e:
                raise UpstreamError(ErrorCode.UNABLE_TO_VERIFY_DEVICE) from e

            eligible = True
            if self._whitelist_attribute:
                attributes = thing.get("attributes") or {}
                eligible = attributes.get(self._whitelist_attribute) == self._whitelist_value
            span.set_attribute("eligible", eligible)
            return eligible

    async def update_device_status(self, device_id: str) -> None:
        """Mark the device record as holding a fresh certificate."""
        with tracer.start_as_current_span("DeviceRegistryGateway.update_device_status") as span:
            span.set_attribute("device_id", device_id)
            await self._call(
                ErrorCode.UNABLE_TO_UPDATE_DEVICE_STATUS,
                self._iot.update_thing,
                thingName=device_id,
                attributePayload={
                    "attributes": {self._status_attribute: self._status_value},
                    "merge": True,
                },
            )

    async def remove_from_group(self, device_id: str, group_name: str) -> None:
        """Remove the device from a thing group (pending-work tracking)."""
        with tracer.start_as_current_span("DeviceRegistryGateway.remove_from_group") as span:
            span.set_attribute("device_id", device_id)
            span.set_attribute("group", group_name)
            await self._call(
                ErrorCode.UNABLE_TO_REMOVE_FROM_GROUP,
                self._iot.remove_thing_from_thing_group,
                thingGroupName=group_name,
                thingName=device_id,
            )

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    async def register(self, ca_pem: str, certificate_pem: str) -> IdentityHandle:
        """Register an issued certificate as ACTIVE and return its handle."""
        with tracer.start_as_current_span("DeviceRegistryGateway.register") as span:
            response = await self._call(
                ErrorCode.UNABLE_TO_REGISTER_CERTIFICATE,
                self._iot.register_certificate,
                certificatePem=certificate_pem,
                caCertificatePem=ca_pem,
                status=CertificateStatus.ACTIVE.value,
            )
            try:
                handle = IdentityHandle.from_arn(response["certificateArn"])
            except (KeyError, ValueError) as e:
                raise UpstreamError(ErrorCode.UNABLE_TO_REGISTER_CERTIFICATE) from e
            span.set_attribute("certificate_id", handle.certificate_id)
            return handle

    async def set_certificate_status(
        self, handle: IdentityHandle, status: CertificateStatus
    ) -> None:
        code = (
            ErrorCode.UNABLE_TO_ACTIVATE_CERTIFICATE
            if status is CertificateStatus.ACTIVE
            else ErrorCode.UNABLE_TO_DEACTIVATE_CERTIFICATE
        )
        with tracer.start_as_current_span("DeviceRegistryGateway.set_certificate_status") as span:
            span.set_attribute("certificate_id", handle.certificate_id)
            span.set_attribute("status", status.value)
            await self._call(
                code,
                self._iot.update_certificate,
                certificateId=handle.certificate_id,
                newStatus=status.value,
            )

    async def delete_certificate(self, handle: IdentityHandle) -> None:
        with tracer.start_as_current_span("DeviceRegistryGateway.delete_certificate") as span:
            span.set_attribute("certificate_id", handle.certificate_id)
            await self._call(
                ErrorCode.UNABLE_TO_DELETE_CERTIFICATE,
                self._iot.delete_certificate,
                certificateId=handle.certificate_id,
            )

    # ------------------------------------------------------------------
    # Principal bindings
    # ------------------------------------------------------------------

    async def bind_principal(self, handle: IdentityHandle, device_id: str) -> None:
        with tracer.start_as_current_span("DeviceRegistryGateway.bind_principal") as span:
            span.set_attribute("certificate_id", handle.certificate_id)
            span.set_attribute("device_id", device_id)
            await self._call(
                ErrorCode.UNABLE_TO_ATTACH_CERTIFICATE,
                self._iot.attach_thing_principal,
                thingName=device_id,
                principal=handle.arn,
            )

    async def unbind_principal(self, handle: IdentityHandle, device_id: str) -> None:
        with tracer.start_as_current_span("DeviceRegistryGateway.unbind_principal") as span:
            span.set_attribute("certificate_id", handle.certificate_id)
            span.set_attribute("device_id", device_id)
            await self._call(
                ErrorCode.UNABLE_TO_DETACH_CERTIFICATE,
                self._iot.detach_thing_principal,
                thingName=device_id,
                principal=handle.arn,
            )

    async def list_principals_for_device(self, device_id: str) -> list[IdentityHandle]:
        """Certificates bound to the device. Non-certificate principals are skipped."""
        with tracer.start_as_current_span("DeviceRegistryGateway.list_principals") as span:
            span.set_attribute("device_id", device_id)
            principals: list[str] = []
            params: dict[str, Any] = {"thingName": device_id}
            while True:
                response = await self._call(
                    ErrorCode.UNABLE_TO_LIST_PRINCIPALS, self._iot.list_thing_principals, **params
                )
                principals.extend(response.get("principals", []))
                next_token = response.get("nextToken")
                if not next_token:
                    break
                params["nextToken"] = next_token

            handles = []
            for arn in principals:
                try:
                    handle = IdentityHandle.from_arn(arn)
                except ValueError:
                    logger.warning(
                        "unrecognized_principal", extra={"device_id": device_id, "principal": arn}
                    )
                    continue
                if handle.authority_namespace == "cert":
                    handles.append(handle)
            span.set_attribute("count", len(handles))
            return handles

    async def list_devices_for_principal(self, handle: IdentityHandle) -> list[str]:
        with tracer.start_as_current_span("DeviceRegistryGateway.list_devices") as span:
            span.set_attribute("certificate_id", handle.certificate_id)
            devices: list[str] = []
            params: dict[str, Any] = {"principal": handle.arn}
            while True:
                response = await self._call(
                    ErrorCode.UNABLE_TO_LIST_PRINCIPALS, self._iot.list_principal_things, **params
                )
                devices.extend(response.get("things", []))
                next_token = response.get("nextToken")
                if not next_token:
                    break
                params["nextToken"] = next_token
            span.set_attribute("count", len(devices))
            return devices

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    async def attach_policy(self, handle: IdentityHandle, policy_name: str) -> None:
        with tracer.start_as_current_span("DeviceRegistryGateway.attach_policy") as span:
            span.set_attribute("certificate_id", handle.certificate_id)
            span.set_attribute("policy", policy_name)
            await self._call(
                ErrorCode.UNABLE_TO_ATTACH_POLICY,
                self._iot.attach_policy,
                policyName=policy_name,
                target=handle.arn,
            )

    async def detach_policy(self, handle: IdentityHandle, policy_name: str) -> None:
        with tracer.start_as_current_span("DeviceRegistryGateway.detach_policy") as span:
            span.set_attribute("certificate_id", handle.certificate_id)
            span.set_attribute("policy", policy_name)
            await self._call(
                ErrorCode.UNABLE_TO_DETACH_POLICY,
                self._iot.detach_policy,
                policyName=policy_name,
                target=handle.arn,
            )

    async def list_effective_policies(self, handle: IdentityHandle) -> list[str]:
        """Names of every policy in effect for the certificate."""
        with tracer.start_as_current_span("DeviceRegistryGateway.list_effective_policies"):
            response = await self._call(
                ErrorCode.UNABLE_TO_ATTACH_POLICY,
                self._iot.get_effective_policies,
                principal=handle.arn,
            )
            return [policy["policyName"] for policy in response.get("effectivePolicies", [])]

    async def list_attached_policies(self, handle: IdentityHandle) -> list[str]:
        """Names of policies attached directly to the certificate."""
        with tracer.start_as_current_span("DeviceRegistryGateway.list_attached_policies"):
            names: list[str] = []
            params: dict[str, Any] = {"target": handle.arn}
            while True:
                response = await self._call(
                    ErrorCode.UNABLE_TO_DETACH_POLICY, self._iot.list_attached_policies, **params
                )
                names.extend(policy["policyName"] for policy in response.get("policies", []))
                marker = response.get("nextMarker")
                if not marker:
                    break
                params["marker"] = marker
            return names
