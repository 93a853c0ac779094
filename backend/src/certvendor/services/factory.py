"""Wires the lifecycle service to its AWS-backed collaborators."""

import logging

from shared.aws import create_client
from shared.config import Settings

from certvendor.ca.authority import (
    AliasTable,
    AuthoritySelector,
    LocalKeyAuthority,
    ManagedAuthority,
)
from certvendor.ca.key_manager import KeyManager
from certvendor.domain.states import AuthorityBackend
from certvendor.messaging.response_channel import ResponseChannel
from certvendor.registry.gateway import DeviceRegistryGateway
from certvendor.services.lifecycle_service import CertificateLifecycleService, LifecycleConfig
from certvendor.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

# Alias environment variables, e.g. CA_FACTORY1=<ca certificate id>
REGISTRY_ALIAS_PREFIX = "CA_"
MANAGED_ALIAS_PREFIX = "PCA_"


def lifecycle_config_from_settings(settings: Settings) -> LifecycleConfig:
    return LifecycleConfig(
        certificates_bucket=settings.CERTIFICATES_BUCKET,
        certificates_prefix=settings.CERTIFICATES_PREFIX,
        certificates_suffix=settings.CERTIFICATES_SUFFIX,
        presigned_url_expires_in_seconds=settings.PRESIGNED_URL_EXPIRES_IN_SECONDS,
        get_success_topic=settings.MQTT_GET_SUCCESS_TOPIC,
        get_failure_topic=settings.MQTT_GET_FAILURE_TOPIC,
        ack_success_topic=settings.MQTT_ACK_SUCCESS_TOPIC,
        ack_failure_topic=settings.MQTT_ACK_FAILURE_TOPIC,
        pending_group=settings.ROTATE_CERTIFICATES_THING_GROUP,
        default_policy=settings.ROTATED_CERTIFICATE_POLICY,
        use_default_policy=settings.USE_DEFAULT_POLICY,
        delete_previous_certificate=settings.DELETE_PREVIOUS_CERTIFICATE,
    )


def build_lifecycle_service(settings: Settings) -> CertificateLifecycleService:
    """Create clients and collaborators for the configured region."""
    iot = create_client("iot")
    iot_data = create_client("iot-data", endpoint_url=settings.IOT_DATA_ENDPOINT)
    s3 = create_client("s3")
    ssm = create_client("ssm")

    authorities = {
        AuthorityBackend.LOCAL_KEY: LocalKeyAuthority(
            iot,
            KeyManager(ssm, settings.CA_KEY_PARAMETER_TEMPLATE),
            settings.CERTIFICATE_EXPIRY_DAYS,
        ),
    }
    if settings.ACMPCA_ENABLED:
        authorities[AuthorityBackend.MANAGED] = ManagedAuthority(
            iot,
            create_client("acm-pca"),
            signing_algorithm=settings.ACMPCA_SIGNING_ALGORITHM,
            validity_days=settings.CERTIFICATE_EXPIRY_DAYS,
            poll_interval=settings.ACMPCA_POLL_INTERVAL_SECONDS,
            max_poll_interval=settings.ACMPCA_POLL_MAX_INTERVAL_SECONDS,
            backoff=settings.ACMPCA_POLL_BACKOFF,
            timeout=settings.ACMPCA_ISSUE_TIMEOUT_SECONDS,
        )

    selector = AuthoritySelector(
        managed_enabled=settings.ACMPCA_ENABLED,
        default_ca_certificate_id=settings.CA_CERTIFICATE_ID,
        default_ca_arn=settings.ACMPCA_CA_ARN,
        registry_aliases=AliasTable(REGISTRY_ALIAS_PREFIX, reserved=Settings.model_fields),
        managed_aliases=AliasTable(MANAGED_ALIAS_PREFIX, reserved=Settings.model_fields),
    )

    registry = DeviceRegistryGateway(
        iot,
        region=settings.AWS_REGION,
        account_id=settings.AWS_ACCOUNT_ID,
        whitelist_attribute=settings.DEVICE_WHITELIST_ATTRIBUTE,
        whitelist_value=settings.DEVICE_WHITELIST_VALUE,
        status_attribute=settings.DEVICE_STATUS_ATTRIBUTE,
        status_value=settings.DEVICE_STATUS_VALUE,
    )

    logger.info(
        "lifecycle_service_configured",
        extra={
            "region": settings.AWS_REGION,
            "managed_ca": settings.ACMPCA_ENABLED,
            "delete_previous_certificate": settings.DELETE_PREVIOUS_CERTIFICATE,
        },
    )
    return CertificateLifecycleService(
        config=lifecycle_config_from_settings(settings),
        registry=registry,
        authorities=authorities,
        selector=selector,
        object_store=ObjectStore(s3),
        channel=ResponseChannel(iot_data, qos=settings.MQTT_QOS),
    )
