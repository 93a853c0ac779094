"""Per-device response publishing over AWS IoT Data (MQTT)."""

import asyncio
import json
import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from opentelemetry import trace
from shared.aws import error_code

from certvendor.domain.errors import UpstreamError
from certvendor.domain.models import ResponseOutcome
from certvendor.domain.states import ErrorCode

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEVICE_ID_PLACEHOLDER = "{deviceId}"


class ResponseChannel:
    """Fire-and-forget publish of outcomes to per-device topics."""

    def __init__(self, iot_data_client: Any, qos: int = 1) -> None:
        self._iot_data = iot_data_client
        self._qos = qos

    @staticmethod
    def topic_for(topic_template: str, device_id: str) -> str:
        """e.g. cdf/certificates/{deviceId}/get/accepted -> cdf/certificates/dev-1/get/accepted"""
        return topic_template.replace(DEVICE_ID_PLACEHOLDER, device_id)

    async def publish(self, topic_template: str, outcome: ResponseOutcome) -> None:
        """Publish one outcome. Only the publish call's own result is awaited.

        Raises:
            UpstreamError: UNABLE_TO_PUBLISH_RESPONSE
        """
        topic = self.topic_for(topic_template, outcome.device_id)
        with tracer.start_as_current_span("ResponseChannel.publish") as span:
            span.set_attribute("topic", topic)
            span.set_attribute("status", outcome.status.value)
            try:
                await asyncio.to_thread(
                    self._iot_data.publish,
                    topic=topic,
                    qos=self._qos,
                    payload=json.dumps(outcome.to_message()).encode("utf-8"),
                )
            except (ClientError, BotoCoreError) as e:
                logger.debug(
                    "response_publish_failed",
                    extra={"topic": topic, "error_code": error_code(e)},
                )
                raise UpstreamError(ErrorCode.UNABLE_TO_PUBLISH_RESPONSE) from e

            logger.debug("response_published", extra={"topic": topic, "status": outcome.status})
