"""Object store access for staged certificate artifacts (S3)."""

import asyncio
import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from opentelemetry import trace
from shared.aws import error_code

from certvendor.domain.errors import NotFoundError, UpstreamError
from certvendor.domain.states import AccessMode, ErrorCode

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# S3 lower-cases user metadata keys
CERTIFICATE_ID_METADATA_KEY = "certificateid"


class ObjectStore:
    """Reads staged certificate pointers and presigns artifact URLs."""

    def __init__(self, s3_client: Any) -> None:
        self._s3 = s3_client

    async def get_certificate_id(self, bucket: str, key: str) -> str:
        """Return the certificate ID tagged on a staged artifact.

        Raises:
            NotFoundError: MISSING_CERTIFICATE_ID if the object has no tag,
                CERTIFICATE_NOT_FOUND if the object cannot be read.
        """
        with tracer.start_as_current_span("ObjectStore.get_certificate_id") as span:
            span.set_attribute("bucket", bucket)
            span.set_attribute("key", key)
            try:
                head = await asyncio.to_thread(self._s3.head_object, Bucket=bucket, Key=key)
            except (ClientError, BotoCoreError) as e:
                logger.debug(
                    "staged_certificate_lookup_failed",
                    extra={"bucket": bucket, "key": key, "error_code": error_code(e)},
                )
                raise NotFoundError(ErrorCode.CERTIFICATE_NOT_FOUND) from e

            certificate_id = (head.get("Metadata") or {}).get(CERTIFICATE_ID_METADATA_KEY)
            if not certificate_id:
                logger.warning("staged_certificate_untagged", extra={"bucket": bucket, "key": key})
                raise NotFoundError(ErrorCode.MISSING_CERTIFICATE_ID)

            span.set_attribute("certificate_id", certificate_id)
            return certificate_id

    def presign(
        self,
        bucket: str,
        key: str,
        expires_in_seconds: int,
        mode: AccessMode = AccessMode.GET,
    ) -> str:
        """Generate a time-boxed signed URL for GET or PUT access.

        Signing is local to the client, so this is a plain call.

        Raises:
            UpstreamError: UNABLE_TO_PRESIGN_URL
        """
        with tracer.start_as_current_span("ObjectStore.presign") as span:
            span.set_attribute("bucket", bucket)
            span.set_attribute("key", key)
            span.set_attribute("mode", mode.value)
            try:
                return self._s3.generate_presigned_url(
                    mode.value,
                    Params={"Bucket": bucket, "Key": key},
                    ExpiresIn=expires_in_seconds,
                )
            except (ClientError, BotoCoreError) as e:
                logger.debug(
                    "presign_failed",
                    extra={"bucket": bucket, "key": key, "error_code": error_code(e)},
                )
                raise UpstreamError(ErrorCode.UNABLE_TO_PRESIGN_URL) from e
