"""Ordered step pipelines for the public lifecycle operations.

This module provides:
- A declared step table per operation: Operation -> ordered Steps
- A request-scoped context that enforces that order
- First-failure recording for diagnostics
- Observability (metrics + logging) per step
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from opentelemetry import metrics

from certvendor.domain.models import DeviceRequest
from certvendor.domain.states import Operation, Step

logger = logging.getLogger(__name__)

meter = metrics.get_meter("certvendor.pipeline")

pipeline_steps_total = meter.create_counter(
    name="certvendor_pipeline_steps_total",
    description="Total pipeline steps executed",
    unit="1",
)

PIPELINES: dict[Operation, tuple[Step, ...]] = {
    Operation.ACTIVATE: (
        Step.VALIDATE_REQUEST,
        Step.CHECK_ELIGIBILITY,
        Step.RESOLVE_STAGED_CERTIFICATE,
        Step.ACTIVATE_CERTIFICATE,
        Step.PRESIGN_URL,
        Step.UPDATE_DEVICE_STATUS,
        Step.PUBLISH_RESPONSE,
    ),
    Operation.ACTIVATE_WITH_CSR: (
        Step.VALIDATE_REQUEST,
        Step.CHECK_ELIGIBILITY,
        Step.SELECT_AUTHORITY,
        Step.FETCH_AUTHORITY_CERTIFICATE,
        Step.ISSUE_CERTIFICATE,
        Step.REGISTER_CERTIFICATE,
        Step.BIND_PRINCIPAL,
        Step.ATTACH_POLICIES,
        Step.UPDATE_DEVICE_STATUS,
        Step.PUBLISH_RESPONSE,
    ),
    Operation.ACKNOWLEDGE: (
        Step.VALIDATE_REQUEST,
        Step.CHECK_ELIGIBILITY,
        Step.LEAVE_PENDING_GROUP,
        Step.REMOVE_PREVIOUS_CERTIFICATE,
        Step.PUBLISH_RESPONSE,
    ),
}


class InvalidStepOrderError(Exception):
    """Raised when a step runs out of its declared order."""

    def __init__(self, operation: Operation, step: Step, last_step: Step | None):
        self.operation = operation
        self.step = step
        self.last_step = last_step
        after = last_step.value if last_step else "start"
        super().__init__(
            f"Invalid step order: {operation.value} cannot run {step.value} after {after}"
        )


@dataclass
class PipelineContext:
    """Working state owned by one operation for its duration.

    Steps may be skipped (conditional steps) but never reordered or repeated.
    """

    operation: Operation
    request: DeviceRequest
    completed: list[Step] = field(default_factory=list)
    failed_step: Step | None = None

    @property
    def device_id(self) -> str:
        return self.request.device_id

    @property
    def last_step(self) -> Step | None:
        return self.completed[-1] if self.completed else None

    def _check_order(self, step: Step) -> None:
        declared = PIPELINES[self.operation]
        if step not in declared:
            raise InvalidStepOrderError(self.operation, step, self.last_step)
        if self.last_step is not None and declared.index(step) <= declared.index(self.last_step):
            raise InvalidStepOrderError(self.operation, step, self.last_step)

    @asynccontextmanager
    async def step(self, step: Step) -> AsyncIterator[None]:
        """Run one step, recording completion or the first failure."""
        self._check_order(step)
        try:
            yield
        except BaseException as exc:
            if self.failed_step is None:
                self.failed_step = step
            logger.debug(
                "pipeline_step_failed",
                extra={
                    "operation": self.operation.value,
                    "device_id": self.device_id,
                    "step": step.value,
                    "error": str(exc),
                },
            )
            pipeline_steps_total.add(
                1, {"operation": self.operation.value, "step": step.value, "result": "failed"}
            )
            raise

        self.completed.append(step)
        logger.debug(
            "pipeline_step_completed",
            extra={
                "operation": self.operation.value,
                "device_id": self.device_id,
                "step": step.value,
            },
        )
        pipeline_steps_total.add(
            1, {"operation": self.operation.value, "step": step.value, "result": "completed"}
        )
