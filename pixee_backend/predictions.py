"""
Submitting prediction jobs and polling them to a terminal state.
"""
import logging
import time
from typing import Any, Dict, Optional

from .backoff import BackoffPolicy, Clock, system_clock
from .exceptions import MissingPollUrl, PredictionTimeout, UpstreamError
from .models import ModelDescriptor, Prediction
from .replicate_client import ReplicateClient
from .versions import VersionResolver

logger = logging.getLogger(__name__)


def _expect_object(payload: Any, stage: str) -> None:
    # 2xx with a non-JSON body (proxy pages, plain-text notices)
    if not isinstance(payload, dict):
        error = UpstreamError(200, payload, "Unexpected prediction payload")
        error.stage = stage
        raise error


class PredictionRunner:
    """
    Submits a job with a synchronous-wait hint and, if it is not finished
    right away, polls its status URL with exponential backoff.

    Terminal ``failed``/``canceled`` jobs are returned, not raised, so the
    caller can inspect ``prediction.error`` and decide what to do.
    Non-2xx answers surface as ``UpstreamError`` from the client.
    """

    def __init__(
        self,
        client: ReplicateClient,
        resolver: VersionResolver,
        policy: Optional[BackoffPolicy] = None,
        clock: Optional[Clock] = None,
        wait_seconds: int = 60,
    ):
        self.client = client
        self.resolver = resolver
        self.policy = policy or BackoffPolicy()
        self.clock = clock or system_clock
        self.wait_seconds = wait_seconds

    async def submit(self, version_id: str, input: Dict[str, Any]) -> Prediction:
        payload = await self.client.create_prediction(version_id, input, self.wait_seconds)
        _expect_object(payload, "submit")
        prediction = Prediction.from_payload(payload, version=version_id)
        logger.info("Prediction %s submitted, status: %s", prediction.id, prediction.status)
        return prediction

    async def wait(self, prediction: Prediction) -> Prediction:
        """Poll until the job is terminal or the deadline passes."""
        if prediction.is_terminal:
            return prediction
        if not prediction.poll_url:
            raise MissingPollUrl("No polling URL provided in prediction response", stage="poll")

        start = self.clock.monotonic()
        for delay in self.policy.delays():
            remaining = self.policy.deadline - (self.clock.monotonic() - start)
            if remaining <= 0:
                break
            await self.clock.sleep(min(delay, remaining))

            try:
                payload = await self.client.get_prediction(prediction.poll_url)
            except UpstreamError as e:
                e.stage = e.stage or "poll"
                raise
            _expect_object(payload, "poll")
            prediction.update(payload)
            logger.debug("Prediction %s status: %s", prediction.id, prediction.status)
            if prediction.is_terminal:
                return prediction

        raise PredictionTimeout(
            f"Prediction timed out after {self.policy.deadline:.0f} seconds", stage="poll"
        )

    async def run(self, model: ModelDescriptor, input: Dict[str, Any]) -> Prediction:
        """Resolve the version, submit and wait for a terminal state."""
        if not model.id:
            raise ValueError("Model id is missing")

        started = time.monotonic()
        version_id = await self.resolver.resolve_version_id(model.id)
        prediction = await self.wait(await self.submit(version_id, input))

        logger.info(
            "Prediction %s for %s finished with %s in %.2fs",
            prediction.id, model.slug, prediction.status, time.monotonic() - started,
        )
        return prediction
