"""
Request-level orchestration of the prediction pipeline.

upload -> version -> submit -> poll -> extract -> persist

Components fail fast with typed errors; this layer applies the documented
remediations (upload fallback chain, one inline re-submission) and tags every
error with the stage it came from.
"""
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .backoff import BackoffPolicy, Clock, system_clock
from .config import Settings
from .exceptions import (
    DownloadFailed,
    InvalidContent,
    PipelineError,
    PredictionFailed,
    UpstreamError,
)
from .extractor import extract_image_url, extract_image_urls
from .files import guess_mime_type, to_data_uri, validate_local_file
from .models import FAILED, ModelDescriptor, PersistedArtifact, Prediction
from .persister import ResultPersister
from .predictions import PredictionRunner
from .replicate_client import ReplicateClient
from .uploader import FallbackChain, InlineDataUriStrategy, LocalHostingStrategy, RemoteUploader
from .versions import VersionCache, VersionResolver

logger = logging.getLogger(__name__)

UNSUPPORTED_REFERENCE_RE = re.compile(
    r"unsupported\s+(file|image|media|content|mime)[\s_-]*(type|format)?"
    r"|cannot identify image"
    r"|invalid image"
    r"|(could not|couldn't|failed to)\s+(read|load|open|download|fetch)\s+(the\s+)?(input\s+)?(image|file)",
    re.IGNORECASE,
)


def is_unsupported_reference_error(detail: Any) -> bool:
    """True when an upstream error says it could not consume the image reference."""
    if not detail:
        return False
    return bool(UNSUPPORTED_REFERENCE_RE.search(str(detail)))


@dataclass
class ImageInput:
    path: str
    mime_type: str
    reference: str
    strategy: str

    @property
    def is_inline(self) -> bool:
        return self.reference.startswith("data:")


@contextmanager
def stage(name: str):
    """Tag pipeline errors raised inside the block with ``name``."""
    try:
        yield
    except PipelineError as e:
        if e.stage is None:
            e.stage = name
        raise


class PredictionPipeline:
    def __init__(
        self,
        chain: FallbackChain,
        runner: PredictionRunner,
        persister: ResultPersister,
        clients: Optional[List[Any]] = None,
    ):
        self.chain = chain
        self.runner = runner
        self.persister = persister
        self._clients = clients or []

    @property
    def client(self) -> ReplicateClient:
        return self.runner.client

    async def close(self):
        for client in self._clients:
            await client.close()

    async def prepare_image(self, operation: str, path: str, mime_type: Optional[str] = None) -> ImageInput:
        with stage("prepare"):
            validate_local_file(path)
        mime_type = mime_type or guess_mime_type(path)
        with stage("upload"):
            reference, strategy = await self.chain.resolve_with_strategy(path, mime_type)
        logger.info("[%s] Image %s prepared via %s", operation, path, strategy)
        return ImageInput(path=path, mime_type=mime_type, reference=reference, strategy=strategy)

    async def run_prediction(
        self,
        operation: str,
        model: ModelDescriptor,
        input: Dict[str, Any],
        image_inputs: Optional[Mapping[str, ImageInput]] = None,
    ) -> Prediction:
        """
        Run the model and return a succeeded prediction.

        When the upstream rejects a hosted image reference the job is
        re-submitted once with inline data URIs.

        Raises:
            PredictionFailed: job ended failed/canceled
        """
        image_inputs = image_inputs or {}
        can_inline = any(not image.is_inline for image in image_inputs.values())

        try:
            with stage("submit"):
                prediction = await self.runner.run(model, input)
        except UpstreamError as e:
            if not (can_inline and 400 <= e.status < 500 and is_unsupported_reference_error(e.body)):
                raise
            reason = e.message
        else:
            if prediction.succeeded:
                return prediction
            if not (can_inline and prediction.status == FAILED
                    and is_unsupported_reference_error(prediction.error)):
                raise PredictionFailed(
                    f"Prediction failed: {prediction.describe_failure()}",
                    prediction=prediction,
                    stage="poll",
                )
            reason = prediction.describe_failure()

        logger.warning("[%s] Upstream rejected image reference (%s), retrying with inline data", operation, reason)
        inline_input = dict(input)
        for key, image in image_inputs.items():
            inline_input[key] = to_data_uri(image.path, image.mime_type)

        with stage("submit"):
            prediction = await self.runner.run(model, inline_input)
        if not prediction.succeeded:
            raise PredictionFailed(
                f"Prediction failed: {prediction.describe_failure()}",
                prediction=prediction,
                stage="poll",
            )
        return prediction

    async def persist_outputs(
        self,
        operation: str,
        prediction: Prediction,
        prefix: str,
        multi: bool = False,
    ) -> List[PersistedArtifact]:
        """
        Extract and save the job's image(s).

        In multi mode the images are saved one after another and whatever
        persisted is returned; the last error is raised only if none did.
        """
        with stage("extract"):
            if multi:
                urls = extract_image_urls(prediction.output)
            else:
                urls = [extract_image_url(prediction.output)]
        logger.info("[%s] Found %d image URL(s)", operation, len(urls))

        if not multi:
            with stage("persist"):
                return [await self.persister.persist(urls[0], prefix)]

        artifacts: List[PersistedArtifact] = []
        last_error: Optional[PipelineError] = None
        for index, url in enumerate(urls, start=1):
            try:
                with stage("persist"):
                    artifacts.append(await self.persister.persist(url, f"{prefix}-{index}"))
            except (DownloadFailed, InvalidContent) as e:
                logger.error("[%s] Failed to save image %d: %s", operation, index, e)
                last_error = e

        if not artifacts:
            raise last_error
        return artifacts


def build_pipeline(
    settings: Settings,
    clock: Optional[Clock] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    cache: Optional[VersionCache] = None,
) -> PredictionPipeline:
    """
    Wire the pipeline from settings.

    Called once at process start; the version cache lives as long as the
    returned pipeline.
    """
    clock = clock or system_clock
    client = ReplicateClient(
        api_token=settings.REPLICATE_API_TOKEN,
        base_url=settings.REPLICATE_BASE_URL,
        timeout=settings.UPLOAD_TIMEOUT,
        http_client=http_client,
    )
    chain = FallbackChain([
        RemoteUploader(
            client,
            max_retries=settings.UPLOAD_MAX_RETRIES,
            retry_delay=settings.UPLOAD_RETRY_DELAY,
            sleep=clock.sleep,
        ),
        LocalHostingStrategy(settings.PUBLIC_UPLOADS_DIR, settings.PUBLIC_BASE_URL),
        InlineDataUriStrategy(),
    ])
    runner = PredictionRunner(
        client,
        VersionResolver(client, cache),
        policy=BackoffPolicy(
            initial_delay=settings.POLL_INITIAL_DELAY,
            max_delay=settings.POLL_MAX_DELAY,
            deadline=settings.POLL_TIMEOUT,
        ),
        clock=clock,
        wait_seconds=settings.PREDICTION_WAIT_SECONDS,
    )
    persister = ResultPersister(
        settings.PROCESSED_DIR,
        http_client=http_client,
        verify_base_url=settings.verification_base_url if settings.VERIFY_PROCESSED else None,
        min_bytes=settings.MIN_IMAGE_BYTES,
        download_timeout=settings.DOWNLOAD_TIMEOUT,
        verify_timeout=settings.VERIFY_TIMEOUT,
        clock=clock,
    )
    clients = [client] if http_client is not None else [client, persister]
    return PredictionPipeline(chain, runner, persister, clients=clients)
