"""
Getting a local image into a form the upstream model can fetch.

Strategies, tried in order by ``FallbackChain``:
    1. RemoteUploader      - hosted file storage of the upstream API
    2. LocalHostingStrategy - copy into our own static directory
    3. InlineDataUriStrategy - embed the file as a base64 data URI
"""
import logging
import os
import shutil
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from .exceptions import (
    ConfigurationError,
    FileNotAccessible,
    PipelineError,
    UploadFailed,
    UpstreamError,
)
from .files import guess_mime_type, preview, to_data_uri, validate_local_file
from .replicate_client import ReplicateClient

logger = logging.getLogger(__name__)

Strategy = Callable[[str, Optional[str]], Awaitable[str]]


class RemoteUploader:
    """
    Uploads a file to the upstream API's file storage and returns its URL.

    Retries any transport error or non-2xx answer with a linear backoff
    (2s, 4s, ...). Raises ``UploadFailed`` once the retries are exhausted.
    """

    name = "remote"

    def __init__(
        self,
        client: ReplicateClient,
        max_retries: int = 2,
        retry_delay: float = 2.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.client = client
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    async def _upload_once(self, path: str, filename: str, mime_type: str) -> str:
        with open(path, "rb") as f:
            content = f.read()
        data = await self.client.upload_file(filename, content, mime_type)

        public_url = None
        if isinstance(data, dict):
            urls = data.get("urls") or {}
            public_url = (urls.get("get") if isinstance(urls, dict) else None) or data.get("url")
        if not public_url:
            raise UploadFailed("No public URL returned from upload endpoint", stage="upload")
        return public_url

    async def upload(self, path: str, mime_type: Optional[str] = None) -> str:
        validate_local_file(path)
        filename = os.path.basename(path)
        mime_type = mime_type or guess_mime_type(path)

        retry_kwargs = {}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception_type((httpx.HTTPError, UpstreamError, UploadFailed)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
            **retry_kwargs,
        )

        logger.info("[upload] Uploading %s as %s", filename, mime_type)
        try:
            async for attempt in retrying:
                with attempt:
                    public_url = await self._upload_once(path, filename, mime_type)
        except ConfigurationError:
            raise
        except (httpx.HTTPError, UpstreamError, UploadFailed) as e:
            logger.warning(
                "[upload] Upload of %s failed after %d attempts: %s",
                filename, self.max_retries + 1, e,
            )
            raise UploadFailed(
                f"Upload failed after {self.max_retries + 1} attempts: {e}", stage="upload"
            ) from e

        logger.info("[upload] Success: %s", public_url)
        return public_url

    async def __call__(self, path: str, mime_type: Optional[str] = None) -> str:
        return await self.upload(path, mime_type)


class LocalHostingStrategy:
    """Publish the file from our own static ``/uploads`` directory."""

    name = "local_hosting"

    def __init__(self, public_dir: str, public_base_url: Optional[str], url_prefix: str = "/uploads"):
        self.public_dir = public_dir
        self.public_base_url = public_base_url
        self.url_prefix = url_prefix

    async def __call__(self, path: str, mime_type: Optional[str] = None) -> str:
        if not self.public_base_url:
            raise ConfigurationError("PUBLIC_BASE_URL is not set, cannot host file locally")
        validate_local_file(path)
        os.makedirs(self.public_dir, exist_ok=True)
        base_name = os.path.basename(path)
        shutil.copyfile(path, os.path.join(self.public_dir, base_name))
        return f"{self.public_base_url.rstrip('/')}{self.url_prefix}/{quote(base_name)}"


class InlineDataUriStrategy:
    name = "inline"

    async def __call__(self, path: str, mime_type: Optional[str] = None) -> str:
        return to_data_uri(path, mime_type)


class FallbackChain:
    """
    Runs strategies in order and returns the first success.

    The last error is re-raised when every strategy fails.
    """

    def __init__(self, strategies: Sequence[Strategy]):
        if not strategies:
            raise ValueError("FallbackChain needs at least one strategy")
        self.strategies: List[Strategy] = list(strategies)

    async def resolve_with_strategy(self, path: str, mime_type: Optional[str] = None) -> Tuple[str, str]:
        last_error: Optional[Exception] = None
        for strategy in self.strategies:
            name = getattr(strategy, "name", type(strategy).__name__)
            try:
                reference = await strategy(path, mime_type)
                logger.info("[upload] %s -> %s via %s", os.path.basename(path), preview(reference), name)
                return reference, name
            except FileNotAccessible:
                raise
            except (PipelineError, OSError, httpx.HTTPError) as e:
                logger.warning("[upload] Strategy %s failed for %s: %s", name, path, e)
                last_error = e
        raise last_error
