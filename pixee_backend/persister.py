"""
Downloading prediction results and saving them to the processed directory.
"""
import asyncio
import base64
import binascii
import logging
import os
import re
import uuid
from typing import Optional, Tuple

import httpx

from .backoff import Clock, system_clock
from .exceptions import DownloadFailed, InvalidContent
from .files import preview
from .models import PersistedArtifact

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(r"^data:([a-zA-Z0-9.+-]+/[a-zA-Z0-9.+-]+)(?:;[^,]*?)?;base64,(.*)$", re.DOTALL)
TEXT_SNIPPET_LIMIT = 2000


def extension_for(content_type: str) -> str:
    """
    File extension for a content type.

    ``image/jpeg`` -> ``jpg``, ``image/svg+xml`` -> ``svg``; anything that is
    not plain alphanumeric falls back to ``png``.
    """
    try:
        ext = content_type.split("/", 1)[1].split(";", 1)[0].strip().lower()
    except IndexError:
        return "png"
    if ext == "jpeg":
        ext = "jpg"
    if "+" in ext:
        ext = ext.split("+", 1)[0]
    if not re.fullmatch(r"[a-z0-9]+", ext):
        return "png"
    return ext


def decode_data_uri(uri: str) -> Tuple[bytes, str]:
    match = DATA_URI_RE.match(uri)
    if not match:
        raise InvalidContent("Invalid data URL", stage="persist")
    try:
        data = base64.b64decode(match.group(2), validate=False)
    except (binascii.Error, ValueError) as e:
        raise InvalidContent(f"Invalid base64 payload in data URL: {e}", stage="persist") from e
    return data, match.group(1)


class ResultPersister:
    """
    Saves an image reference (remote URL or data URI) under
    ``<prefix>-<epochMillis>.<ext>`` in the processed directory.
    """

    def __init__(
        self,
        output_dir: str,
        http_client: Optional[httpx.AsyncClient] = None,
        public_prefix: str = "/processed",
        verify_base_url: Optional[str] = None,
        min_bytes: int = 100,
        download_timeout: float = 30.0,
        verify_timeout: float = 5.0,
        clock: Optional[Clock] = None,
    ):
        self.output_dir = output_dir
        self.client = http_client or httpx.AsyncClient(follow_redirects=True)
        self.public_prefix = public_prefix.rstrip("/")
        self.verify_base_url = verify_base_url
        self.min_bytes = min_bytes
        self.download_timeout = download_timeout
        self.verify_timeout = verify_timeout
        self.clock = clock or system_clock

    async def close(self):
        await self.client.aclose()

    async def _download(self, url: str) -> Tuple[bytes, str]:
        try:
            response = await self.client.get(url, timeout=self.download_timeout)
        except httpx.HTTPError as e:
            raise DownloadFailed(f"Failed to download {url}: {e}", stage="persist") from e

        if not 200 <= response.status_code < 300:
            raise DownloadFailed(
                f"Failed to download {url}: HTTP {response.status_code}", stage="persist"
            )
        return response.content, response.headers.get("content-type", "")

    def _validate(self, data: bytes, content_type: str) -> None:
        if not content_type.lower().startswith("image/"):
            snippet = ""
            if data and len(data) < TEXT_SNIPPET_LIMIT:
                snippet = data.decode("utf-8", errors="replace")
                logger.error("[persist] Response content (text): %s", snippet)
            message = f"Invalid content type: {content_type or 'unknown'}"
            if snippet:
                message = f"{message} ({snippet[:200]})"
            raise InvalidContent(message, stage="persist")

        if len(data) < self.min_bytes:
            logger.error("[persist] Downloaded buffer too small: %d", len(data))
            raise InvalidContent(
                f"Downloaded file is too small ({len(data)} bytes), likely invalid", stage="persist"
            )

    def _write(self, prefix: str, ext: str, data: bytes) -> Tuple[str, str]:
        os.makedirs(self.output_dir, exist_ok=True)
        filename = f"{prefix}-{self.clock.epoch_millis()}.{ext}"
        path = os.path.join(self.output_dir, filename)
        try:
            f = open(path, "xb")
        except FileExistsError:
            filename = f"{prefix}-{self.clock.epoch_millis()}-{uuid.uuid4().hex[:6]}.{ext}"
            path = os.path.join(self.output_dir, filename)
            f = open(path, "xb")
        with f:
            f.write(data)
        return filename, path

    async def _verify(self, public_path: str) -> None:
        """Best-effort HEAD against the served file. Never raises."""
        if not self.verify_base_url:
            return
        url = f"{self.verify_base_url.rstrip('/')}{public_path}"
        try:
            response = await self.client.head(url, timeout=self.verify_timeout)
            logger.info("[persist] Local file verification status: %s", response.status_code)
        except httpx.HTTPError as e:
            logger.warning("[persist] Local file verification failed: %s", e)

    async def persist(self, reference: str, prefix: str = "processed") -> PersistedArtifact:
        logger.info("[persist] Saving image from: %s", preview(reference))

        if reference.startswith("data:"):
            data, content_type = decode_data_uri(reference)
        else:
            data, content_type = await self._download(reference)

        self._validate(data, content_type)
        filename, path = await asyncio.to_thread(self._write, prefix, extension_for(content_type), data)

        public_path = f"{self.public_prefix}/{filename}"
        logger.info("[persist] Saved file: %s, size: %d bytes", path, len(data))

        await self._verify(public_path)
        return PersistedArtifact(
            filename=filename,
            absolute_path=os.path.abspath(path),
            public_path=public_path,
        )
