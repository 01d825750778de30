"""
Resolving a model descriptor to the immutable version id that gets submitted.
"""
import logging
from typing import Any, Dict, Optional

from .exceptions import NoVersionAvailable, UpstreamError
from .replicate_client import ReplicateClient

logger = logging.getLogger(__name__)


def extract_pinned_version(model_id: Optional[str]) -> Optional[str]:
    """Return ``version`` from ``owner/slug:version``, otherwise None."""
    if not model_id:
        return None
    parts = model_id.split(":")
    if len(parts) == 2 and parts[1]:
        return parts[1]
    return None


class VersionCache:
    """
    Process-wide mapping from model id to resolved version id.

    Created once together with the pipeline and kept for the process lifetime.
    Entries are never expired, so a slug keeps the version it first resolved to.
    """

    def __init__(self):
        self._versions: Dict[str, str] = {}

    def get(self, model_id: str) -> Optional[str]:
        return self._versions.get(model_id)

    def set(self, model_id: str, version_id: str) -> str:
        # setdefault keeps the first resolved value if two requests race
        return self._versions.setdefault(model_id, version_id)


def _first_version_id(payload: Any) -> Optional[str]:
    """
    Take the first entry of a versions listing.

    Accepts a bare list, ``{"results": [...]}`` or ``{"versions": [...]}``;
    entries may be objects with ``id`` or plain strings.
    """
    entries = None
    if isinstance(payload, list):
        entries = payload
    elif isinstance(payload, dict):
        for key in ("results", "versions"):
            if isinstance(payload.get(key), list):
                entries = payload[key]
                break

    if not entries:
        return None
    first = entries[0]
    if isinstance(first, dict):
        version_id = first.get("id")
        return version_id if isinstance(version_id, str) and version_id else None
    if isinstance(first, str) and first:
        return first
    return None


class VersionResolver:
    def __init__(self, client: ReplicateClient, cache: Optional[VersionCache] = None):
        self.client = client
        self.cache = cache if cache is not None else VersionCache()

    async def resolve_version_id(self, model_id: str) -> str:
        cached = self.cache.get(model_id)
        if cached:
            return cached

        pinned = extract_pinned_version(model_id)
        if pinned:
            return self.cache.set(model_id, pinned)

        # The listing is assumed to be ordered newest first
        try:
            payload = await self.client.list_versions(model_id)
        except UpstreamError as e:
            e.stage = e.stage or "version"
            raise
        version_id = _first_version_id(payload)
        if not version_id:
            raise NoVersionAvailable(
                f"No available versions returned for model {model_id}. Consider pinning a version id.",
                stage="version",
            )

        version_id = self.cache.set(model_id, version_id)
        logger.info("Resolved %s to version %s", model_id, version_id)
        return version_id
