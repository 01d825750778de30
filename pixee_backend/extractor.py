"""
Locating image URLs in prediction output.

The output shape differs per model: a bare string, a list of strings or
objects, or a single object. ``classify_output`` turns the raw value into one
of a few known shapes; the extractors then walk that shape and apply a
prioritized list of matchers, first match wins.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .exceptions import NoImageFound

logger = logging.getLogger(__name__)

DELIVERY_HOST = "replicate.delivery"

IMAGE_EXTENSION_RE = re.compile(r"\.(png|jpe?g|webp|gif|bmp|svg)(\?.*)?$", re.IGNORECASE)

# Keys probed on objects, in priority order
URL_KEYS = ("url", "download_url", "uri")
# Keys that may hold nested collections of images
COLLECTION_KEYS = ("image", "images", "artifact", "artifacts", "files", "output")


@dataclass(frozen=True)
class TextOutput:
    value: str


@dataclass(frozen=True)
class ListOutput:
    items: List[Any]


@dataclass(frozen=True)
class ObjectOutput:
    fields: Dict[str, Any]


@dataclass(frozen=True)
class Unrecognized:
    raw: Any


OutputShape = Union[TextOutput, ListOutput, ObjectOutput, Unrecognized]


def classify_output(output: Any) -> OutputShape:
    if isinstance(output, str):
        return TextOutput(output)
    if isinstance(output, (list, tuple)):
        return ListOutput(list(output))
    if isinstance(output, dict):
        return ObjectOutput(output)
    return Unrecognized(output)


# --- matchers: each returns the accepted string or None ---

def match_data_uri(value: str) -> Optional[str]:
    return value if value.startswith("data:image/") else None


def match_image_extension(value: str) -> Optional[str]:
    return value if IMAGE_EXTENSION_RE.search(value) else None


def match_delivery_host(value: str) -> Optional[str]:
    return value if DELIVERY_HOST in value else None


def match_http_url(value: str) -> Optional[str]:
    return value if value.startswith(("http://", "https://")) else None


STRONG_MATCHERS: Sequence[Callable[[str], Optional[str]]] = (
    match_data_uri,
    match_image_extension,
    match_delivery_host,
)


def _match_string(value: Any, matchers: Sequence[Callable[[str], Optional[str]]]) -> Optional[str]:
    if not isinstance(value, str) or not value:
        return None
    for matcher in matchers:
        found = matcher(value)
        if found:
            return found
    return None


def _match_object(fields: Dict[str, Any], matchers) -> Optional[str]:
    for key in URL_KEYS:
        found = _match_string(fields.get(key), matchers)
        if found:
            return found
    artifact = fields.get("artifact")
    if isinstance(artifact, dict):
        return _match_string(artifact.get("url"), matchers)
    return None


def _match_item(item: Any, matchers) -> Optional[str]:
    shape = classify_output(item)
    if isinstance(shape, TextOutput):
        return _match_string(shape.value, matchers)
    if isinstance(shape, ObjectOutput):
        return _match_object(shape.fields, matchers)
    return None


def _candidates(output: Any, depth: int = 0) -> List[Any]:
    """
    Flatten the output into candidate items in first-seen order.

    Objects contribute themselves first, then any nested collection fields.
    """
    shape = classify_output(output)
    if isinstance(shape, TextOutput):
        return [shape.value]
    if isinstance(shape, ListOutput):
        items: List[Any] = []
        for item in shape.items:
            items.extend(_candidates(item, depth + 1) if depth < 3 else [item])
        return items
    if isinstance(shape, ObjectOutput):
        items = [shape.fields]
        if depth < 3:
            for key in COLLECTION_KEYS:
                nested = shape.fields.get(key)
                if isinstance(nested, (list, tuple, dict)):
                    items.extend(_candidates(nested, depth + 1))
                elif isinstance(nested, str) and key not in URL_KEYS:
                    items.append(nested)
        return items
    return []


def extract_image_urls(output: Any) -> List[str]:
    """
    All image references in ``output``, deduplicated in first-seen order.

    Falls back to plain http(s) URLs only when nothing matched a stronger
    signal.

    Raises:
        NoImageFound: if nothing matches
    """
    candidates = _candidates(output)
    for matchers in (STRONG_MATCHERS, (match_http_url,)):
        results: List[str] = []
        for item in candidates:
            found = _match_item(item, matchers)
            if found and found not in results:
                results.append(found)
        if results:
            return results

    logger.error("No image URL found in prediction output: %s", str(output)[:300])
    raise NoImageFound("No image URL found in prediction output", stage="extract")


def extract_image_url(output: Any) -> str:
    """First image reference in ``output``."""
    return extract_image_urls(output)[0]
