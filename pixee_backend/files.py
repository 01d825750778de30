"""
Local file helpers: validation, data URI encoding and cleanup of input files.
"""
import base64
import logging
import mimetypes
import os
from typing import Iterable, Optional

from .exceptions import FileNotAccessible

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


def validate_local_file(path: str) -> int:
    """
    Make sure ``path`` is a regular, non-empty file.

    Returns:
        File size in bytes

    Raises:
        FileNotAccessible: if the path is missing, not a file or empty
    """
    try:
        stat = os.stat(path)
    except OSError as e:
        raise FileNotAccessible(f"File not accessible: {path} - {e.strerror or e}") from e

    if not os.path.isfile(path):
        raise FileNotAccessible(f"Path is not a file: {path}")
    if stat.st_size == 0:
        raise FileNotAccessible(f"File is empty: {path}")

    logger.debug("File check passed: %s, size: %d bytes", path, stat.st_size)
    return stat.st_size


def guess_mime_type(path: str, default: str = DEFAULT_MIME_TYPE) -> str:
    """Infer MIME type from the file extension."""
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or default


def encode_data_uri(data: bytes, mime_type: str) -> str:
    """Return ``data:<mime>;base64,<payload>``."""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def to_data_uri(path: str, mime_type: Optional[str] = None) -> str:
    """Read the whole file and embed it as a base64 data URI."""
    validate_local_file(path)
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise FileNotAccessible(f"Failed to read image: {path} - {e}") from e
    return encode_data_uri(data, mime_type or guess_mime_type(path))


def preview(value: str, limit: int = 80) -> str:
    """Shorten long references (data URIs) for log output."""
    if not isinstance(value, str) or len(value) <= limit:
        return value
    return value[:limit] + "...[trimmed]"


def cleanup_files(paths: Iterable[Optional[str]]) -> None:
    """Remove files handed to or created by a request. Missing files are skipped."""
    for path in paths:
        if not path:
            continue
        try:
            os.unlink(path)
            logger.info(f"[Cleanup] Removed {path}")
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.error(f"[Cleanup] Failed to remove {path}: {e}")
