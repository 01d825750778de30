"""
Pillow helpers that prepare inpainting inputs before upload.
"""
import logging
import os
import tempfile
import time
import uuid
from typing import Optional, Tuple

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

MASK_THRESHOLD = 128


def _temp_path(prefix: str, ext: str, directory: Optional[str] = None) -> str:
    name = f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{ext}"
    return os.path.join(directory or tempfile.gettempdir(), name)


def image_size(path: str) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(path) as img:
            return img.size
    except Exception as e:
        logger.warning(f"Failed to read image metadata for {path}: {e}")
        return None


def _flatten(img: Image.Image, background: Tuple[int, int, int]) -> Image.Image:
    """Composite any alpha channel onto a solid background, returning RGB."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, background)
        canvas.paste(rgba, mask=rgba.split()[-1])
        return canvas
    return img.convert("RGB")


def normalize_source_image(path: str, directory: Optional[str] = None) -> str:
    """
    Flatten the source image onto white and re-encode it as JPEG.

    Returns:
        Path to the normalized temporary file
    """
    out_path = _temp_path("img-normalized", "jpg", directory)
    with Image.open(path) as img:
        img = ImageOps.exif_transpose(img)
        _flatten(img, (255, 255, 255)).save(out_path, "JPEG", quality=92)
    logger.info("Normalized source image saved to %s", out_path)
    return out_path


def normalize_mask(path: str, size: Tuple[int, int], directory: Optional[str] = None) -> str:
    """
    Resize the mask to ``size`` and threshold it to a binary white-on-black PNG.

    Returns:
        Path to the normalized temporary file
    """
    out_path = _temp_path("mask-normalized", "png", directory)
    with Image.open(path) as mask:
        flat = _flatten(mask, (0, 0, 0)).resize(size)
        binary = flat.convert("L").point(lambda v: 255 if v >= MASK_THRESHOLD else 0)
        binary.save(out_path, "PNG")
    logger.info("Normalized mask saved to %s", out_path)
    return out_path
