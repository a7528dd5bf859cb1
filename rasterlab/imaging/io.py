"""Decoding files into PixelBuffers and encoding them back out, via Pillow."""

import datetime
import logging
import math
from pathlib import Path
from typing import Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from rasterlab.errors import InvalidInputError
from rasterlab.models import PixelBuffer

log = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tif", ".tiff"}

EXPORT_FORMATS = {
    "PNG": "png",
    "JPEG": "jpg",
    "JPG": "jpg",
}


def is_supported_file(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def load_buffer(path: Union[str, Path]) -> PixelBuffer:
    """Decode an image file into an RGBA buffer.

    Raises InvalidInputError for missing, empty, unsupported or undecodable
    files.
    """
    path = Path(path)
    if not path.is_file():
        raise InvalidInputError(f"No such image file: {path}")
    if not is_supported_file(path):
        raise InvalidInputError(f"Unsupported image type {path.suffix!r}: {path}")
    if path.stat().st_size == 0:
        raise InvalidInputError(f"Image file is empty: {path}")

    try:
        # Load fully and close the handle before converting
        with Image.open(path) as im:
            im.load()
            rgba = im.convert("RGBA")
    except (UnidentifiedImageError, OSError) as e:
        log.exception(f"Failed to decode {path}: {e}")
        raise InvalidInputError(f"Not a readable image: {path}")

    buffer = PixelBuffer(np.array(rgba, dtype=np.uint8))
    log.info(f"Loaded {path.name} ({buffer.width}x{buffer.height})")
    return buffer


def normalize_format(fmt: Optional[str]) -> str:
    name = (fmt or "PNG").strip().upper()
    if name not in EXPORT_FORMATS:
        raise InvalidInputError(f"Unsupported export format: {fmt!r}")
    return "JPEG" if name == "JPG" else name


def export_buffer(
    buffer: PixelBuffer,
    path: Union[str, Path],
    fmt: Optional[str] = "PNG",
    quality: int = 90,
) -> Path:
    """Encode ``buffer`` to ``path``. PNG keeps alpha, JPEG is flattened to RGB."""
    fmt = normalize_format(fmt)
    path = Path(path)

    save_kwargs = {"format": fmt}
    if fmt == "JPEG":
        img = Image.fromarray(np.ascontiguousarray(buffer.rgb))
        save_kwargs["quality"] = max(1, min(100, int(quality)))
    else:
        img = Image.fromarray(buffer.data)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        img.save(path, **save_kwargs)
    except (OSError, ValueError) as e:
        log.exception(f"Failed to export {path}: {e}")
        raise InvalidInputError(f"Could not write image to {path}: {e}")

    log.info(f"Exported {buffer.width}x{buffer.height} {fmt} to {path} ({format_file_size(path.stat().st_size)})")
    return path


def generate_filename(prefix: str = "image", extension: str = "png") -> str:
    """Timestamped file name such as ``image_2024-05-01T12-30-00-123Z.png``."""
    now = datetime.datetime.now(datetime.timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"
    return f"{prefix}_{stamp}.{extension.lstrip('.')}"


def format_file_size(num_bytes: int) -> str:
    if num_bytes == 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(num_bytes, 1024))), len(units) - 1)
    return f"{round(num_bytes / 1024 ** i, 2):g} {units[i]}"
