"""Geometry operators: 90-degree rotation, flips and rectangular crop."""

import logging
from typing import Tuple

import numpy as np

from rasterlab.errors import InvalidInputError
from rasterlab.models import PixelBuffer

log = logging.getLogger(__name__)

VALID_ROTATIONS = (0, 90, 180, 270)


def normalize_rotation(angle) -> int:
    """Return angle folded into [0, 360). Only multiples of 90 are accepted."""
    try:
        val = int(angle) % 360
    except (ValueError, TypeError) as e:
        raise InvalidInputError(f"Invalid rotation angle {angle!r}: {e}")
    if val not in VALID_ROTATIONS or float(angle) != int(angle):
        raise InvalidInputError(f"Rotation must be a multiple of 90 degrees, got {angle!r}")
    return val


def rotate(buffer: PixelBuffer, angle: int) -> PixelBuffer:
    """Rotate clockwise by 90, 180 or 270 degrees. 90 and 270 swap width and height."""
    angle = normalize_rotation(angle)
    if angle == 0:
        return buffer.copy()
    # np.rot90 turns counter-clockwise for positive k
    k = {90: -1, 180: 2, 270: 1}[angle]
    return PixelBuffer(np.ascontiguousarray(np.rot90(buffer.data, k=k)))


def flip(buffer: PixelBuffer, horizontal: bool) -> PixelBuffer:
    """Mirror left-right when horizontal, otherwise top-bottom."""
    axis = 1 if horizontal else 0
    return PixelBuffer(np.ascontiguousarray(np.flip(buffer.data, axis=axis)))


def clamp_crop_rect(buffer: PixelBuffer, x: int, y: int, width: int, height: int) -> Tuple[int, int, int, int]:
    """Clamp a rectangle to the image. The result is always at least 1x1."""
    x = max(0, min(int(x), buffer.width - 1))
    y = max(0, min(int(y), buffer.height - 1))
    width = max(1, min(int(width), buffer.width - x))
    height = max(1, min(int(height), buffer.height - y))
    return x, y, width, height


def crop(buffer: PixelBuffer, x: int, y: int, width: int, height: int) -> PixelBuffer:
    """Cut out the rectangle at (x, y), clamped to the image bounds."""
    x, y, width, height = clamp_crop_rect(buffer, x, y, width, height)
    return PixelBuffer(buffer.data[y:y + height, x:x + width].copy())
