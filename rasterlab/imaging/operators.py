"""Pixel operators.

Every operator takes a PixelBuffer plus its parameters and returns a new
PixelBuffer. Inputs are never modified, width and height are preserved and
alpha is carried over unchanged unless the operator says otherwise. Each
operator returns an exact copy of its input when given its neutral value.

Spatial operators take a ``border`` policy:

- ``clamp`` (default): samples outside the image reuse the nearest edge pixel,
  so every pixel is processed.
- ``skip``: the ring of pixels whose window would leave the image is copied
  through untouched.
"""

import logging
import math
from typing import Union

import numpy as np
from cachetools import LRUCache, cached
from PIL import Image, ImageFilter

from rasterlab.imaging.histogram import luma, round_half_up, rounded_luma
from rasterlab.models import BorderPolicy, EdgeDetector, EqualizationMode, PixelBuffer

log = logging.getLogger(__name__)

Border = Union[BorderPolicy, str]

LAPLACIAN_KERNEL = np.array([[0, -1, 0], [-1, 4, -1], [0, -1, 0]], dtype=np.float64)

SOBEL_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
SOBEL_Y = np.array([[-1, -2, -1], [0, 0, 0], [1, 2, 1]], dtype=np.float64)
PREWITT_X = np.array([[-1, 0, 1], [-1, 0, 1], [-1, 0, 1]], dtype=np.float64)
PREWITT_Y = np.array([[-1, -1, -1], [0, 0, 0], [1, 1, 1]], dtype=np.float64)

for _k in (LAPLACIAN_KERNEL, SOBEL_X, SOBEL_Y, PREWITT_X, PREWITT_Y):
    _k.flags.writeable = False


# ----------------------------
# Shared helpers
# ----------------------------

def _to_uint8(arr: np.ndarray) -> np.ndarray:
    """Round to nearest (ties to even) and clamp into [0, 255]."""
    return np.clip(np.rint(arr), 0, 255).astype(np.uint8)


def _with_rgb(buffer: PixelBuffer, rgb: np.ndarray) -> PixelBuffer:
    """New buffer with the given color channels and the source alpha."""
    out = np.empty_like(buffer.data)
    out[:, :, :3] = rgb
    out[:, :, 3] = buffer.alpha
    return PixelBuffer(out)


def _pad(arr: np.ndarray, before: int, after: int = None) -> np.ndarray:
    """Edge-replicate the two spatial axes."""
    if after is None:
        after = before
    pad_width = [(before, after), (before, after)] + [(0, 0)] * (arr.ndim - 2)
    return np.pad(arr, pad_width, mode="edge")


def _correlate(arr: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """Apply a small odd-sized kernel over the spatial axes with edge clamping."""
    radius = kernel.shape[0] // 2
    h, w = arr.shape[:2]
    padded = _pad(arr.astype(np.float64, copy=False), radius)
    out = np.zeros(arr.shape, dtype=np.float64)
    for ky in range(kernel.shape[0]):
        for kx in range(kernel.shape[1]):
            weight = kernel[ky, kx]
            if weight == 0:
                continue
            out += weight * padded[ky:ky + h, kx:kx + w]
    return out


def _restore_border(result: np.ndarray, source: np.ndarray, radius: int) -> None:
    """Copy a ring of width ``radius`` from source into result in place."""
    if radius <= 0:
        return
    result[:radius] = source[:radius]
    result[-radius:] = source[-radius:]
    result[:, :radius] = source[:, :radius]
    result[:, -radius:] = source[:, -radius:]


def _finish_spatial(buffer: PixelBuffer, out: np.ndarray, border: Border, radius: int) -> PixelBuffer:
    if BorderPolicy(border) == BorderPolicy.SKIP:
        _restore_border(out, buffer.data, radius)
    return PixelBuffer(out)


# ----------------------------
# Tone and color
# ----------------------------

def brightness(buffer: PixelBuffer, value: float) -> PixelBuffer:
    """Shift R, G and B by ``value/100 * 255``. value in [-100, 100]."""
    if value == 0:
        return buffer.copy()
    rgb = buffer.rgb.astype(np.float64) + value / 100.0 * 255.0
    return _with_rgb(buffer, _to_uint8(rgb))


def contrast(buffer: PixelBuffer, value: float) -> PixelBuffer:
    """Scale the distance from mid-gray (128) by ``(value + 100) / 100``."""
    if value == 0:
        return buffer.copy()
    factor = (value + 100.0) / 100.0
    rgb = (buffer.rgb.astype(np.float64) - 128.0) * factor + 128.0
    return _with_rgb(buffer, _to_uint8(rgb))


def saturation(buffer: PixelBuffer, value: float) -> PixelBuffer:
    """Push each channel toward (value < 0) or away from (value > 0) the pixel's luma."""
    if value == 0:
        return buffer.copy()
    factor = (value + 100.0) / 100.0
    rgb = buffer.rgb.astype(np.float64)
    gray = luma(rgb)[:, :, np.newaxis]
    rgb = gray + (rgb - gray) * factor
    return _with_rgb(buffer, _to_uint8(rgb))


def rgb_offset(buffer: PixelBuffer, r: float = 0.0, g: float = 0.0, b: float = 0.0) -> PixelBuffer:
    """Independent additive offset per channel, each in [-100, 100]."""
    if r == 0 and g == 0 and b == 0:
        return buffer.copy()
    offsets = np.array([r, g, b], dtype=np.float64) / 100.0 * 255.0
    rgb = buffer.rgb.astype(np.float64) + offsets
    return _with_rgb(buffer, _to_uint8(rgb))


def grayscale(buffer: PixelBuffer, enabled: bool = True) -> PixelBuffer:
    """Replace R, G and B with the rounded luma."""
    if not enabled:
        return buffer.copy()
    gray = rounded_luma(buffer.rgb).astype(np.uint8)
    return _with_rgb(buffer, gray[:, :, np.newaxis])


def invert(buffer: PixelBuffer, enabled: bool = True) -> PixelBuffer:
    """255 - c for every color channel."""
    if not enabled:
        return buffer.copy()
    return _with_rgb(buffer, 255 - buffer.rgb)


# ----------------------------
# Convolution
# ----------------------------

def box_blur_kernel_size(radius: float) -> int:
    return max(1, int(math.floor(radius * 2)) + 1)


def box_blur(buffer: PixelBuffer, radius: float) -> PixelBuffer:
    """Unweighted mean over a square window, sampling clamped at the edges.

    The window side is ``max(1, floor(radius*2)+1)`` rounded up to the next
    odd number. Alpha is preserved.
    """
    half = box_blur_kernel_size(radius) // 2
    if half <= 0:
        return buffer.copy()
    size = 2 * half + 1
    padded = _pad(buffer.rgb.astype(np.int64), half)

    # Summed-area table so each window costs four lookups
    integral = np.zeros((padded.shape[0] + 1, padded.shape[1] + 1, 3), dtype=np.int64)
    integral[1:, 1:] = padded.cumsum(axis=0).cumsum(axis=1)
    sums = (
        integral[size:, size:]
        - integral[:-size, size:]
        - integral[size:, :-size]
        + integral[:-size, :-size]
    )
    mean = sums / float(size * size)
    return _with_rgb(buffer, np.clip(round_half_up(mean), 0, 255).astype(np.uint8))


@cached(LRUCache(maxsize=64))
def sharpen_kernel(strength: float) -> np.ndarray:
    """Identity blended toward [[0,-1,0],[-1,5,-1],[0,-1,0]] by strength/100."""
    alpha = strength / 100.0
    edge = -alpha
    kernel = np.array(
        [[0.0, edge, 0.0],
         [edge, 1.0 + 4.0 * alpha, edge],
         [0.0, edge, 0.0]],
        dtype=np.float64,
    )
    kernel.flags.writeable = False
    return kernel


def sharpen(buffer: PixelBuffer, strength: float, border: Border = BorderPolicy.CLAMP) -> PixelBuffer:
    """Parametric 3x3 sharpen. strength in [0, 100]; 0 is exact identity."""
    if strength <= 0:
        return buffer.copy()
    rgb = _correlate(buffer.rgb, sharpen_kernel(float(strength)))
    out = buffer.data.copy()
    out[:, :, :3] = _to_uint8(rgb)
    return _finish_spatial(buffer, out, border, 1)


def median_filter(buffer: PixelBuffer, radius: int, border: Border = BorderPolicy.CLAMP) -> PixelBuffer:
    """Per-channel median over a (2r+1) square window, for impulse noise."""
    radius = int(radius)
    if radius <= 0:
        return buffer.copy()
    size = 2 * radius + 1
    # Pillow's rank filter replicates edge pixels, which is the clamp policy
    rgb_img = Image.fromarray(np.ascontiguousarray(buffer.rgb))
    filtered = np.asarray(rgb_img.filter(ImageFilter.MedianFilter(size=size)))
    out = buffer.data.copy()
    out[:, :, :3] = filtered
    return _finish_spatial(buffer, out, border, radius)


def gaussian_radius(sigma: float) -> int:
    return int(math.ceil(sigma * 3))


@cached(LRUCache(maxsize=64))
def gaussian_kernel_1d(sigma: float) -> np.ndarray:
    """Normalized 1-D weights; their outer product is the normalized 2-D kernel."""
    radius = gaussian_radius(sigma)
    offsets = np.arange(-radius, radius + 1, dtype=np.float64)
    weights = np.exp(-(offsets * offsets) / (2.0 * sigma * sigma))
    weights /= weights.sum()
    weights.flags.writeable = False
    return weights


def gaussian_blur(buffer: PixelBuffer, sigma: float, border: Border = BorderPolicy.CLAMP) -> PixelBuffer:
    """Gaussian blur with kernel radius ceil(3*sigma)."""
    if sigma <= 0:
        return buffer.copy()
    weights = gaussian_kernel_1d(float(sigma))
    radius = len(weights) // 2
    h, w = buffer.height, buffer.width
    padded = _pad(buffer.rgb.astype(np.float64), radius)

    # Separable: rows then columns
    horizontal = np.zeros((padded.shape[0], w, 3), dtype=np.float64)
    for i, weight in enumerate(weights):
        horizontal += weight * padded[:, i:i + w]
    rgb = np.zeros((h, w, 3), dtype=np.float64)
    for i, weight in enumerate(weights):
        rgb += weight * horizontal[i:i + h]

    out = buffer.data.copy()
    out[:, :, :3] = np.clip(round_half_up(rgb), 0, 255).astype(np.uint8)
    return _finish_spatial(buffer, out, border, radius)


def laplacian_sharpen(buffer: PixelBuffer, enabled: bool = True, border: Border = BorderPolicy.CLAMP) -> PixelBuffer:
    """Add the 4-neighbour Laplacian response to each pixel."""
    if not enabled:
        return buffer.copy()
    rgb = buffer.rgb.astype(np.float64)
    rgb = rgb + _correlate(rgb, LAPLACIAN_KERNEL)
    out = buffer.data.copy()
    out[:, :, :3] = _to_uint8(rgb)
    return _finish_spatial(buffer, out, border, 1)


# ----------------------------
# Edge detection
# ----------------------------

def _edge_output(buffer: PixelBuffer, gx: np.ndarray, gy: np.ndarray) -> np.ndarray:
    magnitude = np.minimum(255.0, np.sqrt(gx * gx + gy * gy))
    out = np.empty_like(buffer.data)
    out[:, :, :3] = _to_uint8(magnitude)[:, :, np.newaxis]
    # Edge maps are opaque regardless of the source alpha
    out[:, :, 3] = 255
    return out


def _kernel_edges(buffer: PixelBuffer, kx: np.ndarray, ky: np.ndarray, border: Border) -> PixelBuffer:
    gray = luma(buffer.rgb)
    out = _edge_output(buffer, _correlate(gray, kx), _correlate(gray, ky))
    return _finish_spatial(buffer, out, border, 1)


def sobel_edges(buffer: PixelBuffer, border: Border = BorderPolicy.CLAMP) -> PixelBuffer:
    return _kernel_edges(buffer, SOBEL_X, SOBEL_Y, border)


def prewitt_edges(buffer: PixelBuffer, border: Border = BorderPolicy.CLAMP) -> PixelBuffer:
    return _kernel_edges(buffer, PREWITT_X, PREWITT_Y, border)


def roberts_edges(buffer: PixelBuffer, border: Border = BorderPolicy.CLAMP) -> PixelBuffer:
    """Roberts cross over each pixel and its right, lower and diagonal neighbours."""
    gray = _pad(luma(buffer.rgb), 0, 1)
    gx = gray[:-1, :-1] - gray[1:, 1:]
    gy = gray[:-1, 1:] - gray[1:, :-1]
    out = _edge_output(buffer, gx, gy)
    if BorderPolicy(border) == BorderPolicy.SKIP:
        # 2x2 support only runs off the bottom and right edges
        out[-1] = buffer.data[-1]
        out[:, -1] = buffer.data[:, -1]
    return PixelBuffer(out)


def detect_edges(buffer: PixelBuffer, detector: Union[EdgeDetector, str], border: Border = BorderPolicy.CLAMP) -> PixelBuffer:
    """Gradient magnitude map. Alpha is forced to 255."""
    detector = EdgeDetector(detector)
    if detector == EdgeDetector.SOBEL:
        return sobel_edges(buffer, border)
    if detector == EdgeDetector.PREWITT:
        return prewitt_edges(buffer, border)
    if detector == EdgeDetector.ROBERTS:
        return roberts_edges(buffer, border)
    return buffer.copy()


# ----------------------------
# Histogram equalization
# ----------------------------

def equalization_lut(hist: np.ndarray, total: int) -> np.ndarray:
    """Map each level through the normalized CDF.

    A single-level image has nothing to spread and maps to itself.
    """
    cdf = np.cumsum(hist)
    nonzero = cdf[cdf > 0]
    cdf_min = int(nonzero[0]) if nonzero.size else 0
    denom = total - cdf_min
    if denom <= 0:
        return np.arange(256, dtype=np.float64)
    lut = round_half_up((cdf - cdf_min) / float(denom) * 255.0)
    lut[cdf == 0] = 0
    return lut


def histogram_equalization(
    buffer: PixelBuffer,
    strength: float,
    mode: Union[EqualizationMode, str] = EqualizationMode.LUMINANCE,
) -> PixelBuffer:
    """Blend between the original and the fully equalized image.

    ``strength`` in [0, 100] is the blend weight: 0 returns the input
    unchanged, 100 is full equalization, values in between vary continuously.

    In luminance mode the color ratio of each pixel is kept by scaling R, G
    and B by newLuma/oldLuma; pixels with a luma of 0 become neutral gray at
    the new luma. In rgb mode each channel is equalized on its own.
    """
    alpha = strength / 100.0
    if alpha <= 0:
        return buffer.copy()
    mode = EqualizationMode(mode)
    total = buffer.width * buffer.height

    if mode == EqualizationMode.RGB:
        rgb = np.empty(buffer.rgb.shape, dtype=np.uint8)
        for channel in range(3):
            values = buffer.rgb[:, :, channel].astype(np.int64)
            lut = equalization_lut(np.bincount(values.ravel(), minlength=256), total)
            blended = values * (1.0 - alpha) + lut[values] * alpha
            rgb[:, :, channel] = np.clip(round_half_up(blended), 0, 255).astype(np.uint8)
        return _with_rgb(buffer, rgb)

    gray = rounded_luma(buffer.rgb)
    lut = equalization_lut(np.bincount(gray.ravel(), minlength=256), total)
    new_gray = round_half_up(gray * (1.0 - alpha) + lut[gray] * alpha)

    safe_gray = np.where(gray == 0, 1, gray).astype(np.float64)
    ratio = (new_gray / safe_gray)[:, :, np.newaxis]
    rgb = np.clip(round_half_up(buffer.rgb.astype(np.float64) * ratio), 0, 255)
    black = gray == 0
    rgb[black] = new_gray[black][:, np.newaxis]
    return _with_rgb(buffer, rgb.astype(np.uint8))
