"""Per-channel histograms and the luma helpers shared with the operators."""

import numpy as np

from rasterlab.models import HistogramStats, PixelBuffer

# ITU-R BT.601 weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)


def round_half_up(arr: np.ndarray) -> np.ndarray:
    """Round .5 away from zero for non-negative input (matches Math.round-style UI code)."""
    return np.floor(arr + 0.5)


def luma(rgb: np.ndarray) -> np.ndarray:
    """Unrounded luma of an (..., 3) array as float64."""
    rgb = rgb.astype(np.float64, copy=False)
    return LUMA_WEIGHTS[0] * rgb[..., 0] + LUMA_WEIGHTS[1] * rgb[..., 1] + LUMA_WEIGHTS[2] * rgb[..., 2]


def rounded_luma(rgb: np.ndarray) -> np.ndarray:
    """Luma rounded to the nearest integer bucket, as int64 in [0, 255]."""
    return np.clip(round_half_up(luma(rgb)), 0, 255).astype(np.int64)


def compute_histogram(buffer: PixelBuffer) -> HistogramStats:
    """Count R, G, B and luma values of every pixel into 256 buckets each."""
    rgb = buffer.rgb
    r = np.bincount(rgb[:, :, 0].ravel(), minlength=256)
    g = np.bincount(rgb[:, :, 1].ravel(), minlength=256)
    b = np.bincount(rgb[:, :, 2].ravel(), minlength=256)
    y = np.bincount(rounded_luma(rgb).ravel(), minlength=256)
    return HistogramStats(r=r.tolist(), g=g.tolist(), b=b.tolist(), luma=y.tolist())
