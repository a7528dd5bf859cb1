import numpy as np

from rasterlab.imaging.histogram import compute_histogram, round_half_up, rounded_luma
from rasterlab.models import PixelBuffer


def test_uniform_gray_histogram():
    stats = compute_histogram(PixelBuffer.blank(4, 4, (128, 128, 128, 255)))
    assert stats.r[128] == 16
    assert stats.g[128] == 16
    assert stats.b[128] == 16
    assert stats.luma[128] == 16
    assert stats.total == 16


def test_histogram_has_256_buckets_per_channel():
    rng = np.random.default_rng(1)
    buf = PixelBuffer(rng.integers(0, 256, (10, 12, 4), dtype=np.uint8))
    stats = compute_histogram(buf)
    for counts in (stats.r, stats.g, stats.b, stats.luma):
        assert len(counts) == 256
        assert sum(counts) == 120


def test_luma_bucket_rounds_half_up():
    buf = PixelBuffer.blank(1, 1, (255, 0, 0, 255))
    assert compute_histogram(buf).luma[76] == 1
    assert list(round_half_up(np.array([0.5, 1.5, 2.4]))) == [1.0, 2.0, 2.0]


def test_alpha_is_ignored():
    buf = PixelBuffer.blank(2, 2, (10, 20, 30, 0))
    stats = compute_histogram(buf)
    assert stats.r[10] == 4
    assert rounded_luma(buf.rgb).dtype == np.int64
