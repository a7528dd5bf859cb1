import re

import numpy as np
import pytest
from PIL import Image

from rasterlab.errors import InvalidInputError
from rasterlab.imaging.io import (
    export_buffer,
    format_file_size,
    generate_filename,
    is_supported_file,
    load_buffer,
    normalize_format,
)
from rasterlab.models import PixelBuffer


def test_load_rgb_file_gets_opaque_alpha(tmp_path):
    path = tmp_path / "rgb.png"
    Image.new("RGB", (3, 2), color=(1, 2, 3)).save(path)
    buf = load_buffer(path)
    assert buf.size == (3, 2)
    assert tuple(buf.data[0, 0]) == (1, 2, 3, 255)


def test_load_grayscale_and_palette(tmp_path):
    gray = tmp_path / "gray.png"
    Image.new("L", (2, 2), color=77).save(gray)
    assert tuple(load_buffer(gray).data[1, 1]) == (77, 77, 77, 255)

    pal = tmp_path / "pal.gif"
    Image.new("P", (2, 2), color=0).save(pal)
    assert load_buffer(pal).data.shape == (2, 2, 4)


@pytest.mark.parametrize("content", [None, b"", b"definitely not an image"])
def test_load_rejects_bad_files(tmp_path, content):
    path = tmp_path / "bad.png"
    if content is not None:
        path.write_bytes(content)
    with pytest.raises(InvalidInputError):
        load_buffer(path)


def test_load_rejects_unsupported_extension(tmp_path):
    # valid PNG bytes behind an extension the editor does not open
    path = tmp_path / "image.txt"
    Image.new("RGB", (2, 2)).save(path, format="PNG")
    with pytest.raises(InvalidInputError, match="Unsupported image type"):
        load_buffer(path)

    renamed = path.rename(tmp_path / "image.PNG")
    assert load_buffer(renamed).size == (2, 2)


def test_png_export_keeps_alpha(tmp_path):
    buf = PixelBuffer.blank(2, 2, (10, 20, 30, 40))
    out = export_buffer(buf, tmp_path / "a.png")
    with Image.open(out) as im:
        assert im.mode == "RGBA"
        assert im.getpixel((1, 1)) == (10, 20, 30, 40)


def test_jpeg_export_flattens_alpha(tmp_path):
    buf = PixelBuffer.blank(8, 8, (200, 100, 50, 0))
    out = export_buffer(buf, tmp_path / "nested" / "a.jpg", fmt="jpeg", quality=500)
    with Image.open(out) as im:
        assert im.format == "JPEG"
        assert im.mode == "RGB"
        r, g, b = im.getpixel((4, 4))
        assert abs(r - 200) <= 3 and abs(g - 100) <= 3 and abs(b - 50) <= 3


def test_export_rejects_unknown_format(tmp_path):
    with pytest.raises(InvalidInputError):
        export_buffer(PixelBuffer.blank(1, 1), tmp_path / "a.tga", fmt="TGA")
    assert normalize_format(None) == "PNG"
    assert normalize_format("jpg") == "JPEG"


def test_generate_filename():
    name = generate_filename("edited_image", "png")
    assert re.fullmatch(r"edited_image_\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z\.png", name)
    assert generate_filename(extension=".jpg").startswith("image_")
    assert generate_filename(extension=".jpg").endswith(".jpg")


@pytest.mark.parametrize("name,expected", [
    ("photo.JPG", True),
    ("photo.webp", True),
    ("scan.tiff", True),
    ("notes.txt", False),
    ("noext", False),
])
def test_is_supported_file(name, expected):
    assert is_supported_file(name) is expected


def test_format_file_size():
    assert format_file_size(0) == "0 Bytes"
    assert format_file_size(512) == "512 Bytes"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(5 * 1024 * 1024) == "5 MB"


def test_round_trip_through_png_is_lossless(tmp_path):
    rng = np.random.default_rng(2)
    buf = PixelBuffer(rng.integers(0, 256, (5, 6, 4), dtype=np.uint8))
    assert load_buffer(export_buffer(buf, tmp_path / "r.png")).equals(buf)
