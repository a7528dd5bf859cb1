import numpy as np
import pytest
from PIL import Image

from rasterlab.errors import InvalidInputError, UnknownOperatorError
from rasterlab.imaging import editor as editor_module
from rasterlab.imaging.editor import EditorSession
from rasterlab.imaging.pipeline import Operator, compose
from rasterlab.models import AdjustmentState, EdgeDetector, Equalization, EqualizationMode, PixelBuffer, RgbOffset

LIMITS = {"max_blur_radius": 10, "max_median_radius": 5, "max_gaussian_sigma": 5.0}


def new_session(**kwargs):
    kwargs.setdefault("history_capacity", 50)
    kwargs.setdefault("border_policy", "clamp")
    kwargs.setdefault("limits", LIMITS)
    return EditorSession(**kwargs)


@pytest.fixture
def image():
    rng = np.random.default_rng(11)
    return PixelBuffer(rng.integers(0, 256, (6, 8, 4), dtype=np.uint8))


@pytest.fixture
def session(image):
    s = new_session()
    assert s.load_original(image)
    return s


def test_load_seeds_history(session, image):
    info = session.history_info()
    assert (info.total, info.current, info.can_undo, info.can_redo) == (1, 1, False, False)
    assert session.get_current_buffer().equals(image)
    assert session.get_adjustments() == AdjustmentState()
    assert session.get_image_size() == (8, 6)


def test_brightness_on_mid_gray():
    s = new_session()
    s.load_original(PixelBuffer.blank(4, 4, (128, 128, 128, 255)))
    assert s.set_parameter(Operator.BRIGHTNESS, 50)
    assert np.all(s.get_current_buffer().rgb == 255)


def test_operations_without_image_are_no_ops():
    s = new_session()
    assert not s.has_image()
    assert s.set_parameter("brightness", 10) is False
    assert s.set_boolean("invert", True) is False
    assert s.get_current_buffer() is None
    assert s.get_histogram() is None
    assert s.undo() is False
    assert s.redo() is False
    assert s.bake() is False
    assert s.reset() is False
    assert s.rotate(90) is False
    assert s.get_adjustments() == AdjustmentState()


def test_original_is_never_modified(session, image):
    session.set_parameter(Operator.CONTRAST, 40)
    session.set_boolean(Operator.GRAYSCALE, True)
    session.set_parameter(Operator.GAUSSIAN_BLUR, 2.0)
    session.bake()
    session.set_parameter(Operator.EDGE_DETECTION, EdgeDetector.SOBEL)
    assert session.get_original_buffer().equals(image)


def test_current_matches_compose(session, image):
    session.set_parameter("adjustRGB", {"r": 10, "g": 0, "b": -10})
    session.set_parameter("histogramEqualization", {"strength": 50, "mode": "rgb"})
    session.set_parameter(Operator.MEDIAN, 1)
    expected = compose(
        image,
        AdjustmentState(
            rgb_offset=RgbOffset(10, 0, -10),
            equalization=Equalization(50, EqualizationMode.RGB),
            median=1,
        ),
    )
    assert session.get_current_buffer().equals(expected)


def test_returned_buffers_are_snapshots(session):
    snapshot = session.get_current_buffer()
    snapshot.data[:] = 0
    assert not session.get_current_buffer().equals(snapshot)


def test_setting_back_to_neutral_restores_original(session, image):
    session.set_parameter(Operator.BRIGHTNESS, 30)
    session.set_parameter(Operator.BRIGHTNESS, 0)
    assert session.get_current_buffer().equals(image)


def test_unchanged_value_does_not_recompose(session):
    assert session.set_parameter(Operator.SHARPEN, 40)
    assert session.set_parameter(Operator.SHARPEN, 40) is False


def test_parameters_are_clamped(session):
    session.set_parameter(Operator.BRIGHTNESS, 500)
    session.set_parameter(Operator.BLUR, 99)
    assert session.get_adjustments().brightness == 100
    assert session.get_adjustments().blur == 10


def test_limits_come_from_constructor(image):
    s = new_session(limits={"max_blur_radius": 2, "max_median_radius": 1, "max_gaussian_sigma": 0.5})
    s.load_original(image)
    s.set_parameter(Operator.MEDIAN, 4)
    s.set_parameter(Operator.GAUSSIAN_BLUR, 3.0)
    assert s.get_adjustments().median == 1
    assert s.get_adjustments().gaussian == 0.5


def test_invalid_input_leaves_state_untouched(session):
    session.set_parameter(Operator.CONTRAST, 25)
    before = session.get_current_buffer()
    with pytest.raises(UnknownOperatorError):
        session.set_parameter("posterize", 3)
    with pytest.raises(InvalidInputError):
        session.set_parameter(Operator.RGB_OFFSET, {"r": 5})
    with pytest.raises(InvalidInputError):
        session.set_boolean(Operator.BRIGHTNESS, True)
    with pytest.raises(InvalidInputError):
        session.load_original(np.zeros((0, 4, 4), dtype=np.uint8))
    assert session.get_adjustments() == AdjustmentState(contrast=25)
    assert session.get_current_buffer().equals(before)


def test_set_boolean_is_explicit(session):
    assert session.set_boolean(Operator.INVERT, True)
    assert session.set_boolean(Operator.INVERT, True) is False
    assert session.get_adjustments().invert is True
    assert session.set_boolean(Operator.INVERT, False)
    assert session.get_adjustments().invert is False


def test_undo_restores_buffer_and_adjustments(session, image):
    session.set_parameter(Operator.BRIGHTNESS, 20)
    session.bake()
    first = session.get_current_buffer()
    session.set_parameter(Operator.CONTRAST, 30)
    session.bake()

    assert session.undo()
    assert session.get_adjustments() == AdjustmentState(brightness=20)
    assert session.get_current_buffer().equals(first)

    assert session.undo()
    assert session.get_adjustments() == AdjustmentState()
    assert session.get_current_buffer().equals(image)
    assert session.undo() is False

    assert session.redo()
    assert session.get_adjustments() == AdjustmentState(brightness=20)

    # an edit after undo composes from the restored adjustments
    session.set_parameter(Operator.SATURATION, 10)
    assert session.get_adjustments() == AdjustmentState(brightness=20, saturation=10)


def test_reset(session, image):
    session.set_parameter(Operator.INVERT, True)
    session.bake()
    assert session.reset()
    assert session.get_adjustments() == AdjustmentState()
    assert session.get_current_buffer().equals(image)
    assert session.history_info().total == 1


def test_history_respects_capacity(image):
    s = new_session(history_capacity=3)
    s.load_original(image)
    for v in (10, 20, 30, 40):
        s.set_parameter(Operator.BRIGHTNESS, v)
        s.bake()
    assert s.history_info().total == 3
    assert s.undo() and s.undo()
    assert s.undo() is False
    assert s.get_adjustments().brightness == 20


def test_rotate_transforms_everything(session):
    session.set_parameter(Operator.INVERT, True)
    session.bake()
    assert session.rotate(90)
    assert session.get_image_size() == (6, 8)
    assert session.get_current_buffer().size == (6, 8)
    assert session.undo()
    assert session.get_current_buffer().size == (6, 8)
    assert session.get_current_buffer().equals(session.get_original_buffer())


def test_rotate_four_times_round_trips(session, image):
    for _ in range(4):
        session.rotate(90)
    assert session.get_original_buffer().equals(image)


def test_rotate_rejects_odd_angle(session):
    with pytest.raises(InvalidInputError):
        session.rotate(45)


def test_flip_and_crop(session, image):
    assert session.flip(horizontal=True)
    np.testing.assert_array_equal(session.get_original_buffer().data[:, 0], image.data[:, -1])
    assert session.crop(1, 1, 3, 2)
    assert session.get_image_size() == (3, 2)
    with pytest.raises(InvalidInputError):
        session.crop(0, 0, 0, 5)
    assert session.get_image_size() == (3, 2)


@pytest.mark.parametrize("border", ["clamp", "skip"])
@pytest.mark.parametrize("geometry_edit", [
    lambda s: s.crop(0, 0, 3, 3),
    lambda s: s.crop(2, 1, 4, 4),
    lambda s: s.rotate(90),
    lambda s: s.flip(horizontal=False),
])
def test_geometry_keeps_current_equal_to_compose(image, border, geometry_edit):
    s = new_session(border_policy=border)
    s.load_original(image)
    s.set_parameter(Operator.GAUSSIAN_BLUR, 1.0)
    s.bake()
    s.set_parameter(Operator.HISTOGRAM_EQUALIZATION, {"strength": 100, "mode": "rgb"})
    s.bake()

    assert geometry_edit(s)
    assert s.get_current_buffer().equals(compose(s.get_original_buffer(), s.get_adjustments(), border))

    # an unrelated edit and its reversal return to the same pixels
    before = s.get_current_buffer()
    s.set_parameter(Operator.BRIGHTNESS, 10)
    s.set_parameter(Operator.BRIGHTNESS, 0)
    assert s.get_current_buffer().equals(before)

    assert s.undo()
    assert s.get_adjustments() == AdjustmentState(gaussian=1.0)
    assert s.get_current_buffer().equals(compose(s.get_original_buffer(), s.get_adjustments(), border))
    assert s.undo()
    assert s.get_current_buffer().equals(s.get_original_buffer())


def test_reentrant_call_is_dropped(session, monkeypatch):
    inner_results = []
    real_compose = editor_module.compose

    def compose_and_reenter(original, state, border):
        inner_results.append(session.set_parameter(Operator.CONTRAST, 50))
        return real_compose(original, state, border)

    monkeypatch.setattr(editor_module, "compose", compose_and_reenter)
    assert session.set_parameter(Operator.BRIGHTNESS, 10)

    assert inner_results == [False]
    assert session.get_adjustments() == AdjustmentState(brightness=10)
    assert not session.is_busy


def test_failed_compose_releases_busy_flag(session, monkeypatch):
    def explode(original, state, border):
        raise RuntimeError("boom")

    monkeypatch.setattr(editor_module, "compose", explode)
    with pytest.raises(RuntimeError):
        session.set_parameter(Operator.BRIGHTNESS, 10)
    assert not session.is_busy
    assert session.get_adjustments() == AdjustmentState()


def test_histogram_reflects_current(session):
    session.set_parameter(Operator.BRIGHTNESS, 100)
    stats = session.get_histogram()
    assert stats.total == 48
    assert stats.luma[255] == 48
    assert stats.r[255] == stats.g[255] == stats.b[255] == 48


def test_load_file_and_export(tmp_path):
    src = tmp_path / "in.png"
    Image.new("RGB", (5, 4), color=(100, 150, 200)).save(src)

    s = new_session()
    assert s.load_file(src)
    assert s.current_filepath == src
    s.set_boolean(Operator.INVERT, True)

    out = s.export(tmp_path / "out.png")
    with Image.open(out) as im:
        assert im.size == (5, 4)
        assert im.mode == "RGBA"
        assert im.getpixel((0, 0)) == (155, 105, 55, 255)

    jpg = s.export(tmp_path / "out.jpg", quality=95)
    with Image.open(jpg) as im:
        assert im.format == "JPEG"
        assert im.mode == "RGB"


def test_export_without_image():
    assert new_session().export("unused.png") is None


def test_unknown_border_policy():
    with pytest.raises(InvalidInputError):
        new_session(border_policy="wrap")
