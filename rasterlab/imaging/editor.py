import contextlib
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple, Union

import numpy as np

from rasterlab.config import config
from rasterlab.errors import InvalidInputError
from rasterlab.imaging import geometry
from rasterlab.imaging.histogram import compute_histogram
from rasterlab.imaging.history import HistoryManager
from rasterlab.imaging.io import export_buffer, load_buffer, normalize_format
from rasterlab.imaging.pipeline import (
    BOOLEAN_OPERATORS,
    Operator,
    clamp_params,
    coerce_params,
    compose,
    get_param,
    parameter_ranges,
    with_param,
)
from rasterlab.models import (
    AdjustmentState,
    BorderPolicy,
    HistogramStats,
    HistoryEntry,
    HistoryInfo,
    PixelBuffer,
)

log = logging.getLogger(__name__)


class EditorSession:
    """One open document: the untouched original, the adjustments the user
    wants, the composed result and the undo history.

    Parameter changes always recompose from the original. Geometry edits
    replace the original, then the current buffer and every history entry are
    recomposed from it.
    """

    def __init__(
        self,
        history_capacity: Optional[int] = None,
        border_policy: Optional[Union[BorderPolicy, str]] = None,
        limits: Optional[Dict[str, float]] = None,
    ):
        if history_capacity is None:
            history_capacity = config.history_capacity
        if border_policy is None:
            border_policy = config.border_policy
        if limits is None:
            limits = config.limits()

        try:
            self.border_policy = BorderPolicy(border_policy)
        except ValueError:
            raise InvalidInputError(f"Unknown border policy: {border_policy!r}")
        self.ranges = parameter_ranges(**limits)

        self.original: Optional[PixelBuffer] = None
        self.current: Optional[PixelBuffer] = None
        self.adjustments = AdjustmentState()
        self.history = HistoryManager(history_capacity)
        self.current_filepath: Optional[Path] = None

        # Held for the duration of any state change; a second request that
        # finds it taken is dropped rather than queued.
        self._busy = threading.Lock()

    @property
    def is_busy(self) -> bool:
        return self._busy.locked()

    @contextlib.contextmanager
    def _exclusive(self, action: str) -> Iterator[bool]:
        acquired = self._busy.acquire(blocking=False)
        if not acquired:
            log.debug(f"Dropping {action}: a composition is already in progress")
        try:
            yield acquired
        finally:
            if acquired:
                self._busy.release()

    def _require_image(self, action: str) -> bool:
        if self.original is None:
            log.warning(f"Cannot {action}: no image loaded")
            return False
        return True

    def _seed_history(self):
        self.history.clear()
        self.history.push(self.current, self.adjustments)

    # ----------------------------
    # Loading and state
    # ----------------------------

    def load_original(self, buffer: Union[PixelBuffer, np.ndarray]) -> bool:
        """Replace the document with a new image and start a fresh history."""
        if isinstance(buffer, PixelBuffer):
            source = buffer.copy()
        elif isinstance(buffer, np.ndarray):
            source = PixelBuffer.from_array(buffer)
        else:
            raise InvalidInputError(f"Expected a PixelBuffer, got {type(buffer).__name__}")

        with self._exclusive("load") as ok:
            if not ok:
                return False
            state = AdjustmentState()
            current = compose(source, state, self.border_policy)

            self.original = source
            self.adjustments = state
            self.current = current
            self._seed_history()

        log.info(f"Loaded original {source.width}x{source.height}")
        return True

    def load_file(self, filepath: Union[str, Path]) -> bool:
        """Decode ``filepath`` and load it as the new original."""
        buffer = load_buffer(filepath)
        if not self.load_original(buffer):
            return False
        self.current_filepath = Path(filepath)
        return True

    def has_image(self) -> bool:
        return self.original is not None

    def get_image_size(self) -> Optional[Tuple[int, int]]:
        if self.original is None:
            return None
        return self.original.size

    def get_original_buffer(self) -> Optional[PixelBuffer]:
        """A copy of the untouched original, for before/after comparison."""
        if not self._require_image("get original"):
            return None
        return self.original.copy()

    def get_current_buffer(self) -> Optional[PixelBuffer]:
        """A copy of the latest composed result."""
        if not self._require_image("get current buffer"):
            return None
        return self.current.copy()

    def get_adjustments(self) -> AdjustmentState:
        return self.adjustments

    def get_histogram(self) -> Optional[HistogramStats]:
        if not self._require_image("compute histogram"):
            return None
        return compute_histogram(self.current)

    # ----------------------------
    # Adjustments
    # ----------------------------

    def set_parameter(self, operator: Union[Operator, str], params: Any) -> bool:
        """Set one operator's parameter and recompose.

        Returns True when the displayed buffer was recomputed. Malformed
        payloads raise InvalidInputError before anything is touched.
        """
        op = Operator.parse(operator)
        coerced = coerce_params(op, params)
        value = clamp_params(op, coerced, self.ranges)
        if value != coerced:
            log.debug(f"Clamped {op.value} from {coerced!r} to {value!r}")

        if not self._require_image(f"set {op.value}"):
            return False

        with self._exclusive(f"set {op.value}") as ok:
            if not ok:
                return False
            if get_param(self.adjustments, op) == value:
                log.debug(f"{op.value} unchanged at {value!r}")
                return False

            state = with_param(self.adjustments, op, value)
            current = compose(self.original, state, self.border_policy)
            self.adjustments = state
            self.current = current
            return True

    def set_boolean(self, operator: Union[Operator, str], value: bool) -> bool:
        """Explicitly enable or disable a boolean operator."""
        op = Operator.parse(operator)
        if op not in BOOLEAN_OPERATORS:
            raise InvalidInputError(f"{op.value} is not a boolean operator")
        return self.set_parameter(op, value)

    def bake(self) -> bool:
        """Record the current buffer and its adjustments as a history step."""
        if not self._require_image("bake"):
            return False
        with self._exclusive("bake") as ok:
            if not ok:
                return False
            self.history.push(self.current, self.adjustments)
        return True

    def reset(self) -> bool:
        """Drop every adjustment and the history, keeping the original."""
        if not self._require_image("reset"):
            return False
        with self._exclusive("reset") as ok:
            if not ok:
                return False
            state = AdjustmentState()
            self.current = compose(self.original, state, self.border_policy)
            self.adjustments = state
            self._seed_history()
        log.info("Reset all adjustments")
        return True

    # ----------------------------
    # History
    # ----------------------------

    def _restore(self, action: str, step) -> bool:
        if not self._require_image(action):
            return False
        with self._exclusive(action) as ok:
            if not ok:
                return False
            entry = step()
            if entry is None:
                return False
            self.current = entry.buffer
            if entry.adjustments is not None:
                self.adjustments = entry.adjustments
        return True

    def undo(self) -> bool:
        return self._restore("undo", self.history.undo)

    def redo(self) -> bool:
        return self._restore("redo", self.history.redo)

    def history_info(self) -> HistoryInfo:
        return self.history.info()

    # ----------------------------
    # Geometry
    # ----------------------------

    def _apply_geometry(self, action: str, fn) -> bool:
        if not self._require_image(action):
            return False
        with self._exclusive(action) as ok:
            if not ok:
                return False
            original = fn(self.original)
            current = compose(original, self.adjustments, self.border_policy)

            # Entries are rebuilt from the new original so each stays equal to
            # compose(original, entry.adjustments); equal states share one pass.
            rebuilt: Dict[AdjustmentState, PixelBuffer] = {self.adjustments: current}

            def rebuild(entry: HistoryEntry) -> PixelBuffer:
                if entry.adjustments is None:
                    return fn(entry.buffer)
                if entry.adjustments not in rebuilt:
                    rebuilt[entry.adjustments] = compose(original, entry.adjustments, self.border_policy)
                return rebuilt[entry.adjustments].copy()

            self.history.rebuild(rebuild)
            self.original = original
            self.current = current
        log.info(f"Applied {action}, image is now {self.original.width}x{self.original.height}")
        return True

    def rotate(self, angle: int) -> bool:
        """Rotate the document clockwise by a multiple of 90 degrees."""
        angle = geometry.normalize_rotation(angle)
        if angle == 0:
            return False
        return self._apply_geometry(f"rotate {angle}", lambda b: geometry.rotate(b, angle))

    def flip(self, horizontal: bool = True) -> bool:
        name = "horizontal" if horizontal else "vertical"
        return self._apply_geometry(f"{name} flip", lambda b: geometry.flip(b, horizontal))

    def crop(self, x: int, y: int, width: int, height: int) -> bool:
        """Crop the document to a rectangle, clamped to the image bounds."""
        if width <= 0 or height <= 0:
            raise InvalidInputError(f"Crop rectangle must have positive area, got {width}x{height}")
        if not self._require_image("crop"):
            return False
        rect = geometry.clamp_crop_rect(self.original, x, y, width, height)
        return self._apply_geometry(f"crop {rect}", lambda b: geometry.crop(b, *rect))

    # ----------------------------
    # Export
    # ----------------------------

    def export(
        self,
        filepath: Union[str, Path],
        fmt: Optional[str] = None,
        quality: Optional[int] = None,
    ) -> Optional[Path]:
        """Encode the current buffer to ``filepath``.

        The format defaults to the file extension, then to the configured one.
        """
        if not self._require_image("export"):
            return None
        filepath = Path(filepath)
        if fmt is None:
            suffix = filepath.suffix.lstrip(".").upper()
            fmt = suffix if suffix in ("PNG", "JPG", "JPEG") else config.get("export", "format", fallback="PNG")
        fmt = normalize_format(fmt)
        if quality is None:
            quality = config.getint("export", "jpeg_quality", fallback=90)
        return export_buffer(self.current, filepath, fmt=fmt, quality=quality)
