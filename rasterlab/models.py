"""Core data types and enumerations for rasterlab."""

import dataclasses
import enum
import time
from typing import List, Optional, Tuple

import numpy as np

from rasterlab.errors import InvalidInputError


class EqualizationMode(str, enum.Enum):
    """Which intensities histogram equalization remaps."""
    LUMINANCE = "luminance"
    RGB = "rgb"


class EdgeDetector(str, enum.Enum):
    """Gradient operator used by edge detection. NONE is the neutral value."""
    NONE = "none"
    SOBEL = "sobel"
    PREWITT = "prewitt"
    ROBERTS = "roberts"


class BorderPolicy(str, enum.Enum):
    """How spatial operators treat pixels whose window leaves the image."""
    CLAMP = "clamp"  # sample the nearest edge pixel, process everything
    SKIP = "skip"    # copy the border ring through unprocessed


@dataclasses.dataclass
class PixelBuffer:
    """An RGBA raster, 8 bits per channel, non-premultiplied alpha.

    ``data`` is a C-contiguous uint8 array shaped (height, width, 4).
    """
    data: np.ndarray

    def __post_init__(self):
        arr = self.data
        if not isinstance(arr, np.ndarray):
            raise InvalidInputError(f"Expected numpy array, got {type(arr).__name__}")
        if arr.ndim != 3 or arr.shape[2] != 4:
            raise InvalidInputError(f"Expected (height, width, 4) array, got shape {arr.shape}")
        if arr.shape[0] < 1 or arr.shape[1] < 1:
            raise InvalidInputError(f"Buffer must be at least 1x1, got {arr.shape[1]}x{arr.shape[0]}")
        if arr.dtype != np.uint8:
            raise InvalidInputError(f"Expected uint8 samples, got {arr.dtype}")

    @classmethod
    def blank(cls, width: int, height: int, color: Tuple[int, int, int, int] = (0, 0, 0, 255)) -> "PixelBuffer":
        """Create a buffer filled with a single RGBA color."""
        if width < 1 or height < 1:
            raise InvalidInputError(f"Buffer must be at least 1x1, got {width}x{height}")
        arr = np.empty((height, width, 4), dtype=np.uint8)
        arr[:] = color
        return cls(arr)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "PixelBuffer":
        """Build a buffer from an (h, w), (h, w, 3) or (h, w, 4) array.

        Values are clipped into [0, 255]. Missing alpha becomes opaque.
        The input array is never shared with the result.
        """
        arr = np.asarray(arr)
        if arr.ndim == 2:
            arr = np.repeat(arr[:, :, np.newaxis], 3, axis=2)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise InvalidInputError(f"Unsupported array shape {arr.shape}")
        if arr.dtype != np.uint8:
            arr = np.clip(arr, 0, 255).astype(np.uint8)
        if arr.shape[2] == 3:
            alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate([arr, alpha], axis=2)
        return cls(np.ascontiguousarray(arr).copy())

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def rgb(self) -> np.ndarray:
        """View of the color channels."""
        return self.data[:, :, :3]

    @property
    def alpha(self) -> np.ndarray:
        """View of the alpha channel."""
        return self.data[:, :, 3]

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.data.copy())

    def equals(self, other: "PixelBuffer") -> bool:
        """Byte-for-byte equality, including dimensions."""
        return self.data.shape == other.data.shape and np.array_equal(self.data, other.data)


@dataclasses.dataclass
class HistogramStats:
    """Per-channel 256-bucket frequency counts."""
    r: List[int]
    g: List[int]
    b: List[int]
    luma: List[int]

    @property
    def total(self) -> int:
        return sum(self.luma)


@dataclasses.dataclass(frozen=True)
class RgbOffset:
    """Independent additive offsets, each in [-100, 100]."""
    r: float = 0.0
    g: float = 0.0
    b: float = 0.0

    def is_neutral(self) -> bool:
        return self.r == 0 and self.g == 0 and self.b == 0


@dataclasses.dataclass(frozen=True)
class Equalization:
    """Histogram equalization strength in [0, 100] and mode."""
    strength: float = 0.0
    mode: EqualizationMode = EqualizationMode.LUMINANCE

    def is_neutral(self) -> bool:
        return self.strength <= 0


@dataclasses.dataclass(frozen=True)
class AdjustmentState:
    """What the user currently wants, one field per operator.

    Every default is the operator's neutral value. Instances are immutable;
    use ``dataclasses.replace`` to derive a new state.
    """
    brightness: float = 0.0
    contrast: float = 0.0
    saturation: float = 0.0
    rgb_offset: RgbOffset = RgbOffset()
    grayscale: bool = False
    invert: bool = False
    blur: float = 0.0
    sharpen: float = 0.0
    equalization: Equalization = Equalization()
    median: int = 0
    gaussian: float = 0.0
    laplacian: bool = False
    edge_detection: EdgeDetector = EdgeDetector.NONE

    def is_neutral(self) -> bool:
        return (
            self.brightness == 0
            and self.contrast == 0
            and self.saturation == 0
            and self.rgb_offset.is_neutral()
            and not self.grayscale
            and not self.invert
            and self.blur <= 0
            and self.sharpen <= 0
            and self.equalization.is_neutral()
            and self.median <= 0
            and self.gaussian <= 0
            and not self.laplacian
            and self.edge_detection == EdgeDetector.NONE
        )


@dataclasses.dataclass
class HistoryEntry:
    """A materialized buffer plus the adjustments that produced it."""
    buffer: PixelBuffer
    adjustments: Optional[AdjustmentState] = None
    timestamp: float = dataclasses.field(default_factory=time.time)

    def copy(self) -> "HistoryEntry":
        # AdjustmentState is frozen, so sharing it is safe
        return HistoryEntry(self.buffer.copy(), self.adjustments, self.timestamp)


@dataclasses.dataclass(frozen=True)
class HistoryInfo:
    """Summary for undo/redo buttons. ``current`` is 1-based, 0 when empty."""
    total: int
    current: int
    can_undo: bool
    can_redo: bool
