"""Operator dispatch and the fixed-order compositor.

``compose`` always starts from a copy of the untouched original and re-applies
every non-neutral adjustment in COMPOSE_ORDER. Nothing is cached between
calls, so each parameter can be changed independently and rounding error
never accumulates across edits.
"""

import dataclasses
import enum
import logging
import time
from typing import Any, Dict, Mapping, Tuple, Union

from rasterlab.errors import InvalidInputError, UnknownOperatorError
from rasterlab.imaging import operators
from rasterlab.models import (
    AdjustmentState,
    BorderPolicy,
    EdgeDetector,
    Equalization,
    EqualizationMode,
    PixelBuffer,
    RgbOffset,
)

log = logging.getLogger(__name__)


class Operator(str, enum.Enum):
    """Every adjustable operator. Each maps to one AdjustmentState field."""
    BRIGHTNESS = "brightness"
    CONTRAST = "contrast"
    SATURATION = "saturation"
    RGB_OFFSET = "rgb_offset"
    GRAYSCALE = "grayscale"
    INVERT = "invert"
    BLUR = "blur"
    SHARPEN = "sharpen"
    HISTOGRAM_EQUALIZATION = "histogram_equalization"
    MEDIAN = "median"
    GAUSSIAN_BLUR = "gaussian_blur"
    LAPLACIAN_SHARPEN = "laplacian_sharpen"
    EDGE_DETECTION = "edge_detection"

    @classmethod
    def parse(cls, name: Union["Operator", str]) -> "Operator":
        """Resolve an operator from its value or a legacy UI tag."""
        if isinstance(name, cls):
            return name
        key = str(name)
        try:
            return cls(key)
        except ValueError:
            pass
        if key in LEGACY_TAGS:
            return LEGACY_TAGS[key]
        raise UnknownOperatorError(f"Unknown operator: {name!r}")


# Tags used by older front-ends
LEGACY_TAGS: Dict[str, Operator] = {
    "adjustRGB": Operator.RGB_OFFSET,
    "histogramEqualization": Operator.HISTOGRAM_EQUALIZATION,
    "medianFilter": Operator.MEDIAN,
    "gaussianBlur": Operator.GAUSSIAN_BLUR,
    "laplacianSharpen": Operator.LAPLACIAN_SHARPEN,
}

# Order matters visually (sharpening before denoising amplifies noise) and is
# part of the output contract.
COMPOSE_ORDER: Tuple[Operator, ...] = (
    Operator.BRIGHTNESS,
    Operator.CONTRAST,
    Operator.SATURATION,
    Operator.RGB_OFFSET,
    Operator.GRAYSCALE,
    Operator.INVERT,
    Operator.BLUR,
    Operator.SHARPEN,
    Operator.HISTOGRAM_EQUALIZATION,
    Operator.MEDIAN,
    Operator.GAUSSIAN_BLUR,
    Operator.LAPLACIAN_SHARPEN,
    Operator.EDGE_DETECTION,
)

STATE_FIELDS: Dict[Operator, str] = {
    Operator.BRIGHTNESS: "brightness",
    Operator.CONTRAST: "contrast",
    Operator.SATURATION: "saturation",
    Operator.RGB_OFFSET: "rgb_offset",
    Operator.GRAYSCALE: "grayscale",
    Operator.INVERT: "invert",
    Operator.BLUR: "blur",
    Operator.SHARPEN: "sharpen",
    Operator.HISTOGRAM_EQUALIZATION: "equalization",
    Operator.MEDIAN: "median",
    Operator.GAUSSIAN_BLUR: "gaussian",
    Operator.LAPLACIAN_SHARPEN: "laplacian",
    Operator.EDGE_DETECTION: "edge_detection",
}

SCALAR_OPERATORS = frozenset({
    Operator.BRIGHTNESS,
    Operator.CONTRAST,
    Operator.SATURATION,
    Operator.BLUR,
    Operator.SHARPEN,
    Operator.GAUSSIAN_BLUR,
})

BOOLEAN_OPERATORS = frozenset({
    Operator.GRAYSCALE,
    Operator.INVERT,
    Operator.LAPLACIAN_SHARPEN,
})

if set(COMPOSE_ORDER) != set(Operator) or set(STATE_FIELDS) != set(Operator):
    raise RuntimeError("Operator table out of sync with the Operator enum")


def parameter_ranges(
    max_blur_radius: float = 10.0,
    max_median_radius: int = 5,
    max_gaussian_sigma: float = 5.0,
) -> Dict[Operator, Tuple[float, float]]:
    """Inclusive (low, high) bounds for every numeric parameter.

    RGB_OFFSET bounds apply to each channel and HISTOGRAM_EQUALIZATION bounds
    to the strength.
    """
    return {
        Operator.BRIGHTNESS: (-100.0, 100.0),
        Operator.CONTRAST: (-100.0, 100.0),
        Operator.SATURATION: (-100.0, 100.0),
        Operator.RGB_OFFSET: (-100.0, 100.0),
        Operator.BLUR: (0.0, float(max_blur_radius)),
        Operator.SHARPEN: (0.0, 100.0),
        Operator.HISTOGRAM_EQUALIZATION: (0.0, 100.0),
        Operator.MEDIAN: (0, int(max_median_radius)),
        Operator.GAUSSIAN_BLUR: (0.0, float(max_gaussian_sigma)),
    }


PARAMETER_RANGES = parameter_ranges()


def _number(op: Operator, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"{op.value} expects a number, got {value!r}")
    return float(value)


def coerce_params(op: Union[Operator, str], params: Any) -> Any:
    """Validate a payload and convert it to the type stored in AdjustmentState.

    Multi-field operators require every sub-field so that changing one never
    silently resets the other.
    """
    op = Operator.parse(op)

    if op in SCALAR_OPERATORS:
        return _number(op, params)

    if op in BOOLEAN_OPERATORS:
        if not isinstance(params, bool):
            raise InvalidInputError(f"{op.value} expects a bool, got {params!r}")
        return params

    if op == Operator.MEDIAN:
        return int(round(_number(op, params)))

    if op == Operator.RGB_OFFSET:
        if isinstance(params, RgbOffset):
            return params
        if isinstance(params, Mapping):
            missing = {"r", "g", "b"} - set(params)
            if missing:
                raise InvalidInputError(f"rgb_offset is missing {sorted(missing)}")
            values = (params["r"], params["g"], params["b"])
        elif isinstance(params, (tuple, list)) and len(params) == 3:
            values = tuple(params)
        else:
            raise InvalidInputError(f"rgb_offset expects r, g and b, got {params!r}")
        r, g, b = (_number(op, v) for v in values)
        return RgbOffset(r, g, b)

    if op == Operator.HISTOGRAM_EQUALIZATION:
        if isinstance(params, Equalization):
            return Equalization(_number(op, params.strength), EqualizationMode(params.mode))
        if isinstance(params, Mapping):
            missing = {"strength", "mode"} - set(params)
            if missing:
                raise InvalidInputError(f"histogram_equalization is missing {sorted(missing)}")
            strength, mode = params["strength"], params["mode"]
        elif isinstance(params, (tuple, list)) and len(params) == 2:
            strength, mode = params
        else:
            raise InvalidInputError(f"histogram_equalization expects strength and mode, got {params!r}")
        try:
            mode = EqualizationMode(mode)
        except ValueError:
            raise InvalidInputError(f"Unknown equalization mode: {mode!r}")
        return Equalization(_number(op, strength), mode)

    if op == Operator.EDGE_DETECTION:
        try:
            return EdgeDetector(params)
        except ValueError:
            raise InvalidInputError(f"Unknown edge detector: {params!r}")

    raise UnknownOperatorError(f"Unhandled operator: {op!r}")


def clamp_params(op: Operator, value: Any, ranges: Mapping[Operator, Tuple[float, float]] = PARAMETER_RANGES) -> Any:
    """Clamp a coerced payload into its range. Non-numeric payloads pass through."""
    if op not in ranges:
        return value
    low, high = ranges[op]

    def clamp(v):
        return min(high, max(low, v))

    if op == Operator.RGB_OFFSET:
        return RgbOffset(clamp(value.r), clamp(value.g), clamp(value.b))
    if op == Operator.HISTOGRAM_EQUALIZATION:
        return Equalization(clamp(value.strength), value.mode)
    if op == Operator.MEDIAN:
        return int(clamp(value))
    return clamp(value)


def get_param(state: AdjustmentState, op: Operator) -> Any:
    return getattr(state, STATE_FIELDS[op])


def with_param(state: AdjustmentState, op: Operator, value: Any) -> AdjustmentState:
    return dataclasses.replace(state, **{STATE_FIELDS[op]: value})


def is_neutral(op: Operator, value: Any) -> bool:
    """True when applying ``op`` with ``value`` cannot change any pixel."""
    if op in BOOLEAN_OPERATORS:
        return not value
    if op in (Operator.BRIGHTNESS, Operator.CONTRAST, Operator.SATURATION):
        return value == 0
    if op in (Operator.BLUR, Operator.SHARPEN, Operator.MEDIAN, Operator.GAUSSIAN_BLUR):
        return value <= 0
    if op in (Operator.RGB_OFFSET, Operator.HISTOGRAM_EQUALIZATION):
        return value.is_neutral()
    if op == Operator.EDGE_DETECTION:
        return EdgeDetector(value) == EdgeDetector.NONE
    raise UnknownOperatorError(f"Unhandled operator: {op!r}")


def active_operators(state: AdjustmentState) -> Tuple[Operator, ...]:
    """Operators compose() would run for this state, in order."""
    return tuple(op for op in COMPOSE_ORDER if not is_neutral(op, get_param(state, op)))


def apply_operator(
    buffer: PixelBuffer,
    op: Union[Operator, str],
    value: Any,
    border: Union[BorderPolicy, str] = BorderPolicy.CLAMP,
) -> PixelBuffer:
    """Run a single operator with an already-coerced payload."""
    op = Operator.parse(op)
    if op == Operator.BRIGHTNESS:
        return operators.brightness(buffer, value)
    if op == Operator.CONTRAST:
        return operators.contrast(buffer, value)
    if op == Operator.SATURATION:
        return operators.saturation(buffer, value)
    if op == Operator.RGB_OFFSET:
        return operators.rgb_offset(buffer, value.r, value.g, value.b)
    if op == Operator.GRAYSCALE:
        return operators.grayscale(buffer, value)
    if op == Operator.INVERT:
        return operators.invert(buffer, value)
    if op == Operator.BLUR:
        return operators.box_blur(buffer, value)
    if op == Operator.SHARPEN:
        return operators.sharpen(buffer, value, border=border)
    if op == Operator.HISTOGRAM_EQUALIZATION:
        return operators.histogram_equalization(buffer, value.strength, value.mode)
    if op == Operator.MEDIAN:
        return operators.median_filter(buffer, value, border=border)
    if op == Operator.GAUSSIAN_BLUR:
        return operators.gaussian_blur(buffer, value, border=border)
    if op == Operator.LAPLACIAN_SHARPEN:
        return operators.laplacian_sharpen(buffer, value, border=border)
    if op == Operator.EDGE_DETECTION:
        return operators.detect_edges(buffer, value, border=border)
    raise UnknownOperatorError(f"Unhandled operator: {op!r}")


def compose(
    original: PixelBuffer,
    state: AdjustmentState,
    border: Union[BorderPolicy, str] = BorderPolicy.CLAMP,
) -> PixelBuffer:
    """Derive the displayed buffer from the original and the adjustment state."""
    t0 = time.perf_counter()
    result = original.copy()
    applied = []
    for op in COMPOSE_ORDER:
        value = get_param(state, op)
        if is_neutral(op, value):
            continue
        result = apply_operator(result, op, value, border=border)
        applied.append(op.value)
    elapsed = (time.perf_counter() - t0) * 1000
    log.debug(f"Composed {result.width}x{result.height} with [{', '.join(applied)}] in {elapsed:.1f} ms")
    return result
