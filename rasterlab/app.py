"""Command-line front end: load an image, apply adjustments, export."""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from rasterlab.config import config
from rasterlab.errors import InvalidInputError
from rasterlab.imaging.editor import EditorSession
from rasterlab.imaging.io import generate_filename, normalize_format, EXPORT_FORMATS
from rasterlab.imaging.pipeline import Operator
from rasterlab.logging_setup import setup_logging
from rasterlab.models import EdgeDetector, EqualizationMode, HistogramStats

log = logging.getLogger(__name__)


def _summarize_histogram(stats: HistogramStats) -> str:
    lines = [f"pixels: {stats.total}"]
    for name in ("r", "g", "b", "luma"):
        counts = getattr(stats, name)
        total = sum(counts) or 1
        mean = sum(i * c for i, c in enumerate(counts)) / total
        low = next((i for i, c in enumerate(counts) if c), 0)
        high = next((i for i in range(255, -1, -1) if counts[i]), 0)
        lines.append(f"{name:>4}: min {low:3d}  max {high:3d}  mean {mean:6.1f}")
    return "\n".join(lines)


def _apply_args(session: EditorSession, args: argparse.Namespace) -> None:
    # 1. Geometry replaces the original, so it goes first
    if args.rotate:
        session.rotate(args.rotate)
    if args.flip:
        session.flip(horizontal=(args.flip == "horizontal"))
    if args.crop:
        session.crop(*args.crop)

    # 2. Adjustments, each recomposed from the (transformed) original
    if args.brightness:
        session.set_parameter(Operator.BRIGHTNESS, args.brightness)
    if args.contrast:
        session.set_parameter(Operator.CONTRAST, args.contrast)
    if args.saturation:
        session.set_parameter(Operator.SATURATION, args.saturation)
    if args.rgb:
        r, g, b = args.rgb
        session.set_parameter(Operator.RGB_OFFSET, {"r": r, "g": g, "b": b})
    if args.grayscale:
        session.set_boolean(Operator.GRAYSCALE, True)
    if args.invert:
        session.set_boolean(Operator.INVERT, True)
    if args.blur:
        session.set_parameter(Operator.BLUR, args.blur)
    if args.sharpen:
        session.set_parameter(Operator.SHARPEN, args.sharpen)
    if args.equalize:
        session.set_parameter(
            Operator.HISTOGRAM_EQUALIZATION,
            {"strength": args.equalize, "mode": args.equalize_mode},
        )
    if args.median:
        session.set_parameter(Operator.MEDIAN, args.median)
    if args.gaussian:
        session.set_parameter(Operator.GAUSSIAN_BLUR, args.gaussian)
    if args.laplacian:
        session.set_boolean(Operator.LAPLACIAN_SHARPEN, True)
    if args.edges:
        session.set_parameter(Operator.EDGE_DETECTION, args.edges)


def main(args: argparse.Namespace) -> int:
    """Run one edit described by parsed arguments. Returns the exit code."""
    t0 = time.perf_counter()
    setup_logging(args.debug)
    log.info("Starting rasterlab")

    session = EditorSession()
    try:
        session.load_file(args.input)
        _apply_args(session, args)

        if args.histogram:
            print(_summarize_histogram(session.get_histogram()))

        output = args.output
        if output is None:
            fmt = normalize_format(args.format or config.get("export", "format", fallback="PNG"))
            prefix = config.get("export", "filename_prefix", fallback="image")
            output = Path(args.input).parent / generate_filename(prefix, EXPORT_FORMATS[fmt])
        saved = session.export(output, fmt=args.format, quality=args.quality)
    except InvalidInputError as e:
        log.error(f"{e}")
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(saved)
    if args.debug:
        log.info("Finished in %.3fs", time.perf_counter() - t0)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="rasterlab - non-destructive raster image adjustments")
    parser.add_argument("input", help="Image file to edit")
    parser.add_argument("-o", "--output", help="Output file (default: timestamped file next to the input)")

    adjust = parser.add_argument_group("adjustments")
    adjust.add_argument("--brightness", type=float, default=0.0, help="-100 to 100")
    adjust.add_argument("--contrast", type=float, default=0.0, help="-100 to 100")
    adjust.add_argument("--saturation", type=float, default=0.0, help="-100 to 100")
    adjust.add_argument("--rgb", type=float, nargs=3, metavar=("R", "G", "B"), help="Per-channel offsets, -100 to 100")
    adjust.add_argument("--grayscale", action="store_true")
    adjust.add_argument("--invert", action="store_true")
    adjust.add_argument("--blur", type=float, default=0.0, help="Box blur radius")
    adjust.add_argument("--sharpen", type=float, default=0.0, help="0 to 100")
    adjust.add_argument("--equalize", type=float, default=0.0, metavar="STRENGTH", help="Histogram equalization strength, 0 to 100")
    adjust.add_argument("--equalize-mode", choices=[m.value for m in EqualizationMode], default=EqualizationMode.LUMINANCE.value)
    adjust.add_argument("--median", type=int, default=0, help="Median filter radius")
    adjust.add_argument("--gaussian", type=float, default=0.0, help="Gaussian blur sigma")
    adjust.add_argument("--laplacian", action="store_true", help="Laplacian sharpen")
    adjust.add_argument("--edges", choices=[d.value for d in EdgeDetector if d != EdgeDetector.NONE])

    geom = parser.add_argument_group("geometry (applied before adjustments)")
    geom.add_argument("--rotate", type=int, choices=[0, 90, 180, 270], default=0, help="Clockwise rotation")
    geom.add_argument("--flip", choices=["horizontal", "vertical"])
    geom.add_argument("--crop", type=int, nargs=4, metavar=("X", "Y", "W", "H"))

    out = parser.add_argument_group("output")
    out.add_argument("--format", choices=["PNG", "JPEG"], type=str.upper)
    out.add_argument("--quality", type=int, help="JPEG quality, 1 to 100")
    out.add_argument("--histogram", action="store_true", help="Print a histogram summary of the result")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and timing information")
    return parser


def cli(argv: Optional[List[str]] = None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    sys.exit(main(args))


if __name__ == "__main__":
    cli()
