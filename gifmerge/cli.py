import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .compositor import natural_canvas_size, total_frame_count
from .config import MAX_FRAMES_WITHOUT_CONFIRM, MAX_INPUT_FILES
from .decoder import decode_gif
from .errors import DecodeError, GifMergeError
from .models import DecodedAnimation
from .options import DEFAULT_OPTIONS, MergeOptions, parse_color, parse_size
from .pipeline import MergePipeline
from .watermark import LAYER_NAMES, TilingMode, Watermark

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_arguments(argv: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Merge GIF animations side by side or one after another, with optional "
            "image and text watermarks."
        )
    )
    parser.add_argument(
        "inputs",
        type=Path,
        nargs="+",
        help=f"GIF files to merge, in display order (at most {MAX_INPUT_FILES}).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("merged.gif"),
        help="Output GIF path (defaults to merged.gif in the current directory).",
    )

    layout = parser.add_argument_group("layout")
    layout.add_argument(
        "--mode",
        choices=["grid", "sequence"],
        default=DEFAULT_OPTIONS.mode.value,
        help="Play inputs side by side (grid) or one after another (sequence).",
    )
    layout.add_argument(
        "--background",
        choices=["transparent", "original", "white", "black"],
        default=DEFAULT_OPTIONS.background.value,
        help=f"Canvas background (default: {DEFAULT_OPTIONS.background.value}).",
    )
    layout.add_argument(
        "--columns",
        type=int,
        default=None,
        help="Grid columns (default: ceil(sqrt(number of inputs))).",
    )
    layout.add_argument(
        "--interval",
        type=int,
        default=DEFAULT_OPTIONS.frame_interval_ms,
        help=f"Output frame delay in milliseconds (default: {DEFAULT_OPTIONS.frame_interval_ms}).",
    )
    size = layout.add_mutually_exclusive_group()
    size.add_argument(
        "--size",
        type=str,
        default=None,
        help="Output size formatted as WIDTHxHEIGHT (default: natural composite size).",
    )
    size.add_argument("--width", type=int, default=None, help="Output width in pixels.")
    size.add_argument("--height", type=int, default=None, help="Output height in pixels.")
    layout.add_argument(
        "--no-lock-aspect",
        action="store_true",
        help="Do not derive the other edge from --width/--height.",
    )
    layout.add_argument(
        "--interpolation",
        choices=["nearest", "bilinear"],
        default=DEFAULT_OPTIONS.interpolation.value,
        help="Resampling used when the output size differs from the natural size.",
    )
    layout.add_argument(
        "--loop",
        type=int,
        default=DEFAULT_OPTIONS.loop,
        help="How many times to loop the animation (0 = infinite).",
    )

    marks = parser.add_argument_group("watermarks")
    marks.add_argument(
        "--image-watermark",
        type=Path,
        action="append",
        default=[],
        metavar="PNG",
        help="PNG image to overlay. May be repeated.",
    )
    marks.add_argument(
        "--text-watermark",
        action="append",
        default=[],
        metavar="TEXT",
        help="Text to overlay. May be repeated.",
    )
    marks.add_argument("--wm-position", default="0,0", metavar="X,Y", help="Top-left of the watermark box.")
    marks.add_argument("--wm-rotation", type=float, default=0.0, metavar="DEG", help="Clockwise rotation in degrees.")
    marks.add_argument("--wm-opacity", type=float, default=1.0, metavar="F", help="Opacity from 0 to 1.")
    marks.add_argument(
        "--wm-layer",
        default="above",
        metavar="N",
        help="Layer order: negative sits below the frames. Accepts 'above' and 'below'.",
    )
    marks.add_argument(
        "--wm-tiling",
        choices=[mode.value for mode in TilingMode],
        default=TilingMode.DIRECT.value,
        help="Place once (direct), cover the canvas (fill) or tile (repeat).",
    )
    marks.add_argument(
        "--wm-target",
        default=None,
        metavar="INDEX,...",
        help="Limit watermarks to these inputs (1-based). Default: all inputs.",
    )
    marks.add_argument("--wm-color", default="#000000", metavar="COLOR", help="Text color.")
    marks.add_argument("--wm-font", default="DejaVuSans", metavar="FAMILY", help="Text font family.")
    marks.add_argument("--wm-font-size", type=int, default=24, metavar="PX", help="Text size in pixels.")
    marks.add_argument("--wm-bold", action="store_true", help="Bold text.")
    marks.add_argument("--wm-italic", action="store_true", help="Italic text.")

    parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Skip confirmation prompt for large frame counts.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    return parser.parse_args(argv)


def resolve_unique_path(path: Path) -> Path:
    if not path.exists():
        return path
    stem = path.stem
    suffix = path.suffix
    index = 1
    while True:
        candidate = path.with_name(f"{stem}-{index}{suffix}")
        if not candidate.exists():
            return candidate
        index += 1


def parse_position(text: str) -> Tuple[float, float]:
    try:
        x_text, y_text = text.split(",", maxsplit=1)
        return float(x_text), float(y_text)
    except ValueError as exc:
        raise ValueError(f"Position must be X,Y (e.g., 10,20). Got: {text}") from exc


def parse_layer(text: str) -> int:
    if text in LAYER_NAMES:
        return LAYER_NAMES[text]
    try:
        return int(text)
    except ValueError as exc:
        raise ValueError(f"Layer must be an integer, 'above' or 'below'. Got: {text}") from exc


def parse_targets(text: Optional[str], animations: Sequence[DecodedAnimation]) -> Optional[frozenset]:
    if not text:
        return None
    targets = set()
    for part in text.split(","):
        try:
            index = int(part)
        except ValueError as exc:
            raise ValueError(f"Watermark targets must be input numbers. Got: {part}") from exc
        if not 1 <= index <= len(animations):
            raise ValueError(f"Watermark target {index} is out of range (1..{len(animations)})")
        targets.add(animations[index - 1].id)
    return frozenset(targets)


def load_inputs(paths: Sequence[Path]) -> List[DecodedAnimation]:
    if len(paths) > MAX_INPUT_FILES:
        raise ValueError(f"At most {MAX_INPUT_FILES} input files are supported, got {len(paths)}")
    animations = []
    for position, path in enumerate(paths):
        if not path.is_file():
            raise FileNotFoundError(f"Input file not found: {path}")
        try:
            animations.append(decode_gif(path.read_bytes(), name=path.name, animation_id=str(position)))
        except DecodeError as exc:
            raise type(exc)(f"{path.name}: {exc}") from exc
    return animations


def build_options(args: argparse.Namespace, animations: Sequence[DecodedAnimation]) -> MergeOptions:
    options = MergeOptions(
        mode=args.mode,
        background=args.background,
        columns=args.columns,
        frame_interval_ms=args.interval,
        lock_aspect_ratio=not args.no_lock_aspect,
        interpolation=args.interpolation,
        loop=args.loop,
    )
    natural = natural_canvas_size(animations, options)
    if args.size:
        width, height = parse_size(args.size)
        return replace(options, target_width=width, target_height=height)
    if args.width is not None:
        return options.with_target_width(args.width, natural)
    if args.height is not None:
        return options.with_target_height(args.height, natural)
    return options


def build_watermarks(args: argparse.Namespace, animations: Sequence[DecodedAnimation]) -> List[Watermark]:
    common = dict(
        position=parse_position(args.wm_position),
        rotation_degrees=args.wm_rotation,
        opacity=args.wm_opacity,
        layer_order=parse_layer(args.wm_layer),
        tiling_mode=args.wm_tiling,
        target=parse_targets(args.wm_target, animations),
    )
    watermarks = []
    for path in args.image_watermark:
        if not path.is_file():
            raise FileNotFoundError(f"Watermark image not found: {path}")
        watermarks.append(Watermark.from_png(path.read_bytes(), **common))
    for text in args.text_watermark:
        watermarks.append(Watermark.from_text(
            text,
            font_family=args.wm_font,
            font_size=args.wm_font_size,
            font_weight="bold" if args.wm_bold else "normal",
            font_style="italic" if args.wm_italic else "normal",
            color=parse_color(args.wm_color),
            **common,
        ))
    return watermarks


def print_progress(percent: int, label: str) -> None:
    print(f"\r{percent:3d}% {label}", end="", file=sys.stderr, flush=True)


def main(argv: Optional[Iterable[str]] = None) -> int:
    try:
        args = parse_arguments(argv)
        logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format=LOG_FORMAT)

        animations = load_inputs(args.inputs)
        options = build_options(args, animations)
        watermarks = build_watermarks(args, animations)

        frame_count = total_frame_count(animations, options.mode)
        if frame_count > MAX_FRAMES_WITHOUT_CONFIRM and not args.yes:
            print(f"This will generate {frame_count} frames.")
            response = input("Continue? [y/N] ").strip().lower()
            if response not in ("y", "yes"):
                print("Aborted.")
                return 0

        pipeline = MergePipeline(options, watermarks, on_progress=print_progress)
        data = pipeline.run(animations)
        print(file=sys.stderr)

        final_output = resolve_unique_path(args.output)
        final_output.parent.mkdir(parents=True, exist_ok=True)
        final_output.write_bytes(data)
        if final_output != args.output:
            print(
                "Existing file detected. Saved new animation as"
                f" {final_output} instead."
            )
        print(f"Created GIF with {frame_count} frames at {final_output}")
        return 0
    except FileNotFoundError as not_found_err:
        print(f"Error: {not_found_err}", file=sys.stderr)
    except (ValueError, GifMergeError) as value_err:
        print(f"Error: {value_err}", file=sys.stderr)
    except Exception as unexpected_err:  # noqa: BLE001
        print(f"Unexpected error: {unexpected_err}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
