"""
GIF89a encoding of merged RGBA frames.

All frames share one color table built by median-cut quantization over a
sample of the sequence. Frames are mapped onto that table here and written
by Pillow's GIF plugin with disposal method 1, so viewers never clear
between frames. Pillow folds a frame that repeats the previous one into it
and adds the delays together; playback time is unchanged.
"""

import logging
import math
import time
from io import BytesIO
from typing import Callable, List, Optional, Sequence, Tuple

from PIL import Image

from .compositor import MergedSequence
from .config import PALETTE_SAMPLE_PIXELS
from .errors import EncodeError, JobCancelledError, PaletteOverflowError
from .imaging import TRANSPARENCY_KEY

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int]

MAX_COLORS = 256
DISPOSE_KEEP = 1
ALPHA_THRESHOLD = 128


def frame_delay_cs(frame_interval_ms: int) -> int:
    """Convert an output interval to GIF centiseconds, rounding half up."""
    return max(1, int(frame_interval_ms / 10 + 0.5))


def _sample_frames(frames: Sequence[Image.Image]) -> List[Image.Image]:
    width, height = frames[0].size
    total_pixels = width * height * len(frames)
    step = max(1, math.ceil(total_pixels / PALETTE_SAMPLE_PIXELS))
    return list(frames[::step])


def _opaque_rgb(frame: Image.Image) -> Optional[Image.Image]:
    """
    RGB copy of ``frame`` with see-through pixels painted in an opaque color.

    Pixels that will become the transparency index must not claim a palette
    entry of their own, so they take the color of the first opaque pixel.
    Returns None when the frame has no opaque pixel at all.
    """
    rgb = frame.convert("RGB")
    if frame.mode != "RGBA":
        return rgb
    opaque = Image.eval(frame.getchannel("A"), lambda a: 255 if a >= ALPHA_THRESHOLD else 0)
    box = opaque.getbbox()
    if box is None:
        return None
    left, top, right, _bottom = box
    row_box = opaque.crop((left, top, right, top + 1)).getbbox()
    filler = rgb.getpixel((left + row_box[0], top))
    rgb.paste(filler, mask=Image.eval(opaque, lambda a: 255 - a))
    return rgb


def build_palette(
    frames: Sequence[Image.Image],
    requires_transparency: bool = False,
    palette: Optional[Sequence[Color]] = None,
) -> List[Color]:
    """
    Choose the global color table for a frame sequence.

    Args:
        frames: RGBA frames, all the same size
        requires_transparency: Reserve one table slot for the transparency index
            and leave see-through pixels out of the sample
        palette: Caller-supplied colors; used as-is when given

    Returns:
        List of RGB colors, at most 255 when transparency is required, else 256

    Raises:
        PaletteOverflowError: The palette does not fit or quantization failed
    """
    max_colors = MAX_COLORS - 1 if requires_transparency else MAX_COLORS
    if palette is not None:
        colors = [tuple(color) for color in palette]
        if not colors:
            raise PaletteOverflowError("Palette is empty")
        if len(colors) > max_colors:
            raise PaletteOverflowError(f"Palette has {len(colors)} colors; at most {max_colors} fit")
        for color in colors:
            if len(color) != 3 or any(not 0 <= channel <= 255 for channel in color):
                raise ValueError(f"Invalid palette color: {color}")
        return colors

    sampled = _sample_frames(frames)
    if requires_transparency:
        prepared = [rgb for rgb in (_opaque_rgb(frame) for frame in sampled) if rgb is not None]
    else:
        prepared = [frame.convert("RGB") for frame in sampled]
    if not prepared:
        # nothing visible; every pixel maps to the transparency index
        return [(0, 0, 0)]

    width, height = prepared[0].size
    strip = Image.new("RGB", (width, height * len(prepared)))
    for row, rgb in enumerate(prepared):
        strip.paste(rgb, (0, row * height))
    try:
        quantized = strip.quantize(colors=max_colors, method=Image.Quantize.MEDIANCUT, dither=Image.Dither.NONE)
    except (ValueError, OSError) as exc:
        raise PaletteOverflowError(f"Quantization failed: {exc}") from exc
    finally:
        strip.close()

    flat = quantized.getpalette() or []
    # only entries that some pixel actually uses carry information
    used = max(index for _count, index in quantized.getcolors(MAX_COLORS)) + 1
    colors = [tuple(flat[i:i + 3]) for i in range(0, min(len(flat), used * 3), 3)]
    if not colors or len(colors) > max_colors:
        raise PaletteOverflowError(f"Quantizer produced {len(colors)} colors; at most {max_colors} fit")
    logger.debug("Built %d-color palette from %d sampled frames", len(colors), len(prepared))
    return colors


class FrameMapper:
    """Maps RGBA frames onto a fixed palette without dithering."""

    def __init__(self, palette: Sequence[Color], transparent_index: Optional[int] = None):
        self.palette = list(palette)
        self.transparent_index = transparent_index
        count = len(self.palette)
        # Pillow may map to any of the 256 slots; repeat the colors so every
        # slot is a real color, then fold the index back below ``count``
        padded = [self.palette[i % count] for i in range(MAX_COLORS)]
        self._palette_image = Image.new("P", (1, 1))
        self._palette_image.putpalette([channel for color in padded for channel in color])
        self._fold = bytes(i % count for i in range(MAX_COLORS))

        table = list(self.palette)
        if transparent_index is not None:
            table.append(TRANSPARENCY_KEY)
        self._table = [channel for color in table for channel in color]

    def map(self, frame: Image.Image) -> Image.Image:
        """Return ``frame`` as a P image on the shared table."""
        rgb = frame.convert("RGB")
        mapped = rgb.quantize(palette=self._palette_image, dither=Image.Dither.NONE)
        indexed = Image.frombytes("P", frame.size, mapped.tobytes().translate(self._fold))
        indexed.putpalette(self._table)
        if self.transparent_index is not None and frame.mode == "RGBA":
            mask = Image.eval(frame.getchannel("A"), lambda a: 255 if a < ALPHA_THRESHOLD else 0)
            indexed.paste(self.transparent_index, mask=mask)
        return indexed


def encode(
    merged: MergedSequence,
    frame_interval_ms: int,
    *,
    palette: Optional[Sequence[Color]] = None,
    loop: int = 0,
    on_frame: Optional[Callable[[int, int], None]] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> bytes:
    """
    Encode a merged sequence as an animated GIF.

    Args:
        merged: Frames from the compositor
        frame_interval_ms: Delay applied to every frame
        palette: Optional fixed RGB palette
        loop: Netscape loop count, 0 loops forever
        on_frame: Called with (frames mapped, total) after each frame
        should_cancel: Polled before palette building, before each frame
            and before the file is written

    Returns:
        The complete GIF file as bytes
    """
    if not merged.frames:
        raise EncodeError("No frames to encode.")
    if frame_interval_ms <= 0:
        raise ValueError("frame_interval_ms must be > 0")

    def check_cancel(done: int) -> None:
        if should_cancel is not None and should_cancel():
            raise JobCancelledError(f"Cancelled after encoding {done} of {total} frames")

    started = time.perf_counter()
    total = len(merged.frames)
    check_cancel(0)

    colors = build_palette(merged.frames, merged.requires_transparency, palette)
    transparent_index = len(colors) if merged.requires_transparency else None
    mapper = FrameMapper(colors, transparent_index)

    indexed_frames: List[Image.Image] = []
    for index, frame in enumerate(merged.frames):
        check_cancel(index)
        indexed_frames.append(mapper.map(frame))
        if on_frame is not None:
            on_frame(index + 1, total)
    check_cancel(total)

    save_options = {}
    if transparent_index is not None:
        save_options["transparency"] = transparent_index

    output = BytesIO()
    first_frame = indexed_frames[0]
    # Pillow truncates to whole centiseconds, so hand it a rounded value
    first_frame.save(
        output,
        format="GIF",
        save_all=True,
        append_images=indexed_frames[1:],
        duration=frame_delay_cs(frame_interval_ms) * 10,
        loop=loop,
        disposal=DISPOSE_KEEP,
        optimize=False,
        **save_options,
    )
    for indexed in indexed_frames:
        indexed.close()

    data = output.getvalue()
    logger.debug(
        "Encoded %d frames (%d colors, %d bytes) in %.2fs",
        total, len(colors), len(data), time.perf_counter() - started,
    )
    return data
