"""
GIF decoding into fully accumulated RGBA frames.

The container is walked block by block. Every image block is decompressed
into a patch, which is drawn onto a single logical-screen canvas after the
previous frame's disposal method has been applied. Each emitted frame is an
independent copy of that canvas.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Iterator, List, Optional

from PIL import Image

from . import lzw
from .config import DEFAULT_FRAME_DELAY_MS, MAX_INPUT_SIZE_MB, MIN_FRAME_DELAY_MS
from .errors import EmptyAnimationError, InputTooLargeError, MalformedContainerError
from .imaging import alpha_composite_at, clear_box, new_canvas
from .models import DecodedAnimation, Frame, generate_id, has_transparency

logger = logging.getLogger(__name__)

IMAGE_SEPARATOR = 0x2C
EXTENSION_INTRODUCER = 0x21
TRAILER = 0x3B
GRAPHIC_CONTROL_LABEL = 0xF9

DISPOSE_NONE = 0
DISPOSE_KEEP = 1
DISPOSE_BACKGROUND = 2
DISPOSE_PREVIOUS = 3


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    @property
    def at_end(self) -> bool:
        return self.pos >= len(self.data)

    def read(self, length: int) -> bytes:
        end = self.pos + length
        if end > len(self.data):
            raise MalformedContainerError("Unexpected end of file.")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def byte(self) -> int:
        return self.read(1)[0]

    def subblocks(self) -> bytes:
        # data sub-blocks, terminated by a zero-length block
        chunks = []
        size = self.byte()
        while size:
            chunks.append(self.read(size))
            size = self.byte()
        return b"".join(chunks)


@dataclass
class _GraphicControl:
    disposal: int = DISPOSE_NONE
    delay_cs: int = 0
    transparent_index: Optional[int] = None


@dataclass
class _Patch:
    left: int
    top: int
    image: Image.Image
    disposal: int
    delay_ms: int

    @property
    def box(self):
        return (self.left, self.top, self.left + self.image.width, self.top + self.image.height)


def _color_table_size(packed: int) -> int:
    return 2 << (packed & 0b111)


def _deinterlace(indices: bytes, width: int, height: int) -> bytes:
    # rows are stored in four passes: 0,8,16.. / 4,12.. / 2,6,10.. / 1,3,5..
    order = (
        list(range(0, height, 8))
        + list(range(4, height, 8))
        + list(range(2, height, 4))
        + list(range(1, height, 2))
    )
    rows: List[bytes] = [b""] * height
    for source_row, target_row in enumerate(order):
        rows[target_row] = indices[source_row * width:(source_row + 1) * width]
    return b"".join(rows)


def _frame_delay_ms(delay_cs: int) -> int:
    delay = delay_cs * 10 or DEFAULT_FRAME_DELAY_MS
    return max(delay, MIN_FRAME_DELAY_MS)


def _read_graphic_control(block: bytes) -> _GraphicControl:
    if len(block) < 4:
        raise MalformedContainerError("Graphic control extension is too short.")
    packed, delay_cs, transparent_index = struct.unpack("<BHB", block[:4])
    disposal = (packed >> 2) & 0b111
    if disposal > DISPOSE_PREVIOUS:
        disposal = DISPOSE_NONE
    return _GraphicControl(
        disposal=disposal,
        delay_cs=delay_cs,
        transparent_index=transparent_index if packed & 0b1 else None,
    )


def _read_patch(reader: _Reader, global_table: Optional[bytes], control: _GraphicControl) -> _Patch:
    left, top, width, height, packed = struct.unpack("<4HB", reader.read(9))
    if width == 0 or height == 0:
        raise MalformedContainerError("Image area is zero.")

    color_table = global_table
    if packed & 0b10000000:
        color_table = reader.read(_color_table_size(packed) * 3)
    if color_table is None:
        raise MalformedContainerError("No color table for image.")

    min_code_size = reader.byte()
    if not 2 <= min_code_size <= 11:
        raise MalformedContainerError(f"Invalid LZW minimum code size: {min_code_size}")
    compressed = reader.subblocks()

    try:
        indices = lzw.decode(compressed, min_code_size)
    except lzw.LZWError as exc:
        raise MalformedContainerError(str(exc)) from exc
    pixel_count = width * height
    if len(indices) < pixel_count:
        raise MalformedContainerError(
            f"Image data truncated: {len(indices)} of {pixel_count} pixels."
        )
    indices = bytes(indices[:pixel_count])
    if packed & 0b01000000:
        indices = _deinterlace(indices, width, height)

    patch = Image.frombytes("P", (width, height), indices)
    patch.putpalette(color_table.ljust(768, b"\x00")[:768])
    if control.transparent_index is not None:
        patch.info["transparency"] = control.transparent_index
    return _Patch(
        left=left,
        top=top,
        image=patch.convert("RGBA"),
        disposal=control.disposal,
        delay_ms=_frame_delay_ms(control.delay_cs),
    )


def _iter_patches(reader: _Reader, global_table: Optional[bytes]) -> Iterator[_Patch]:
    control = _GraphicControl()
    while True:
        if reader.at_end:
            logger.debug("GIF ended without trailer")
            return
        introducer = reader.byte()
        if introducer == TRAILER:
            return
        if introducer == EXTENSION_INTRODUCER:
            label = reader.byte()
            block = reader.subblocks()
            if label == GRAPHIC_CONTROL_LABEL:
                control = _read_graphic_control(block)
            else:
                logger.debug("Skipping extension 0x%02x (%d bytes)", label, len(block))
        elif introducer == IMAGE_SEPARATOR:
            yield _read_patch(reader, global_table, control)
            # a graphic control extension applies to the next image only
            control = _GraphicControl()
        elif introducer == 0x00:
            # stray block terminator left by some encoders
            continue
        else:
            raise MalformedContainerError(f"Invalid block type 0x{introducer:02x}.")


def decode_gif(data: bytes, *, name: str = "", animation_id: Optional[str] = None) -> DecodedAnimation:
    """
    Decode GIF bytes into a DecodedAnimation.

    Args:
        data: Raw GIF file bytes
        name: Display label used in log messages
        animation_id: Identifier for watermark targeting; generated when omitted

    Returns:
        The decoded animation with accumulated full-canvas frames

    Raises:
        MalformedContainerError: Header or block structure is invalid before any frame decoded
        EmptyAnimationError: The file contains no decodable frame
        InputTooLargeError: The input exceeds MAX_INPUT_SIZE_MB
    """
    label = name or "<gif>"
    if len(data) > MAX_INPUT_SIZE_MB * 1024 * 1024:
        raise InputTooLargeError(f"File exceeds {MAX_INPUT_SIZE_MB}MB.")

    reader = _Reader(data)
    signature = reader.read(6)
    if signature[:3] != b"GIF":
        raise MalformedContainerError("Not a GIF file.")
    if signature[3:] not in (b"87a", b"89a"):
        logger.warning("%s: unknown GIF version %r", label, signature[3:])

    width, height, packed, _background, _aspect = struct.unpack("<2H3B", reader.read(7))
    if width == 0 or height == 0:
        raise MalformedContainerError("Logical screen has zero area.")
    global_table = None
    if packed & 0b10000000:
        global_table = reader.read(_color_table_size(packed) * 3)

    canvas = new_canvas((width, height))
    frames: List[Frame] = []
    # canvas state before frame i was drawn; only kept for disposal method 3
    snapshots: List[Optional[Image.Image]] = []
    previous: Optional[_Patch] = None
    patches = _iter_patches(reader, global_table)

    while True:
        try:
            patch = next(patches, None)
        except MalformedContainerError as exc:
            if not frames:
                raise
            logger.warning("%s: dropping corrupt frame %d: %s", label, len(frames), exc)
            break
        if patch is None:
            break

        if previous is not None:
            if previous.disposal == DISPOSE_BACKGROUND:
                clear_box(canvas, previous.box)
            elif previous.disposal == DISPOSE_PREVIOUS:
                snapshot = snapshots[-1]
                canvas = snapshot if snapshot is not None else new_canvas((width, height))
                snapshots[-1] = None

        snapshots.append(canvas.copy() if patch.disposal == DISPOSE_PREVIOUS else None)
        alpha_composite_at(canvas, patch.image, (patch.left, patch.top))
        frames.append(Frame(pixels=canvas.copy(), delay_ms=patch.delay_ms, disposal=patch.disposal))
        previous = patch

    if not frames:
        raise EmptyAnimationError("No frames could be decoded.")

    logger.debug("%s: decoded %d frames at %dx%d", label, len(frames), width, height)
    return DecodedAnimation(
        width=width,
        height=height,
        frames=tuple(frames),
        has_transparency=any(has_transparency(frame.pixels) for frame in frames),
        id=animation_id or generate_id(),
        name=name,
    )
