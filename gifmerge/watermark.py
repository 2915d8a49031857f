"""
Watermark descriptors and their rasterization.

A watermark carries exactly one payload, either an image bitmap or a styled
text run. ``rasterize`` turns it into a canvas-sized RGBA layer according to
its tiling mode, rotation and opacity.

Text drawn in ``TRANSPARENCY_KEY`` is moved to ``NUDGED_KEY_COLOR``. The encoder
writes that key into the palette slot it reserves for the transparency index;
GIF viewers key on the index, but tools that re-key the file by color would
otherwise punch holes in black text.
"""

import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from io import BytesIO
from typing import FrozenSet, Iterable, NamedTuple, Optional, Tuple, Union

from PIL import Image, ImageDraw, ImageFont

from .config import FONT_DIRS
from .imaging import TRANSPARENCY_KEY, alpha_composite_at, apply_opacity, new_canvas
from .models import generate_id
from .options import parse_color

logger = logging.getLogger(__name__)

NUDGED_KEY_COLOR = (2, 2, 2)

LAYER_NAMES = {"above": 1, "below": -1}

DEFAULT_FONT_FAMILY = "DejaVuSans"

_FONT_SUFFIXES = {
    ("normal", "normal"): ("", "-Regular"),
    ("bold", "normal"): ("-Bold", "bd"),
    ("normal", "italic"): ("-Italic", "-Oblique", "i"),
    ("bold", "italic"): ("-BoldItalic", "-BoldOblique", "bi"),
}


class TilingMode(str, Enum):
    DIRECT = "direct"
    FILL = "fill"
    REPEAT = "repeat"


class Position(NamedTuple):
    x: float
    y: float


@dataclass
class ImagePayload:
    """Decoded watermark bitmap with its intrinsic and current (scaled) size."""

    bitmap: Image.Image
    width: int = 0
    height: int = 0

    def __post_init__(self) -> None:
        if self.bitmap.mode != "RGBA":
            self.bitmap = self.bitmap.convert("RGBA")
        self.width = self.width or self.bitmap.width
        self.height = self.height or self.bitmap.height

    @property
    def intrinsic_width(self) -> int:
        return self.bitmap.width

    @property
    def intrinsic_height(self) -> int:
        return self.bitmap.height

    def resize(self, width: Optional[int] = None, height: Optional[int] = None, keep_aspect: bool = True) -> None:
        """Change the drawn size; with ``keep_aspect`` one given edge drives the other."""
        ratio = self.intrinsic_height / self.intrinsic_width
        if width is not None and height is None and keep_aspect:
            height = max(1, round(width * ratio))
        elif height is not None and width is None and keep_aspect:
            width = max(1, round(height / ratio))
        if (width is not None and width <= 0) or (height is not None and height <= 0):
            raise ValueError("Watermark dimensions must be positive")
        self.width = width or self.width
        self.height = height or self.height


@dataclass
class TextPayload:
    text: str
    font_family: str = DEFAULT_FONT_FAMILY
    font_size: int = 24
    font_weight: str = "normal"
    font_style: str = "normal"
    color: Tuple[int, int, int, int] = (0, 0, 0, 255)

    def __post_init__(self) -> None:
        if isinstance(self.color, str):
            self.color = parse_color(self.color)
        if self.font_weight not in ("normal", "bold"):
            raise ValueError(f"Unsupported font weight: {self.font_weight}")
        if self.font_style not in ("normal", "italic"):
            raise ValueError(f"Unsupported font style: {self.font_style}")
        if self.font_size <= 0:
            raise ValueError("Font size must be positive")


@dataclass
class Watermark:
    """
    A positioned, rotated, opacity-blended overlay.

    ``target`` is None for every input, or the set of animation ids the
    watermark is limited to. ``layer_order`` below zero sits under the
    source frames, zero and above sit on top in ascending order.
    """

    payload: Union[ImagePayload, TextPayload]
    position: Position = Position(0, 0)
    rotation_degrees: float = 0.0
    opacity: float = 1.0
    layer_order: int = 1
    tiling_mode: TilingMode = TilingMode.DIRECT
    target: Optional[FrozenSet[str]] = None
    id: str = field(default_factory=generate_id)

    def __post_init__(self) -> None:
        if not isinstance(self.payload, (ImagePayload, TextPayload)):
            raise TypeError(f"Unsupported watermark payload: {type(self.payload).__name__}")
        self.position = Position(*self.position)
        if isinstance(self.layer_order, str):
            try:
                self.layer_order = LAYER_NAMES[self.layer_order]
            except KeyError as exc:
                raise ValueError(f"Unknown layer: {self.layer_order}. Use 'above', 'below' or an integer.") from exc
        self.tiling_mode = TilingMode(self.tiling_mode)
        if not 0 <= self.opacity <= 1:
            raise ValueError("Opacity must be between 0 and 1")
        # an empty selection means every input
        self.target = frozenset(self.target) if self.target else None

    @classmethod
    def from_png(cls, data: bytes, **kwargs) -> "Watermark":
        """Create an image watermark from PNG bytes."""
        bitmap = Image.open(BytesIO(data))
        if bitmap.format != "PNG":
            raise ValueError(f"Watermark images must be PNG, got {bitmap.format}")
        bitmap = bitmap.convert("RGBA")
        return cls(payload=ImagePayload(bitmap), **kwargs)

    @classmethod
    def from_text(
        cls,
        text: str,
        *,
        font_family: str = DEFAULT_FONT_FAMILY,
        font_size: int = 24,
        font_weight: str = "normal",
        font_style: str = "normal",
        color: Union[str, Tuple[int, int, int, int]] = (0, 0, 0, 255),
        **kwargs,
    ) -> "Watermark":
        payload = TextPayload(text, font_family, font_size, font_weight, font_style, color)
        return cls(payload=payload, **kwargs)

    @property
    def is_global(self) -> bool:
        return self.target is None

    def applies_to(self, animation_id: str) -> bool:
        return self.target is None or animation_id in self.target


@dataclass(frozen=True)
class RasterLayer:
    """A rasterized watermark and where its origin sits on the merged canvas."""

    image: Image.Image
    offset: Tuple[int, int] = (0, 0)


def _font_candidates(family: str, weight: str, style: str) -> Iterable[str]:
    for suffix in _FONT_SUFFIXES[(weight, style)]:
        filename = f"{family}{suffix}.ttf"
        for directory in FONT_DIRS:
            yield os.path.join(directory, filename)
        yield filename


@lru_cache(maxsize=64)
def load_font(family: str, size: int, weight: str = "normal", style: str = "normal"):
    """Resolve a font family and style to a Pillow font, falling back to the built-in font."""
    for candidate in _font_candidates(family, weight, style):
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    logger.debug("Font %s (%s/%s) not found, using Pillow default", family, weight, style)
    return ImageFont.load_default(size=size)


def nudge_key_color(color: Tuple[int, int, int, int], key: Optional[Tuple[int, int, int]]) -> Tuple[int, int, int, int]:
    """Move a color off the transparency key so it is not encoded as see-through."""
    if key is not None and tuple(color[:3]) == tuple(key):
        return (*NUDGED_KEY_COLOR, color[3])
    return color


def render_text(payload: TextPayload, transparency_key: Optional[Tuple[int, int, int]] = TRANSPARENCY_KEY) -> Image.Image:
    """Render a text payload into a tightly cropped RGBA tile."""
    font = load_font(payload.font_family, payload.font_size, payload.font_weight, payload.font_style)
    left, top, right, bottom = font.getbbox(payload.text)
    tile = new_canvas((max(1, right - left), max(1, bottom - top)))
    color = nudge_key_color(payload.color, transparency_key)
    ImageDraw.Draw(tile).text((-left, -top), payload.text, font=font, fill=color)
    return tile


def render_tile(watermark: Watermark, transparency_key: Optional[Tuple[int, int, int]] = TRANSPARENCY_KEY) -> Image.Image:
    """The unrotated, unscaled-by-canvas watermark tile."""
    payload = watermark.payload
    if isinstance(payload, ImagePayload):
        if payload.bitmap.size == (payload.width, payload.height):
            return payload.bitmap
        return payload.bitmap.resize((payload.width, payload.height), Image.Resampling.BILINEAR)
    if isinstance(payload, TextPayload):
        return render_text(payload, transparency_key)
    raise TypeError(f"Unsupported watermark payload: {type(payload).__name__}")


def _rotate(tile: Image.Image, degrees: float) -> Image.Image:
    if degrees % 360 == 0:
        return tile
    # Pillow rotates counter-clockwise
    return tile.rotate(-degrees, resample=Image.Resampling.BICUBIC, expand=True)


def _tile_pattern(tile: Image.Image, width: int, height: int, degrees: float) -> Image.Image:
    """
    Cover a width x height area with ``tile`` repeated, rotated as one pattern.

    The pattern is laid out on a square wider than the area's diagonal so the
    rotated square still covers every pixel of the centred crop. A tile corner
    stays on the area's top-left when there is no rotation.
    """
    if degrees % 360 == 0:
        side_x, side_y = width, height
    else:
        side_x = side_y = math.ceil(math.hypot(width, height)) + 4
    left = (side_x - width) // 2
    top = (side_y - height) // 2

    pattern = new_canvas((side_x, side_y))
    start_x = left - math.ceil(left / tile.width) * tile.width
    start_y = top - math.ceil(top / tile.height) * tile.height
    for y in range(start_y, side_y, tile.height):
        for x in range(start_x, side_x, tile.width):
            pattern.paste(tile, (x, y))

    if degrees % 360 == 0:
        return pattern
    # Pillow rotates counter-clockwise
    rotated = pattern.rotate(-degrees, resample=Image.Resampling.BICUBIC)
    return rotated.crop((left, top, left + width, top + height))


def rasterize(
    watermark: Watermark,
    canvas_width: int,
    canvas_height: int,
    *,
    offset: Tuple[int, int] = (0, 0),
    transparency_key: Optional[Tuple[int, int, int]] = TRANSPARENCY_KEY,
) -> RasterLayer:
    """
    Rasterize a watermark against a canvas of the given size.

    Args:
        watermark: The watermark to draw
        canvas_width: Width of the canvas the watermark positions refer to
        canvas_height: Height of that canvas
        offset: Where the canvas origin sits on the merged output
        transparency_key: Text colors equal to this RGB value are nudged

    Returns:
        A canvas-sized RGBA layer with rotation, tiling and opacity applied
    """
    layer = new_canvas((canvas_width, canvas_height))
    tile = render_tile(watermark, transparency_key)

    if watermark.tiling_mode == TilingMode.REPEAT:
        pattern = _tile_pattern(tile, canvas_width, canvas_height, watermark.rotation_degrees)
        layer.paste(apply_opacity(pattern, watermark.opacity), (0, 0))
        return RasterLayer(layer, offset)

    if watermark.tiling_mode == TilingMode.FILL:
        scale = max(canvas_width / tile.width, canvas_height / tile.height)
        scaled_size = (max(1, round(tile.width * scale)), max(1, round(tile.height * scale)))
        tile = tile.resize(scaled_size, Image.Resampling.BILINEAR)
        center = (canvas_width / 2, canvas_height / 2)
    else:
        x, y = watermark.position
        center = (x + tile.width / 2, y + tile.height / 2)

    rotated = apply_opacity(_rotate(tile, watermark.rotation_degrees), watermark.opacity)
    position = (round(center[0] - rotated.width / 2), round(center[1] - rotated.height / 2))
    alpha_composite_at(layer, rotated, position)
    return RasterLayer(layer, offset)
