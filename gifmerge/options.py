"""
Export configuration and the small parsing helpers shared by the CLI and the
watermark model.
"""

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from PIL import ImageColor

from .config import MAX_CANVAS_EDGE


class MergeMode(str, Enum):
    GRID = "grid"
    SEQUENCE = "sequence"


class BackgroundPolicy(str, Enum):
    TRANSPARENT = "transparent"
    MATCH_SOURCE = "original"
    WHITE = "white"
    BLACK = "black"


class Interpolation(str, Enum):
    NEAREST = "nearest"
    BILINEAR = "bilinear"


BACKGROUND_COLORS = {
    BackgroundPolicy.TRANSPARENT: (0, 0, 0, 0),
    BackgroundPolicy.MATCH_SOURCE: (0, 0, 0, 0),
    BackgroundPolicy.WHITE: (255, 255, 255, 255),
    BackgroundPolicy.BLACK: (0, 0, 0, 255),
}


@dataclass(frozen=True)
class MergeOptions:
    """Configuration for one merge export."""

    mode: MergeMode = MergeMode.GRID
    background: BackgroundPolicy = BackgroundPolicy.TRANSPARENT
    columns: Optional[int] = None
    frame_interval_ms: int = 100
    target_width: Optional[int] = None
    target_height: Optional[int] = None
    lock_aspect_ratio: bool = True
    interpolation: Interpolation = Interpolation.NEAREST
    loop: int = 0

    def __post_init__(self) -> None:
        # Accept plain strings for the enumerated fields
        object.__setattr__(self, "mode", MergeMode(self.mode))
        object.__setattr__(self, "background", BackgroundPolicy(self.background))
        object.__setattr__(self, "interpolation", Interpolation(self.interpolation))
        if self.frame_interval_ms <= 0:
            raise ValueError("frame_interval_ms must be > 0")
        if self.loop < 0:
            raise ValueError("loop must be >= 0")

    @property
    def background_color(self) -> Tuple[int, int, int, int]:
        return BACKGROUND_COLORS[self.background]

    def output_size(self, natural: Tuple[int, int]) -> Tuple[int, int]:
        """Final canvas size; each missing target falls back to the natural size."""
        return (self.target_width or natural[0], self.target_height or natural[1])

    def with_target_width(self, width: int, natural: Tuple[int, int]) -> "MergeOptions":
        """Set the target width, recomputing the height when the aspect ratio is locked."""
        if self.lock_aspect_ratio and natural[0] > 0:
            height = max(1, round(width * natural[1] / natural[0]))
            return replace(self, target_width=width, target_height=height)
        return replace(self, target_width=width)

    def with_target_height(self, height: int, natural: Tuple[int, int]) -> "MergeOptions":
        """Set the target height, recomputing the width when the aspect ratio is locked."""
        if self.lock_aspect_ratio and natural[1] > 0:
            width = max(1, round(height * natural[0] / natural[1]))
            return replace(self, target_width=width, target_height=height)
        return replace(self, target_height=height)

    def rescaled_for(self, natural: Tuple[int, int], previous: Tuple[int, int]) -> "MergeOptions":
        """
        Follow a change of the natural composite size (new column count or mode).

        With a locked aspect ratio and an explicit target width the current scale
        factor is kept; otherwise the targets snap to the new natural size.
        """
        if self.lock_aspect_ratio and self.target_width and previous[0] > 0:
            scale = self.target_width / previous[0]
            return replace(
                self,
                target_width=round(natural[0] * scale),
                target_height=round(natural[1] * scale),
            )
        return replace(self, target_width=natural[0], target_height=natural[1])


DEFAULT_OPTIONS = MergeOptions()


def grid_dimensions(count: int, columns: Optional[int] = None) -> Tuple[int, int]:
    """Return (columns, rows) for a grid holding ``count`` cells."""
    cols = columns or max(1, math.ceil(math.sqrt(count)))
    rows = math.ceil(count / cols) if count else 0
    return cols, rows


def parse_color(color_text: str) -> Tuple[int, int, int, int]:
    """Parse a color string into RGBA tuple. Returns (0,0,0,0) for 'transparent'."""
    if color_text.lower() == "transparent":
        return (0, 0, 0, 0)
    try:
        color = ImageColor.getrgb(color_text)
        if len(color) == 3:
            return (*color, 255)
        return color
    except ValueError as exc:
        raise ValueError(f"Invalid color: {color_text}. Use hex (#FFFFFF), color name, or 'transparent'.") from exc


def parse_size(size_text: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse a size string (WIDTHxHEIGHT) into a tuple. Empty input means natural size."""
    if not size_text:
        return None
    try:
        width_text, height_text = size_text.lower().split("x", maxsplit=1)
        width = int(width_text)
        height = int(height_text)
        if width <= 0 or height <= 0:
            raise ValueError("Dimensions must be positive")
        if width > MAX_CANVAS_EDGE or height > MAX_CANVAS_EDGE:
            raise ValueError(f"Maximum dimension is {MAX_CANVAS_EDGE}px")
        return width, height
    except ValueError as exc:
        raise ValueError(
            f"Size must be WIDTHxHEIGHT (e.g., 320x180). Got: {size_text}"
        ) from exc
