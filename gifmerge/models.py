"""Decoded animation data shared by the decoder, compositor and encoder."""

import uuid
from dataclasses import dataclass, field
from typing import Tuple

from PIL import Image


def generate_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Frame:
    """One fully accumulated canvas state of an animation."""

    pixels: Image.Image
    delay_ms: int
    disposal: int = 0


@dataclass(frozen=True)
class DecodedAnimation:
    """
    A parsed GIF input.

    ``frames`` keeps the file order and every frame holds its own RGBA copy of
    the logical screen.
    """

    width: int
    height: int
    frames: Tuple[Frame, ...]
    has_transparency: bool = False
    id: str = field(default_factory=generate_id)
    name: str = ""

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def total_duration_ms(self) -> int:
        return sum(frame.delay_ms for frame in self.frames)

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def close(self) -> None:
        """Release the pixel buffers of every frame."""
        for frame in self.frames:
            frame.pixels.close()


def has_transparency(image: Image.Image) -> bool:
    """
    Check if an image has meaningful transparency.

    Returns True if the image has an alpha channel with non-fully-opaque pixels.
    """
    if image.mode != "RGBA":
        return False
    return image.getchannel("A").getextrema()[0] < 255
