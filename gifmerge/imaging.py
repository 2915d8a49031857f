"""Pillow helpers for clipped RGBA composition."""

from typing import Tuple

from PIL import Image

TRANSPARENT = (0, 0, 0, 0)

# Table color of the palette slot reserved for the transparency index
TRANSPARENCY_KEY = (0, 0, 0)


def new_canvas(size: Tuple[int, int], color: Tuple[int, int, int, int] = TRANSPARENT) -> Image.Image:
    return Image.new("RGBA", size, color=color)


def alpha_composite_at(base: Image.Image, overlay: Image.Image, position: Tuple[int, int]) -> None:
    """Alpha-composite ``overlay`` onto ``base`` in place, clipping to base's bounds."""
    x, y = position
    left = max(0, -x)
    top = max(0, -y)
    right = min(overlay.width, base.width - x)
    bottom = min(overlay.height, base.height - y)
    if right <= left or bottom <= top:
        return
    base.alpha_composite(overlay, dest=(x + left, y + top), source=(left, top, right, bottom))


def clear_box(image: Image.Image, box: Tuple[int, int, int, int]) -> None:
    """Reset a rectangle to fully transparent, clipped to the image."""
    left = max(0, box[0])
    top = max(0, box[1])
    right = min(image.width, box[2])
    bottom = min(image.height, box[3])
    if right > left and bottom > top:
        image.paste(TRANSPARENT, (left, top, right, bottom))


def apply_opacity(image: Image.Image, opacity: float) -> Image.Image:
    """Scale the alpha channel of an RGBA image by ``opacity`` (0..1)."""
    if opacity >= 1:
        return image
    opacity = max(0.0, opacity)
    result = image.copy()
    alpha = result.getchannel("A").point(lambda a: round(a * opacity))
    result.putalpha(alpha)
    return result
