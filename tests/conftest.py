import pytest

from gif_helpers import BLUE, GREEN, RED, solid_animation, solid_gif


@pytest.fixture
def red_square():
    """A single-frame opaque red 10x10 animation."""
    return solid_animation(10, 10, [RED], animation_id="red")


@pytest.fixture
def four_frame_gif():
    """A 64x64 GIF with four 100 ms frames."""
    return solid_gif(64, 64, [0, 1, 2, 3], delay_cs=10)


@pytest.fixture
def rgb_animation():
    """A 4x4 animation cycling red, green, blue."""
    return solid_animation(4, 4, [RED, GREEN, BLUE])
