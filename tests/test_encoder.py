"""Tests for GIF encoding."""

import pytest
from PIL import Image

from gifmerge.compositor import MergedSequence, composite
from gifmerge.decoder import decode_gif
from gifmerge.encoder import FrameMapper, build_palette, encode, frame_delay_cs
from gifmerge.errors import EncodeError, JobCancelledError, PaletteOverflowError
from gifmerge.imaging import TRANSPARENCY_KEY
from gif_helpers import BLUE, GREEN, RED, open_gif, gif_frame_durations, solid_animation


def merged_from_colors(colors, size=(8, 8), requires_transparency=False) -> MergedSequence:
    frames = [Image.new("RGBA", size, color if len(color) == 4 else (*color, 255)) for color in colors]
    return MergedSequence(
        width=size[0],
        height=size[1],
        frames=frames,
        placements=(),
        requires_transparency=requires_transparency,
    )


def graphic_control_blocks(data: bytes):
    blocks = []
    start = data.find(b"\x21\xF9\x04")
    while start != -1:
        blocks.append(data[start + 3:start + 7])
        start = data.find(b"\x21\xF9\x04", start + 1)
    return blocks


class TestFrameDelay:
    """Tests for frame_delay_cs."""

    def test_whole_centiseconds(self) -> None:
        assert frame_delay_cs(100) == 10

    def test_rounds_half_up(self) -> None:
        assert frame_delay_cs(25) == 3

    def test_never_zero(self) -> None:
        assert frame_delay_cs(4) == 1


class TestBuildPalette:
    """Tests for build_palette."""

    def test_exact_colors_for_small_inputs(self) -> None:
        merged = merged_from_colors([RED, GREEN, BLUE])
        assert sorted(build_palette(merged.frames)) == sorted([RED, GREEN, BLUE])

    def test_limited_to_255_with_transparency(self) -> None:
        gradient = Image.new("RGBA", (64, 64))
        gradient.putdata([(x * 4, y * 4, (x + y) * 2, 255) for y in range(64) for x in range(64)])
        palette = build_palette([gradient], requires_transparency=True)
        assert len(palette) <= 255

    def test_caller_palette_used_as_is(self) -> None:
        assert build_palette([], palette=[RED, BLUE]) == [RED, BLUE]

    def test_caller_palette_too_large(self) -> None:
        colors = [(index, index, index) for index in range(256)]
        with pytest.raises(PaletteOverflowError):
            build_palette([], requires_transparency=True, palette=colors)

    def test_empty_caller_palette(self) -> None:
        with pytest.raises(PaletteOverflowError):
            build_palette([], palette=[])

    def test_invalid_caller_color(self) -> None:
        with pytest.raises(ValueError):
            build_palette([], palette=[(300, 0, 0)])

    def test_see_through_pixels_do_not_take_a_slot(self) -> None:
        frame = Image.new("RGBA", (8, 8), (*RED, 255))
        frame.paste((0, 0, 0, 0), (0, 0, 8, 4))
        assert build_palette([frame], requires_transparency=True) == [RED]

    def test_see_through_pixels_kept_without_transparency(self) -> None:
        frame = Image.new("RGBA", (8, 8), (*RED, 255))
        frame.paste((0, 0, 0, 0), (0, 0, 8, 4))
        assert sorted(build_palette([frame])) == sorted([RED, (0, 0, 0)])

    def test_fully_transparent_frames(self) -> None:
        assert build_palette([Image.new("RGBA", (4, 4))], requires_transparency=True) == [(0, 0, 0)]


class TestFrameMapper:
    """Tests for FrameMapper."""

    def test_maps_onto_shared_table(self) -> None:
        indexed = FrameMapper([RED, BLUE]).map(Image.new("RGBA", (4, 4), (*BLUE, 255)))
        assert indexed.mode == "P"
        assert indexed.getpalette()[:6] == [*RED, *BLUE]
        assert set(indexed.getdata()) == {1}

    def test_transparent_slot_follows_colors(self) -> None:
        frame = Image.new("RGBA", (4, 1), (*RED, 255))
        frame.putpixel((0, 0), (*RED, 0))
        indexed = FrameMapper([RED, GREEN], transparent_index=2).map(frame)
        assert list(indexed.getdata()) == [2, 0, 0, 0]
        assert indexed.getpalette()[6:9] == list(TRANSPARENCY_KEY)


class TestEncode:
    """Tests for encode."""

    def test_pillow_reads_metadata(self) -> None:
        data = encode(merged_from_colors([RED, GREEN, BLUE]), 100, loop=0)
        image = open_gif(data)
        assert image.size == (8, 8)
        assert image.n_frames == 3
        assert image.info["loop"] == 0
        assert gif_frame_durations(data) == [100, 100, 100]

    def test_repeated_frame_extends_previous_delay(self) -> None:
        data = encode(merged_from_colors([RED, RED, GREEN]), 100)
        assert open_gif(data).n_frames == 2
        assert gif_frame_durations(data) == [200, 100]

    def test_delay_rounded_to_centiseconds(self) -> None:
        data = encode(merged_from_colors([RED, GREEN]), 25)
        assert gif_frame_durations(data) == [30, 30]

    def test_colors_survive_round_trip(self) -> None:
        data = encode(merged_from_colors([RED, GREEN, BLUE]), 100)
        animation = decode_gif(data)
        assert [frame.pixels.getpixel((3, 3)) for frame in animation.frames] == [
            (*RED, 255), (*GREEN, 255), (*BLUE, 255),
        ]

    def test_graphic_control_uses_keep_disposal(self) -> None:
        data = encode(merged_from_colors([RED, GREEN]), 70)
        blocks = graphic_control_blocks(data)
        assert len(blocks) == 2
        for block in blocks:
            assert (block[0] >> 2) & 0b111 == 1
            assert int.from_bytes(block[1:3], "little") == 7

    def test_transparency_index_after_palette(self) -> None:
        frame = Image.new("RGBA", (8, 8), (*RED, 255))
        frame.paste((0, 0, 0, 0), (0, 0, 4, 8))
        merged = MergedSequence(8, 8, [frame], (), requires_transparency=True)
        data = encode(merged, 100)
        image = open_gif(data)
        assert "transparency" in image.info
        decoded = decode_gif(data).frames[0].pixels
        assert decoded.getpixel((1, 1))[3] == 0
        assert decoded.getpixel((6, 6)) == (*RED, 255)

    def test_half_transparent_pixels_threshold(self) -> None:
        frame = Image.new("RGBA", (4, 1), (*RED, 255))
        frame.putpixel((0, 0), (*RED, 127))
        frame.putpixel((1, 0), (*RED, 128))
        merged = MergedSequence(4, 1, [frame], (), requires_transparency=True)
        decoded = decode_gif(encode(merged, 100)).frames[0].pixels
        assert decoded.getpixel((0, 0))[3] == 0
        assert decoded.getpixel((1, 0))[3] == 255

    def test_opaque_output_has_no_transparency(self) -> None:
        data = encode(merged_from_colors([RED]), 100)
        assert "transparency" not in open_gif(data).info

    def test_identical_input_identical_bytes(self) -> None:
        animations = [solid_animation(16, 16, [RED, GREEN]), solid_animation(8, 8, [BLUE])]
        first = encode(composite(animations), 100)
        second = encode(composite(animations), 100)
        assert first == second

    def test_fixed_palette(self) -> None:
        data = encode(merged_from_colors([RED, BLUE]), 100, palette=[RED, BLUE])
        animation = decode_gif(data)
        assert animation.frames[1].pixels.getpixel((0, 0)) == (*BLUE, 255)

    def test_many_colors(self) -> None:
        gradient = Image.new("RGBA", (64, 64))
        gradient.putdata([(x * 4, y * 4, 128, 255) for y in range(64) for x in range(64)])
        merged = MergedSequence(64, 64, [gradient], (), requires_transparency=False)
        animation = decode_gif(encode(merged, 100))
        red, green, _blue, alpha = animation.frames[0].pixels.getpixel((63, 63))
        assert alpha == 255
        assert red > 200 and green > 200

    def test_loop_count(self) -> None:
        data = encode(merged_from_colors([RED, GREEN]), 100, loop=3)
        assert open_gif(data).info["loop"] == 3

    def test_progress_per_frame(self) -> None:
        calls = []
        encode(merged_from_colors([RED, GREEN, BLUE]), 100, on_frame=lambda done, total: calls.append((done, total)))
        assert calls == [(1, 3), (2, 3), (3, 3)]

    def test_cancel_before_encoding(self) -> None:
        with pytest.raises(JobCancelledError):
            encode(merged_from_colors([RED]), 100, should_cancel=lambda: True)

    def test_no_frames(self) -> None:
        with pytest.raises(EncodeError):
            encode(merged_from_colors([]), 100)
