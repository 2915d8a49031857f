"""Tests for grid and sequence composition."""

import pytest
from PIL import Image

from gifmerge.compositor import Compositor, composite, locate_sequence_frame, natural_canvas_size, total_frame_count
from gifmerge.errors import InvalidDimensionsError, JobCancelledError, NoInputsError
from gifmerge.options import MergeMode, MergeOptions
from gifmerge.watermark import ImagePayload, Watermark
from gif_helpers import BLUE, GREEN, RED, WHITE, solid_animation

CLEAR = (0, 0, 0, 0)


def opaque(color) -> tuple:
    return (*color, 255)


def distinct_colors(count: int):
    return [(index * 20, 255 - index * 20, 7) for index in range(count)]


def box_watermark(width: int, height: int, color, **kwargs) -> Watermark:
    return Watermark(payload=ImagePayload(Image.new("RGBA", (width, height), opaque(color))), **kwargs)


class TestCanvasSizing:
    """Tests for natural canvas size and placements."""

    def test_two_inputs_side_by_side(self) -> None:
        animations = [solid_animation(64, 64, [RED]), solid_animation(64, 64, [BLUE])]
        assert natural_canvas_size(animations) == (128, 64)

    def test_three_inputs_use_two_columns(self) -> None:
        animations = [solid_animation(10, 10, [RED]) for _ in range(3)]
        assert natural_canvas_size(animations) == (20, 20)

    def test_explicit_columns(self) -> None:
        animations = [solid_animation(10, 10, [RED]) for _ in range(3)]
        assert natural_canvas_size(animations, MergeOptions(columns=1)) == (10, 30)

    def test_sequence_uses_largest_input(self) -> None:
        animations = [solid_animation(10, 30, [RED]), solid_animation(20, 5, [RED])]
        assert natural_canvas_size(animations, MergeOptions(mode="sequence")) == (20, 30)

    def test_smaller_input_centered_in_cell(self) -> None:
        animations = [solid_animation(10, 10, [RED]), solid_animation(4, 4, [BLUE])]
        placements = Compositor(animations).placements
        assert placements[1].box == (13, 3, 17, 7)

    def test_output_size_from_targets(self) -> None:
        animations = [solid_animation(10, 10, [RED])]
        assert Compositor(animations, options=MergeOptions(target_width=30)).size == (30, 10)


class TestFrameCounts:
    """Tests for grid and sequence frame reconciliation."""

    def test_grid_uses_longest_input(self) -> None:
        animations = [solid_animation(2, 2, [RED] * 10), solid_animation(2, 2, [RED] * 3)]
        assert total_frame_count(animations, MergeMode.GRID) == 10

    def test_sequence_sums_inputs(self) -> None:
        animations = [solid_animation(2, 2, [RED] * 5), solid_animation(2, 2, [RED] * 7)]
        assert total_frame_count(animations, MergeMode.SEQUENCE) == 12

    def test_locate_sequence_frame(self) -> None:
        animations = [solid_animation(2, 2, [RED] * 5), solid_animation(2, 2, [RED] * 7)]
        assert locate_sequence_frame(animations, 4) == (0, 4)
        assert locate_sequence_frame(animations, 5) == (1, 0)
        assert locate_sequence_frame(animations, 11) == (1, 6)
        with pytest.raises(IndexError):
            locate_sequence_frame(animations, 12)

    def test_short_grid_input_holds_first_frame(self) -> None:
        long_colors = distinct_colors(10)
        short_colors = [RED, GREEN, BLUE]
        animations = [solid_animation(4, 4, long_colors), solid_animation(4, 4, short_colors)]
        merged = composite(animations)
        assert merged.frame_count == 10
        for index in range(3):
            assert merged.frames[index].getpixel((5, 1)) == opaque(short_colors[index])
        for index in range(3, 10):
            assert merged.frames[index].getpixel((5, 1)) == opaque(RED)
            assert merged.frames[index].getpixel((1, 1)) == opaque(long_colors[index])

    def test_sequence_plays_inputs_in_order(self) -> None:
        first = solid_animation(4, 4, distinct_colors(5))
        second = solid_animation(4, 4, [BLUE, GREEN, RED, WHITE, BLUE, GREEN, RED])
        merged = composite([first, second], options=MergeOptions(mode="sequence"))
        assert merged.frame_count == 12
        assert merged.size == (4, 4)
        assert merged.frames[5].getpixel((0, 0)) == second.frames[0].pixels.getpixel((0, 0))
        assert merged.frames[4].getpixel((0, 0)) == first.frames[4].pixels.getpixel((0, 0))


class TestLayering:
    """Tests for watermark layer order and targeting."""

    def test_below_layer_hidden_by_opaque_frame(self, red_square) -> None:
        mark = box_watermark(10, 10, BLUE, layer_order=-1)
        merged = composite([red_square], [mark])
        assert merged.frames[0].getpixel((5, 5)) == opaque(RED)

    def test_above_layer_visible(self, red_square) -> None:
        mark = box_watermark(10, 10, BLUE, layer_order=1)
        merged = composite([red_square], [mark])
        assert merged.frames[0].getpixel((5, 5)) == opaque(BLUE)

    def test_below_layer_shows_through_transparency(self) -> None:
        animation = solid_animation(10, 10, [CLEAR])
        mark = box_watermark(10, 10, BLUE, layer_order=-1)
        merged = composite([animation], [mark])
        assert merged.frames[0].getpixel((5, 5)) == opaque(BLUE)

    def test_higher_layer_drawn_last(self, red_square) -> None:
        top = box_watermark(10, 10, GREEN, layer_order=5)
        middle = box_watermark(10, 10, BLUE, layer_order=2)
        merged = composite([red_square], [top, middle])
        assert merged.frames[0].getpixel((5, 5)) == opaque(GREEN)

    def test_equal_layers_keep_list_order(self, red_square) -> None:
        first = box_watermark(10, 10, GREEN, layer_order=1)
        second = box_watermark(10, 10, BLUE, layer_order=1)
        merged = composite([red_square], [first, second])
        assert merged.frames[0].getpixel((5, 5)) == opaque(BLUE)

    def test_subset_watermark_only_on_target(self) -> None:
        left = solid_animation(10, 10, [RED], animation_id="left")
        right = solid_animation(10, 10, [RED], animation_id="right")
        mark = box_watermark(10, 10, BLUE, target={"right"})
        merged = composite([left, right], [mark])
        assert merged.frames[0].getpixel((5, 5)) == opaque(RED)
        assert merged.frames[0].getpixel((15, 5)) == opaque(BLUE)

    def test_subset_watermark_clipped_to_its_input(self) -> None:
        left = solid_animation(10, 10, [RED], animation_id="left")
        right = solid_animation(10, 10, [RED], animation_id="right")
        mark = box_watermark(30, 30, BLUE, target={"left"})
        merged = composite([left, right], [mark])
        assert merged.frames[0].getpixel((9, 9)) == opaque(BLUE)
        assert merged.frames[0].getpixel((10, 5)) == opaque(RED)

    def test_global_drawn_before_subset_at_equal_layer(self, red_square) -> None:
        subset = box_watermark(10, 10, BLUE, layer_order=1, target={"red"})
        global_mark = box_watermark(10, 10, GREEN, layer_order=1)
        merged = composite([red_square], [subset, global_mark])
        assert merged.frames[0].getpixel((5, 5)) == opaque(BLUE)

    def test_sequence_ignores_subset_watermarks(self, red_square) -> None:
        subset = box_watermark(10, 10, BLUE, target={"red"})
        merged = composite([red_square], [subset], MergeOptions(mode="sequence"))
        assert merged.frames[0].getpixel((5, 5)) == opaque(RED)

    def test_sequence_draws_global_watermarks(self, red_square) -> None:
        mark = box_watermark(4, 4, BLUE)
        merged = composite([red_square], [mark], MergeOptions(mode="sequence"))
        assert merged.frames[0].getpixel((1, 1)) == opaque(BLUE)
        assert merged.frames[0].getpixel((8, 8)) == opaque(RED)


class TestBackgroundAndResampling:
    """Tests for background policies and output scaling."""

    def test_transparent_background(self) -> None:
        animations = [solid_animation(10, 10, [RED]), solid_animation(4, 4, [RED])]
        merged = composite(animations)
        assert merged.frames[0].getpixel((10, 0)) == CLEAR
        assert merged.requires_transparency is True

    def test_white_background_is_opaque(self) -> None:
        animations = [solid_animation(10, 10, [RED]), solid_animation(4, 4, [RED])]
        merged = composite(animations, options=MergeOptions(background="white"))
        assert merged.frames[0].getpixel((10, 0)) == opaque(WHITE)
        assert merged.requires_transparency is False

    def test_original_background_keeps_transparency(self) -> None:
        animations = [solid_animation(10, 10, [RED]), solid_animation(4, 4, [RED])]
        merged = composite(animations, options=MergeOptions(background="original"))
        assert merged.frames[0].getpixel((10, 0)) == CLEAR
        assert merged.requires_transparency is True

    def test_upscale_nearest(self, red_square) -> None:
        merged = composite([red_square], options=MergeOptions(target_width=20, target_height=20))
        assert merged.size == (20, 20)
        assert merged.frames[0].size == (20, 20)
        assert merged.frames[0].getpixel((19, 19)) == opaque(RED)

    def test_resample_keeps_background(self) -> None:
        animations = [solid_animation(10, 10, [RED]), solid_animation(4, 4, [RED])]
        options = MergeOptions(background="black", target_width=40, target_height=20, interpolation="bilinear")
        merged = composite(animations, options=options)
        assert merged.frames[0].getpixel((39, 0)) == (0, 0, 0, 255)


class TestCompositeErrors:
    """Tests for invalid inputs and cancellation."""

    def test_no_inputs(self) -> None:
        with pytest.raises(NoInputsError):
            composite([])

    def test_zero_columns(self, red_square) -> None:
        with pytest.raises(InvalidDimensionsError):
            composite([red_square], options=MergeOptions(columns=0))

    def test_oversize_output(self, red_square) -> None:
        with pytest.raises(InvalidDimensionsError):
            composite([red_square], options=MergeOptions(target_width=20000))

    def test_negative_output(self, red_square) -> None:
        with pytest.raises(InvalidDimensionsError):
            composite([red_square], options=MergeOptions(target_height=-1))

    def test_cancel_between_frames(self, rgb_animation) -> None:
        done = []
        with pytest.raises(JobCancelledError):
            composite(
                [rgb_animation],
                on_frame=lambda count, total: done.append(count),
                should_cancel=lambda: len(done) >= 2,
            )
        assert done == [1, 2]

    def test_progress_reports_every_frame(self, rgb_animation) -> None:
        calls = []
        composite([rgb_animation], on_frame=lambda count, total: calls.append((count, total)))
        assert calls == [(1, 3), (2, 3), (3, 3)]

    def test_render_frame_out_of_range(self, rgb_animation) -> None:
        with pytest.raises(IndexError):
            Compositor([rgb_animation]).render_frame(3)

    def test_output_frames_are_independent(self, rgb_animation) -> None:
        merged = composite([rgb_animation])
        merged.frames[0].putpixel((0, 0), (9, 9, 9, 255))
        assert merged.frames[1].getpixel((0, 0)) == opaque(GREEN)
