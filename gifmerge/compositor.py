"""
Merge decoded animations and watermarks into one frame sequence.

Grid mode lays inputs out in cells and plays them side by side; sequence
mode plays them one after another on a shared canvas. Every output frame is
rendered from a layer plan built once per job.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

from PIL import Image

from .config import MAX_CANVAS_EDGE
from .errors import InvalidDimensionsError, JobCancelledError, NoInputsError
from .imaging import alpha_composite_at, new_canvas
from .models import DecodedAnimation, has_transparency
from .options import DEFAULT_OPTIONS, BackgroundPolicy, Interpolation, MergeMode, MergeOptions, grid_dimensions
from .watermark import RasterLayer, Watermark, rasterize

logger = logging.getLogger(__name__)

FrameCallback = Callable[[int, int], None]
CancelCheck = Callable[[], bool]

RESAMPLING = {
    Interpolation.NEAREST: Image.Resampling.NEAREST,
    Interpolation.BILINEAR: Image.Resampling.BILINEAR,
}

# Plan step that draws the current input frame in sequence mode
_CURRENT_INPUT = -1


@dataclass(frozen=True)
class Placement:
    """Where an input animation sits on the natural (unscaled) canvas."""

    animation_id: str
    left: int
    top: int
    width: int
    height: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        return (self.left, self.top, self.left + self.width, self.top + self.height)


@dataclass
class MergedSequence:
    """Output of the compositor, ready for the encoder."""

    width: int
    height: int
    frames: List[Image.Image]
    placements: Tuple[Placement, ...]
    requires_transparency: bool

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def close(self) -> None:
        for frame in self.frames:
            frame.close()
        self.frames.clear()


def natural_canvas_size(animations: Sequence[DecodedAnimation], options: MergeOptions = DEFAULT_OPTIONS) -> Tuple[int, int]:
    """Size of the composite before any target size is applied."""
    if not animations:
        return (0, 0)
    cell_width = max(animation.width for animation in animations)
    cell_height = max(animation.height for animation in animations)
    if options.mode == MergeMode.SEQUENCE:
        return (cell_width, cell_height)
    cols, rows = grid_dimensions(len(animations), options.columns)
    return (cols * cell_width, rows * cell_height)


def total_frame_count(animations: Sequence[DecodedAnimation], mode: MergeMode = MergeMode.GRID) -> int:
    counts = [animation.frame_count for animation in animations]
    if not counts:
        return 0
    if MergeMode(mode) == MergeMode.SEQUENCE:
        return sum(counts)
    return max(counts)


def locate_sequence_frame(animations: Sequence[DecodedAnimation], index: int) -> Tuple[int, int]:
    """Map a sequence-mode output frame to (animation index, frame index)."""
    offset = index
    for position, animation in enumerate(animations):
        if offset < animation.frame_count:
            return position, offset
        offset -= animation.frame_count
    raise IndexError(f"Frame {index} is beyond the sequence length")


def _placements(animations: Sequence[DecodedAnimation], options: MergeOptions) -> Tuple[Placement, ...]:
    cell_width = max(animation.width for animation in animations)
    cell_height = max(animation.height for animation in animations)
    cols, _rows = grid_dimensions(len(animations), options.columns)
    placements = []
    for position, animation in enumerate(animations):
        if options.mode == MergeMode.SEQUENCE:
            cell_left, cell_top = 0, 0
        else:
            cell_left = (position % cols) * cell_width
            cell_top = (position // cols) * cell_height
        placements.append(Placement(
            animation_id=animation.id,
            left=cell_left + (cell_width - animation.width) // 2,
            top=cell_top + (cell_height - animation.height) // 2,
            width=animation.width,
            height=animation.height,
        ))
    return tuple(placements)


class Compositor:
    """
    Renders merged frames one at a time.

    The constructor validates the layout and rasterizes every watermark once;
    ``render_frame`` is then a pure function of the frame index.
    """

    def __init__(
        self,
        animations: Sequence[DecodedAnimation],
        watermarks: Sequence[Watermark] = (),
        options: MergeOptions = DEFAULT_OPTIONS,
    ):
        if not animations:
            raise NoInputsError("No animations to merge.")
        if options.columns is not None and options.columns < 1:
            raise InvalidDimensionsError(f"Column count must be at least 1, got {options.columns}")

        self.animations = tuple(animations)
        self.options = options
        self.natural_size = natural_canvas_size(self.animations, options)
        self.size = options.output_size(self.natural_size)
        width, height = self.size
        if width <= 0 or height <= 0:
            raise InvalidDimensionsError(f"Output size must be positive, got {width}x{height}")
        if width > MAX_CANVAS_EDGE or height > MAX_CANVAS_EDGE:
            raise InvalidDimensionsError(f"Output size {width}x{height} exceeds {MAX_CANVAS_EDGE}px")

        self.placements = _placements(self.animations, options)
        self.frame_count = total_frame_count(self.animations, options.mode)
        self._plan = self._build_plan(list(watermarks))

    def _build_plan(self, watermarks: List[Watermark]) -> List[Union[RasterLayer, int]]:
        natural_width, natural_height = self.natural_size
        global_marks = [mark for mark in watermarks if mark.is_global]
        below = sorted((mark for mark in global_marks if mark.layer_order < 0), key=lambda mark: mark.layer_order)
        plan: List[Union[RasterLayer, int]] = [rasterize(mark, natural_width, natural_height) for mark in below]

        if self.options.mode == MergeMode.SEQUENCE:
            skipped = len(watermarks) - len(global_marks)
            if skipped:
                logger.debug("Sequence mode ignores %d input-specific watermark(s)", skipped)
            plan.append(_CURRENT_INPUT)
            above = sorted((mark for mark in global_marks if mark.layer_order >= 0), key=lambda mark: mark.layer_order)
            plan.extend(rasterize(mark, natural_width, natural_height) for mark in above)
            return plan

        above = []
        for order, mark in enumerate(watermarks):
            if mark.is_global and mark.layer_order >= 0:
                above.append(((mark.layer_order, 0, order, 0), rasterize(mark, natural_width, natural_height)))

        for position, (animation, placement) in enumerate(zip(self.animations, self.placements)):
            targeted = [
                (order, mark) for order, mark in enumerate(watermarks)
                if not mark.is_global and mark.applies_to(animation.id)
            ]
            offset = (placement.left, placement.top)
            below_input = sorted((item for item in targeted if item[1].layer_order < 0), key=lambda item: item[1].layer_order)
            for _order, mark in below_input:
                plan.append(rasterize(mark, animation.width, animation.height, offset=offset))
            plan.append(position)
            for order, mark in targeted:
                if mark.layer_order >= 0:
                    layer = rasterize(mark, animation.width, animation.height, offset=offset)
                    above.append(((mark.layer_order, 1, order, position), layer))

        above.sort(key=lambda item: item[0])
        plan.extend(layer for _key, layer in above)
        return plan

    def _source_frame(self, step: int, index: int) -> Tuple[int, Image.Image]:
        if step == _CURRENT_INPUT:
            position, frame_index = locate_sequence_frame(self.animations, index)
        else:
            position = step
            count = self.animations[position].frame_count
            # shorter inputs hold their first frame once they run out
            frame_index = index if index < count else 0
        return position, self.animations[position].frames[frame_index].pixels

    def render_frame(self, index: int) -> Image.Image:
        """Render output frame ``index`` at the output size."""
        if not 0 <= index < self.frame_count:
            raise IndexError(f"Frame {index} out of range (0..{self.frame_count - 1})")
        background = self.options.background_color
        canvas = new_canvas(self.natural_size, background)
        for step in self._plan:
            if isinstance(step, RasterLayer):
                alpha_composite_at(canvas, step.image, step.offset)
            else:
                position, pixels = self._source_frame(step, index)
                placement = self.placements[position]
                alpha_composite_at(canvas, pixels, (placement.left, placement.top))

        if self.size == self.natural_size:
            return canvas
        resized = canvas.resize(self.size, RESAMPLING[self.options.interpolation])
        canvas.close()
        output = new_canvas(self.size, background)
        output.alpha_composite(resized)
        return output


def composite(
    animations: Sequence[DecodedAnimation],
    watermarks: Sequence[Watermark] = (),
    options: MergeOptions = DEFAULT_OPTIONS,
    *,
    on_frame: Optional[FrameCallback] = None,
    should_cancel: Optional[CancelCheck] = None,
) -> MergedSequence:
    """
    Composite animations and watermarks into a merged frame sequence.

    Args:
        animations: Decoded inputs in display order
        watermarks: Watermarks in list order; ties in layer order keep this order
        options: Layout, background and output size settings
        on_frame: Called with (frames done, total) after each frame
        should_cancel: Polled before each frame; True aborts the job

    Returns:
        MergedSequence with every output frame rendered

    Raises:
        NoInputsError: ``animations`` is empty
        InvalidDimensionsError: Column count or output size is unusable
        JobCancelledError: ``should_cancel`` returned True
    """
    started = time.perf_counter()
    compositor = Compositor(animations, watermarks, options)
    total = compositor.frame_count
    frames: List[Image.Image] = []
    try:
        for index in range(total):
            if should_cancel is not None and should_cancel():
                raise JobCancelledError(f"Cancelled after {index} of {total} frames")
            frames.append(compositor.render_frame(index))
            if on_frame is not None:
                on_frame(index + 1, total)
    except BaseException:
        for frame in frames:
            frame.close()
        raise

    requires_transparency = options.background == BackgroundPolicy.TRANSPARENT or any(
        has_transparency(frame) for frame in frames
    )
    logger.debug(
        "Composited %d frames at %dx%d in %.2fs",
        total, compositor.size[0], compositor.size[1], time.perf_counter() - started,
    )
    return MergedSequence(
        width=compositor.size[0],
        height=compositor.size[1],
        frames=frames,
        placements=compositor.placements,
        requires_transparency=requires_transparency,
    )
