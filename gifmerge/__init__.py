"""
gifmerge: merge GIF animations into one, with image and text watermarks.
Decoding, composition and encoding all run in memory; the CLI is the only
part that touches the filesystem.
"""

from .compositor import Compositor, MergedSequence, Placement, composite, natural_canvas_size, total_frame_count
from .decoder import decode_gif
from .encoder import build_palette, encode
from .errors import (
    CompositeError,
    DecodeError,
    EmptyAnimationError,
    EncodeError,
    GifMergeError,
    InputTooLargeError,
    InvalidDimensionsError,
    JobCancelledError,
    MalformedContainerError,
    NoInputsError,
    PaletteOverflowError,
)
from .models import DecodedAnimation, Frame
from .options import DEFAULT_OPTIONS, BackgroundPolicy, Interpolation, MergeMode, MergeOptions
from .pipeline import MergePipeline, PipelineState
from .watermark import ImagePayload, RasterLayer, TextPayload, TilingMode, Watermark, rasterize

__all__ = [
    "Compositor",
    "MergedSequence",
    "Placement",
    "composite",
    "natural_canvas_size",
    "total_frame_count",
    "decode_gif",
    "build_palette",
    "encode",
    "GifMergeError",
    "DecodeError",
    "MalformedContainerError",
    "EmptyAnimationError",
    "InputTooLargeError",
    "CompositeError",
    "NoInputsError",
    "InvalidDimensionsError",
    "EncodeError",
    "PaletteOverflowError",
    "JobCancelledError",
    "DecodedAnimation",
    "Frame",
    "DEFAULT_OPTIONS",
    "BackgroundPolicy",
    "Interpolation",
    "MergeMode",
    "MergeOptions",
    "MergePipeline",
    "PipelineState",
    "ImagePayload",
    "RasterLayer",
    "TextPayload",
    "TilingMode",
    "Watermark",
    "rasterize",
]
