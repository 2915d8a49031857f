"""Error taxonomy for the merge pipeline.

Every error is terminal for the job that raised it. The pipeline stores and
re-raises them unchanged.
"""


class GifMergeError(Exception):
    """Base class for all pipeline errors."""


class DecodeError(GifMergeError):
    """An input could not be turned into a DecodedAnimation."""


class MalformedContainerError(DecodeError):
    """The GIF header, screen descriptor or block structure is invalid."""


class EmptyAnimationError(DecodeError):
    """The container parsed but no frame decoded."""


class InputTooLargeError(DecodeError):
    """The input exceeds the configured byte limit."""


class CompositeError(GifMergeError):
    """Frame composition failed."""


class NoInputsError(CompositeError):
    """There is nothing to composite."""


class InvalidDimensionsError(CompositeError):
    """Grid or output dimensions are unusable."""


class EncodeError(GifMergeError):
    """GIF bitstream assembly failed."""


class PaletteOverflowError(EncodeError):
    """Quantization could not produce a palette that fits a GIF color table."""


class JobCancelledError(GifMergeError):
    """The job was cancelled at a frame boundary."""
