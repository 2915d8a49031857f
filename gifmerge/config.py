"""Runtime limits and defaults, overridable through environment variables."""
import os

# Input limits
MAX_INPUT_FILES = int(os.getenv("GIFMERGE_MAX_INPUT_FILES", "10"))
MAX_INPUT_SIZE_MB = int(os.getenv("GIFMERGE_MAX_INPUT_SIZE_MB", "50"))

# Frame timing (milliseconds)
MIN_FRAME_DELAY_MS = int(os.getenv("GIFMERGE_MIN_FRAME_DELAY_MS", "50"))
DEFAULT_FRAME_DELAY_MS = int(os.getenv("GIFMERGE_DEFAULT_FRAME_DELAY_MS", "100"))

# Output limits
MAX_CANVAS_EDGE = int(os.getenv("GIFMERGE_MAX_CANVAS_EDGE", "10000"))
MAX_FRAMES_WITHOUT_CONFIRM = int(os.getenv("GIFMERGE_MAX_FRAMES_WITHOUT_CONFIRM", "200"))

# Upper bound on pixels fed to the palette quantizer
PALETTE_SAMPLE_PIXELS = int(os.getenv("GIFMERGE_PALETTE_SAMPLE_PIXELS", "4000000"))

# Extra directories searched for watermark fonts
FONT_DIRS = [d for d in os.getenv("GIFMERGE_FONT_DIRS", "").split(os.pathsep) if d]
