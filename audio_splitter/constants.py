"""All magic numbers and configuration constants."""

MIN_SEGMENT_SECONDS = 0.05          # shorter boundary pairs are absorbed, not emitted
MARKER_DEDUPE_SECONDS = 0.05        # at most one marker inside this window
BOUNDARY_EPSILON = 0.01             # seconds; a marker this close counts as "at" a boundary
NAME_MATCH_DECIMALS = 3             # boundaries compared to the millisecond for name reuse
ANALYSIS_BLOCK_SECONDS = 0.05       # silence detector block length
DEFAULT_THRESHOLD_DB = -40          # silence threshold
THRESHOLD_DB_RANGE = (-60, -20)
DEFAULT_MIN_SILENCE = 0.5           # seconds of silence needed for a split
MIN_SILENCE_RANGE = (0.2, 2.0)
DEFAULT_SEGMENT_NAME = "片段 {index}"
FALLBACK_FILENAME = "片段"          # used when a sanitized name comes out empty
DEFAULT_ARCHIVE_STEM = "音频片段"
ARCHIVE_SUFFIX = "_分割.zip"
ENCODE_BLOCK_SIZE = 1152            # frames per encode block (one MP3 frame)
OUTPUT_BITRATE = "128k"             # MP3 output bitrate
OUTPUT_EXTENSION = ".mp3"
SUPPORTED_EXTENSIONS = (
    ".mp3", ".wav", ".m4a", ".aac", ".ogg", ".oga", ".flac", ".opus", ".webm",
    ".mp4", ".mov", ".mkv", ".avi",
)
OUTPUT_DIR = "output"
VERSION = "0.1.0"
