"""Slice segments out of the source, encode them as MP3 and bundle them."""

import io
import json
import logging
import math
import os
import re
import shutil
import zipfile
from datetime import datetime, timezone

import numpy as np
from pydub import AudioSegment
from pydub.exceptions import CouldntEncodeError

from audio_splitter.constants import (
    ARCHIVE_SUFFIX,
    DEFAULT_ARCHIVE_STEM,
    ENCODE_BLOCK_SIZE,
    FALLBACK_FILENAME,
    OUTPUT_BITRATE,
    OUTPUT_EXTENSION,
    VERSION,
)
from audio_splitter.errors import (
    ArchiveError,
    BatchExportError,
    EncodeError,
    EncoderUnavailableError,
    ExportCancelled,
    StateError,
    ValidationError,
)
from audio_splitter.models import AudioSource, ExportUnit, Segment

logger = logging.getLogger(__name__)

_RESERVED_CHARS_RE = re.compile(r'[\/\\?%*:|"<>\x00-\x1f]')


def sanitize_filename(name: str) -> str:
    """Replace characters that are reserved in file names with underscores.

    "Intro: part 1/2" → "Intro_ part 1_2"
    """
    safe = _RESERVED_CHARS_RE.sub("_", name or "").strip()
    return safe or FALLBACK_FILENAME


def archive_name(source_name: str | None) -> str:
    """Archive filename for a batch export of source_name."""
    stem = sanitize_filename(source_name) if source_name else DEFAULT_ARCHIVE_STEM
    return f"{stem}{ARCHIVE_SUFFIX}"


def check_encoder() -> str:
    """Return the ffmpeg path pydub will use, or raise EncoderUnavailableError."""
    path = shutil.which(AudioSegment.converter)
    if not path:
        raise EncoderUnavailableError(
            "MP3 encoder unavailable: ffmpeg is required but not found"
        )
    return path


def sample_range(segment: Segment, sample_rate: int) -> tuple[int, int]:
    """Frame-accurate [start, end) for a segment; always at least one frame."""
    start = math.floor(segment.start * sample_rate)
    end = math.floor(segment.end * sample_rate)
    return start, start + max(1, end - start)


def render_segment(segment: Segment, source: AudioSource) -> np.ndarray:
    """Copy exactly the segment's frames out of the source.

    The result is a new (channels, frames) array, zero-padded if the range
    runs past the end of the buffer, so no neighbouring audio leaks in and
    the source is never shared.
    """
    start, end = sample_range(segment, source.sample_rate)
    rendered = np.zeros((source.channel_count, end - start), dtype=np.float32)
    available = source.samples[:, start:min(end, source.frame_count)]
    rendered[:, :available.shape[1]] = available
    return rendered


def to_int16_interleaved(block: np.ndarray) -> np.ndarray:
    """Float (channels, frames) → interleaved int16, frame by frame."""
    clipped = np.clip(block, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return scaled.astype(np.int16).T.reshape(-1)


def encode_mp3(
    samples: np.ndarray,
    sample_rate: int,
    bitrate: str = OUTPUT_BITRATE,
    block_size: int = ENCODE_BLOCK_SIZE,
    should_cancel=None,
) -> bytes:
    """Encode a channel-major float matrix as MP3 bytes.

    Float samples are converted to interleaved int16 PCM in blocks of
    block_size frames, the last block possibly shorter; the same path serves
    mono and stereo. block_size only paces that conversion: the joined PCM
    is handed to ffmpeg (through pydub) in a single call, which does its own
    MP3 framing.

    should_cancel is an optional callable checked before each block; when
    it returns True, ExportCancelled is raised and ffmpeg is never started.
    """
    check_encoder()
    samples = np.atleast_2d(samples)
    channels, frames = samples.shape
    if channels not in (1, 2):
        raise EncodeError(f"MP3 supports mono or stereo, got {channels} channels")

    pcm = bytearray()
    for offset in range(0, frames, block_size):
        if should_cancel is not None and should_cancel():
            raise ExportCancelled(f"Encoding cancelled at frame {offset}/{frames}")
        pcm += to_int16_interleaved(samples[:, offset:offset + block_size]).tobytes()

    audio = AudioSegment(
        data=bytes(pcm),
        sample_width=2,
        frame_rate=sample_rate,
        channels=channels,
    )
    out = io.BytesIO()
    try:
        audio.export(out, format="mp3", bitrate=bitrate)
    except CouldntEncodeError as e:
        raise EncodeError(f"MP3 encoding failed: {e}") from e
    return out.getvalue()


def segment_filename(segment: Segment) -> str:
    name = segment.name or f"{FALLBACK_FILENAME}_{segment.id}"
    return sanitize_filename(name) + OUTPUT_EXTENSION


def export_one(
    segment: Segment,
    source: AudioSource | None,
    bitrate: str = OUTPUT_BITRATE,
) -> ExportUnit:
    """Render and encode one segment. Returns its filename and MP3 bytes."""
    if source is None:
        raise StateError("No audio loaded: nothing to export")
    samples = render_segment(segment, source)
    data = encode_mp3(samples, source.sample_rate, bitrate=bitrate)
    return ExportUnit(name=segment_filename(segment), data=data)


def _unique_name(name: str, taken: set) -> str:
    if name not in taken:
        return name
    stem, ext = os.path.splitext(name)
    n = 2
    while f"{stem} ({n}){ext}" in taken:
        n += 1
    return f"{stem} ({n}){ext}"


def write_archive(units: list[ExportUnit]) -> bytes:
    """Bundle export units into one ZIP, in the given order.

    Repeated filenames get " (2)", " (3)"... so no entry overwrites another.
    """
    out = io.BytesIO()
    taken = set()
    try:
        with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for unit in units:
                name = _unique_name(unit.name, taken)
                taken.add(name)
                zf.writestr(name, unit.data)
    except (OSError, zipfile.LargeZipFile) as e:
        raise ArchiveError(f"Could not write archive: {e}") from e
    return out.getvalue()


def export_all(
    segments: list[Segment],
    source: AudioSource | None,
    progress=None,
    cancel=None,
    bitrate: str = OUTPUT_BITRATE,
) -> bytes:
    """Export every segment into a single ZIP archive.

    Segments are processed one at a time in ascending start order, which is
    also the archive entry order. After each segment progress(processed,
    total, percent) is called if given. `cancel` is an optional
    threading.Event checked between segments.

    Any failure aborts the batch with BatchExportError naming the segment
    and step. Returns the archive bytes.
    """
    if source is None:
        raise StateError("No audio loaded: nothing to export")
    if not segments:
        raise ValidationError("No segments to export")
    check_encoder()

    ordered = sorted(segments, key=lambda s: s.start)
    total = len(ordered)
    units = []
    should_cancel = cancel.is_set if cancel is not None else None

    for processed, segment in enumerate(ordered, start=1):
        if cancel is not None and cancel.is_set():
            raise ExportCancelled(f"Export cancelled after {processed - 1}/{total} segments")

        step = "render"
        try:
            samples = render_segment(segment, source)
            step = "encode"
            data = encode_mp3(
                samples, source.sample_rate, bitrate=bitrate, should_cancel=should_cancel,
            )
        except ExportCancelled:
            raise
        except Exception as e:
            raise BatchExportError(segment, step, e) from e
        units.append(ExportUnit(name=segment_filename(segment), data=data))

        percent = round(processed / total * 100)
        logger.info("Exported %s (%d/%d) - %d%%", segment.name, processed, total, percent)
        if progress is not None:
            progress(processed, total, percent)

    try:
        return write_archive(units)
    except ArchiveError as e:
        # Reported against the last segment, whose entry completes the archive
        raise BatchExportError(ordered[-1], "archive", e) from e


def save_bytes(data: bytes, directory: str, filename: str) -> str:
    """Write data to directory/filename and return the path."""
    path = os.path.join(directory, filename)
    try:
        os.makedirs(directory, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
    except OSError as e:
        raise ArchiveError(f"Could not save {path}: {e}") from e
    return path


def write_manifest(
    final_dir: str,
    slug: str,
    source_path: str,
    output_file: str,
    segments: list[Segment],
    settings: dict,
) -> str:
    """Write final/output.json describing what was exported and how."""
    manifest = {
        "project": slug,
        "source": source_path,
        "output": output_file,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "splitter_version": VERSION,
        "settings": settings,
        "segments": [
            {**seg.to_dict(), "file": segment_filename(seg)}
            for seg in sorted(segments, key=lambda s: s.start)
        ],
        "stats": {
            "segments": len(segments),
            "duration_seconds": round(sum(s.duration for s in segments), 1),
        },
    }
    path = os.path.join(final_dir, "output.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, ensure_ascii=False)
    return path
