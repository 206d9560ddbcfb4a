"""Silence-based split point detection."""

import logging

import numpy as np

from audio_splitter.constants import (
    ANALYSIS_BLOCK_SECONDS,
    DEFAULT_THRESHOLD_DB,
    DEFAULT_MIN_SILENCE,
    THRESHOLD_DB_RANGE,
    MIN_SILENCE_RANGE,
)
from audio_splitter.errors import StateError, ValidationError
from audio_splitter.models import AudioSource

logger = logging.getLogger(__name__)


def db_to_amplitude(db: float) -> float:
    """Convert a dBFS value to a linear amplitude (0 dB → 1.0)."""
    return 10 ** (db / 20)


def validate_detection_params(threshold_db: float, min_silence_duration: float) -> None:
    """Raise ValidationError if either parameter is outside its allowed range."""
    low, high = THRESHOLD_DB_RANGE
    if not low <= threshold_db <= high:
        raise ValidationError(f"threshold_db must be between {low} and {high} dB, got {threshold_db}")
    low, high = MIN_SILENCE_RANGE
    if not low <= min_silence_duration <= high:
        raise ValidationError(
            f"min_silence_duration must be between {low} and {high} s, got {min_silence_duration}"
        )


def block_peaks(samples: np.ndarray, block_size: int) -> tuple[np.ndarray, np.ndarray]:
    """Return (block_starts, peak_amplitude_per_block).

    The final block may be shorter than block_size; it is still analysed.
    """
    if len(samples) == 0:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.float32)
    starts = np.arange(0, len(samples), block_size)
    peaks = np.maximum.reduceat(np.abs(samples), starts)
    return starts, peaks


def detect_silence(
    source: AudioSource | None,
    threshold_db: float = DEFAULT_THRESHOLD_DB,
    min_silence_duration: float = DEFAULT_MIN_SILENCE,
    channel: int = 0,
) -> list[float]:
    """Find split points in the middle of long silences.

    Walks the reference channel in 50ms blocks. A block is silent when its
    peak amplitude is below the threshold; consecutive silent blocks form a
    run. A run that is ended by a loud block and spans at least
    min_silence_duration yields one split time at its midpoint. A run still
    open at the end of the buffer yields nothing.

    Pure: the source is only read and no markers are touched.
    Returns split times in seconds, ascending.
    """
    if source is None:
        raise StateError("No audio loaded: load a file before detecting silence")
    validate_detection_params(threshold_db, min_silence_duration)
    if not 0 <= channel < source.channel_count:
        raise ValidationError(f"channel {channel} out of range for {source.channel_count}-channel audio")

    sample_rate = source.sample_rate
    threshold = db_to_amplitude(threshold_db)
    min_silence_samples = int(min_silence_duration * sample_rate)
    block_size = max(1, int(sample_rate * ANALYSIS_BLOCK_SECONDS))

    starts, peaks = block_peaks(source.channel(channel), block_size)

    split_points = []
    run_start = None
    for block_start, peak in zip(starts.tolist(), peaks.tolist()):
        if peak < threshold:
            if run_start is None:
                run_start = block_start
            continue
        if run_start is not None:
            span = block_start - run_start
            if span >= min_silence_samples:
                split_points.append((run_start + span // 2) / sample_rate)
            run_start = None

    logger.info(
        "Detected %d split points (threshold %s dB, min silence %ss)",
        len(split_points), threshold_db, min_silence_duration,
    )
    return split_points
