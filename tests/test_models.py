"""Tests for constants and models (Layer 0)."""

import numpy as np
import pytest

from audio_splitter.models import AudioSource, Segment, Marker, ExportUnit
from audio_splitter import constants


def test_audio_source_shape_properties():
    """Channel-major matrix exposes channels, frames and duration."""
    source = AudioSource(sample_rate=8000, samples=np.zeros((2, 16000)))
    assert source.channel_count == 2
    assert source.frame_count == 16000
    assert source.duration == pytest.approx(2.0)


def test_audio_source_mono_vector_promoted():
    """A 1-D array becomes a single channel."""
    source = AudioSource(sample_rate=8000, samples=np.zeros(800))
    assert source.samples.shape == (1, 800)


def test_audio_source_is_read_only():
    """Samples cannot be written in place."""
    source = AudioSource(sample_rate=8000, samples=np.zeros((1, 10)))
    with pytest.raises(ValueError):
        source.samples[0, 0] = 1.0


def test_audio_source_copies_input():
    """Editing the caller's array afterwards does not change the source."""
    data = np.zeros((1, 10), dtype=np.float32)
    source = AudioSource(sample_rate=8000, samples=data)
    data[0, 0] = 1.0
    assert source.samples[0, 0] == 0.0


def test_audio_source_rejects_bad_rate():
    with pytest.raises(ValueError):
        AudioSource(sample_rate=0, samples=np.zeros(10))


def test_segment_duration_and_dict():
    seg = Segment(id="segment-1", name="片段 1", start=1.0, end=3.5)
    assert seg.duration == pytest.approx(2.5)
    assert seg.to_dict() == {
        "id": "segment-1", "name": "片段 1", "start": 1.0, "end": 3.5, "duration": 2.5,
    }


def test_marker_and_export_unit():
    assert Marker(id="m", time=1.5).time == 1.5
    assert ExportUnit(name="a.mp3", data=b"x").data == b"x"


def test_constants_exist():
    """All module-level constants are defined."""
    expected = [
        "MIN_SEGMENT_SECONDS",
        "MARKER_DEDUPE_SECONDS",
        "BOUNDARY_EPSILON",
        "ANALYSIS_BLOCK_SECONDS",
        "DEFAULT_THRESHOLD_DB",
        "DEFAULT_MIN_SILENCE",
        "DEFAULT_SEGMENT_NAME",
        "ENCODE_BLOCK_SIZE",
        "OUTPUT_BITRATE",
        "OUTPUT_DIR",
        "VERSION",
    ]
    for name in expected:
        assert hasattr(constants, name), f"Missing constant: {name}"
