"""Shared fixtures for audio splitter tests."""

import shutil

import numpy as np
import pytest
from pydub import AudioSegment

from audio_splitter.models import AudioSource

SAMPLE_RATE = 16000

# Only the real codec needs ffmpeg; the PCM handed to it is checked without it
requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None, reason="ffmpeg is required for MP3 encoding"
)


def tone(seconds, sample_rate=SAMPLE_RATE, amplitude=0.5, freq=440.0):
    """Sine tone as a 1-D float32 array."""
    t = np.arange(int(round(seconds * sample_rate))) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(seconds, sample_rate=SAMPLE_RATE):
    return np.zeros(int(round(seconds * sample_rate)), dtype=np.float32)


def make_source(*parts, sample_rate=SAMPLE_RATE, channels=1, name="test"):
    """Concatenate 1-D parts into an AudioSource (copied to every channel)."""
    mono = np.concatenate(parts) if parts else np.zeros(0, dtype=np.float32)
    return AudioSource(sample_rate=sample_rate, samples=np.tile(mono, (channels, 1)), name=name)


@pytest.fixture
def speech_source():
    """tone 1s | silence 1s | tone 1s | silence 0.3s | tone 1s  (4.3s total)."""
    return make_source(tone(1.0), silence(1.0), tone(1.0), silence(0.3), tone(1.0))


@pytest.fixture
def stereo_source():
    """2s stereo: left channel tone, right channel quieter tone."""
    left = tone(2.0, amplitude=0.5)
    right = tone(2.0, amplitude=0.25, freq=220.0)
    return AudioSource(sample_rate=SAMPLE_RATE, samples=np.stack([left, right]), name="stereo")


@pytest.fixture
def speech_wav(tmp_path):
    """speech_source pattern written as a 16-bit WAV file."""
    mono = np.concatenate([tone(1.0), silence(1.0), tone(1.0), silence(0.3), tone(1.0)])
    audio = AudioSegment(
        data=(mono * 32767).astype(np.int16).tobytes(),
        sample_width=2,
        frame_rate=SAMPLE_RATE,
        channels=1,
    )
    path = tmp_path / "Interview Take 1.wav"
    audio.export(str(path), format="wav")
    return path
