"""Tests for the export pipeline (Layer 3)."""

import io
import json
import os
import threading
import zipfile
from unittest.mock import patch

import numpy as np
import pytest
from pydub import AudioSegment

from audio_splitter.constants import ENCODE_BLOCK_SIZE
from audio_splitter.errors import (
    ArchiveError,
    BatchExportError,
    EncodeError,
    EncoderUnavailableError,
    ExportCancelled,
    StateError,
    ValidationError,
)
from audio_splitter.exporter import (
    archive_name,
    encode_mp3,
    export_all,
    export_one,
    render_segment,
    sample_range,
    sanitize_filename,
    save_bytes,
    to_int16_interleaved,
    write_archive,
    write_manifest,
)
from audio_splitter.models import AudioSource, ExportUnit, Segment
from audio_splitter.segments import derive_segments

from conftest import requires_ffmpeg, SAMPLE_RATE


def _ramp_source(seconds=2.0, channels=1):
    """Each sample's value encodes its own frame index, for bleed checks."""
    frames = int(seconds * SAMPLE_RATE)
    ramp = np.arange(frames, dtype=np.float32) / frames
    return AudioSource(sample_rate=SAMPLE_RATE, samples=np.tile(ramp, (channels, 1)))


def _fake_encode(samples, sample_rate, bitrate="128k", block_size=ENCODE_BLOCK_SIZE,
                 should_cancel=None):
    return f"mp3:{samples.shape[1]}".encode()


# --- Naming ---

def test_sanitize_filename():
    assert sanitize_filename('a/b\\c?d%e*f:g|h"i<j>k') == "a_b_c_d_e_f_g_h_i_j_k"
    assert sanitize_filename("片段 1") == "片段 1"


def test_sanitize_filename_empty_falls_back():
    assert sanitize_filename("") == "片段"
    assert sanitize_filename("   ") == "片段"


def test_archive_name():
    assert archive_name("podcast") == "podcast_分割.zip"
    assert archive_name("") == "音频片段_分割.zip"
    assert archive_name(None) == "音频片段_分割.zip"


# --- Slicing ---

def test_sample_range():
    seg = Segment(id="s", name="n", start=0.5, end=1.25)
    assert sample_range(seg, 16000) == (8000, 20000)


def test_sample_range_minimum_one_frame():
    seg = Segment(id="s", name="n", start=1.0, end=1.0)
    assert sample_range(seg, 16000) == (16000, 16001)


def test_render_exact_range_no_bleed():
    source = _ramp_source()
    seg = Segment(id="s", name="n", start=0.5, end=1.0)
    rendered = render_segment(seg, source)
    assert rendered.shape == (1, 8000)
    assert np.array_equal(rendered, source.samples[:, 8000:16000])


def test_render_returns_copy():
    source = _ramp_source()
    rendered = render_segment(Segment(id="s", name="n", start=0.0, end=0.5), source)
    rendered[0, 0] = 5.0
    assert source.samples[0, 0] == 0.0


def test_render_pads_past_end():
    source = _ramp_source(seconds=1.0)
    rendered = render_segment(Segment(id="s", name="n", start=0.9, end=1.1), source)
    assert rendered.shape == (1, 3200)
    assert np.all(rendered[:, 1600:] == 0)


def test_render_stereo_keeps_channels():
    source = _ramp_source(channels=2)
    rendered = render_segment(Segment(id="s", name="n", start=0.0, end=0.25), source)
    assert rendered.shape == (2, 4000)


# --- PCM conversion ---

def test_to_int16_interleaved_stereo():
    block = np.array([[0.5, -1.0], [1.0, 0.0]], dtype=np.float32)
    out = to_int16_interleaved(block)
    assert out.dtype == np.int16
    assert out.tolist() == [16383, 32767, -32768, 0]


def test_to_int16_clips():
    out = to_int16_interleaved(np.array([[2.0, -3.0]], dtype=np.float32))
    assert out.tolist() == [32767, -32768]


# --- Encoder availability ---

def test_encoder_unavailable(monkeypatch):
    monkeypatch.setattr("audio_splitter.exporter.shutil.which", lambda name: None)
    with pytest.raises(EncoderUnavailableError):
        encode_mp3(np.zeros((1, 100), dtype=np.float32), SAMPLE_RATE)


def test_encoder_unavailable_is_encode_error():
    assert issubclass(EncoderUnavailableError, EncodeError)


def test_encode_rejects_multichannel(monkeypatch):
    monkeypatch.setattr("audio_splitter.exporter.shutil.which", lambda name: "/usr/bin/ffmpeg")
    with pytest.raises(EncodeError):
        encode_mp3(np.zeros((3, 100), dtype=np.float32), SAMPLE_RATE)


def _capture_export(captured):
    def fake_export(self, out_f=None, **kwargs):
        captured.append((self, kwargs))
        out_f.write(b"mp3")
        return out_f
    return fake_export


@pytest.mark.parametrize("channels", [1, 2])
def test_encode_mp3_hands_exact_pcm_to_ffmpeg(monkeypatch, channels):
    """Duration, channel count and samples reach ffmpeg unchanged, partial last block included."""
    monkeypatch.setattr("audio_splitter.exporter.shutil.which", lambda name: "/usr/bin/ffmpeg")
    frames = ENCODE_BLOCK_SIZE * 3 + 17
    samples = np.tile(np.linspace(-1.0, 1.0, frames, dtype=np.float32), (channels, 1))
    captured = []

    with patch.object(AudioSegment, "export", autospec=True, side_effect=_capture_export(captured)):
        data = encode_mp3(samples, SAMPLE_RATE, bitrate="192k")

    assert data == b"mp3"
    audio, kwargs = captured[0]
    assert kwargs == {"format": "mp3", "bitrate": "192k"}
    assert audio.channels == channels
    assert audio.frame_rate == SAMPLE_RATE
    assert audio.sample_width == 2
    assert audio.frame_count() == frames
    assert audio.raw_data == to_int16_interleaved(samples).tobytes()


def test_encode_mp3_cancel_skips_ffmpeg(monkeypatch):
    monkeypatch.setattr("audio_splitter.exporter.shutil.which", lambda name: "/usr/bin/ffmpeg")
    with patch.object(AudioSegment, "export", autospec=True) as mock_export:
        with pytest.raises(ExportCancelled):
            encode_mp3(np.zeros((1, 5000), dtype=np.float32), SAMPLE_RATE,
                       should_cancel=lambda: True)
    mock_export.assert_not_called()


def test_export_one_frame_count_matches_segment(monkeypatch):
    """Segment duration maps to exactly that many frames handed to the encoder."""
    monkeypatch.setattr("audio_splitter.exporter.shutil.which", lambda name: "/usr/bin/ffmpeg")
    source = _ramp_source(channels=2)
    seg = Segment(id="segment-2", name="mid", start=0.25, end=1.5)
    captured = []

    with patch.object(AudioSegment, "export", autospec=True, side_effect=_capture_export(captured)):
        export_one(seg, source)

    audio, _ = captured[0]
    assert audio.frame_count() == 20000
    assert audio.duration_seconds == pytest.approx(seg.duration)
    assert audio.channels == 2


# --- export_one ---

def test_export_one_without_source():
    seg = Segment(id="s", name="n", start=0.0, end=1.0)
    with patch("audio_splitter.exporter.encode_mp3") as mock_encode:
        with pytest.raises(StateError):
            export_one(seg, None)
    mock_encode.assert_not_called()


def test_export_one_names_file():
    source = _ramp_source()
    seg = Segment(id="segment-1", name="Intro: part 1", start=0.0, end=1.0)
    with patch("audio_splitter.exporter.encode_mp3", side_effect=_fake_encode):
        unit = export_one(seg, source)
    assert unit.name == "Intro_ part 1.mp3"
    assert unit.data == b"mp3:16000"


@requires_ffmpeg
def test_export_one_is_valid_mp3(speech_source):
    """Pydub can reload the exported bytes."""
    seg = Segment(id="segment-1", name="片段 1", start=0.0, end=1.5)
    unit = export_one(seg, speech_source)
    reloaded = AudioSegment.from_file(io.BytesIO(unit.data), format="mp3")
    assert len(reloaded) > 0
    assert reloaded.channels == 1


@requires_ffmpeg
@pytest.mark.parametrize("channels", [1, 2])
def test_export_round_trip_duration(channels):
    """Decoded MP3 length matches the segment within encoder block rounding."""
    sample_rate = 44100
    t = np.arange(3 * sample_rate) / sample_rate
    wave = (0.4 * np.sin(2 * np.pi * 330 * t)).astype(np.float32)
    source = AudioSource(sample_rate=sample_rate, samples=np.tile(wave, (channels, 1)))
    seg = Segment(id="segment-2", name="mid", start=0.5, end=2.0)

    unit = export_one(seg, source)
    reloaded = AudioSegment.from_file(io.BytesIO(unit.data), format="mp3")

    tolerance_ms = 2 * ENCODE_BLOCK_SIZE / sample_rate * 1000
    assert abs(len(reloaded) - seg.duration * 1000) <= tolerance_ms
    assert reloaded.channels == channels


# --- export_all ---

def test_export_all_orders_by_start_and_reports_progress():
    source = _ramp_source()
    segments = derive_segments(source.duration, [0.5, 1.2])
    segments[0].name, segments[1].name, segments[2].name = "c", "a", "b"
    progress = []

    with patch("audio_splitter.exporter.check_encoder"), \
            patch("audio_splitter.exporter.encode_mp3", side_effect=_fake_encode):
        data = export_all(list(reversed(segments)), source,
                          progress=lambda *args: progress.append(args))

    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.namelist() == ["c.mp3", "a.mp3", "b.mp3"]
        assert zf.read("c.mp3") == b"mp3:8000"
    assert progress == [(1, 3, 33), (2, 3, 67), (3, 3, 100)]


def test_export_all_deterministic():
    source = _ramp_source()
    segments = derive_segments(source.duration, [0.5, 1.2])
    with patch("audio_splitter.exporter.check_encoder"), \
            patch("audio_splitter.exporter.encode_mp3", side_effect=_fake_encode):
        first = export_all(segments, source)
        second = export_all(segments, source)
    with zipfile.ZipFile(io.BytesIO(first)) as a, zipfile.ZipFile(io.BytesIO(second)) as b:
        assert a.namelist() == b.namelist()
        assert [a.read(n) for n in a.namelist()] == [b.read(n) for n in b.namelist()]


def test_export_all_failure_names_segment():
    """Second segment fails to encode → batch aborted with segment and step."""
    source = _ramp_source()
    segments = derive_segments(source.duration, [0.5, 1.2])
    calls = []

    def flaky(samples, sample_rate, bitrate="128k", should_cancel=None):
        calls.append(samples.shape)
        if len(calls) == 2:
            raise EncodeError("ffmpeg exploded")
        return b"ok"

    with patch("audio_splitter.exporter.check_encoder"), \
            patch("audio_splitter.exporter.encode_mp3", side_effect=flaky):
        with pytest.raises(BatchExportError) as exc_info:
            export_all(segments, source)

    err = exc_info.value
    assert err.segment is segments[1]
    assert err.step == "encode"
    assert isinstance(err.__cause__, EncodeError)
    assert "片段 2" in str(err)
    assert len(calls) == 2  # third segment never attempted


def test_export_all_cancel_between_segments():
    source = _ramp_source()
    segments = derive_segments(source.duration, [0.5, 1.2])
    cancel = threading.Event()

    def progress(processed, total, percent):
        if processed == 1:
            cancel.set()

    with patch("audio_splitter.exporter.check_encoder"), \
            patch("audio_splitter.exporter.encode_mp3", side_effect=_fake_encode) as mock_encode:
        with pytest.raises(ExportCancelled):
            export_all(segments, source, progress=progress, cancel=cancel)
    assert mock_encode.call_count == 1


def test_export_all_archive_failure():
    source = _ramp_source()
    segments = derive_segments(source.duration, [1.0])
    with patch("audio_splitter.exporter.check_encoder"), \
            patch("audio_splitter.exporter.encode_mp3", side_effect=_fake_encode), \
            patch("audio_splitter.exporter.write_archive", side_effect=ArchiveError("disk full")):
        with pytest.raises(BatchExportError) as exc_info:
            export_all(segments, source)
    assert exc_info.value.step == "archive"
    assert exc_info.value.segment is segments[-1]


def test_export_all_cancel_during_encode():
    """Cancellation seen inside the encoder stops the batch without a BatchExportError."""
    source = _ramp_source()
    segments = derive_segments(source.duration, [1.0])
    cancel = threading.Event()

    def encode(samples, sample_rate, bitrate="128k", should_cancel=None):
        cancel.set()
        if should_cancel():
            raise ExportCancelled("stopped mid-segment")
        return b"ok"

    with patch("audio_splitter.exporter.check_encoder"), \
            patch("audio_splitter.exporter.encode_mp3", side_effect=encode) as mock_encode:
        with pytest.raises(ExportCancelled):
            export_all(segments, source, cancel=cancel)
    assert mock_encode.call_count == 1


def test_export_all_without_source():
    with pytest.raises(StateError):
        export_all([Segment(id="s", name="n", start=0, end=1)], None)


def test_export_all_no_segments():
    with pytest.raises(ValidationError):
        export_all([], _ramp_source())


def test_export_all_checks_encoder_first(monkeypatch):
    monkeypatch.setattr("audio_splitter.exporter.shutil.which", lambda name: None)
    source = _ramp_source()
    with pytest.raises(EncoderUnavailableError):
        export_all(derive_segments(source.duration, []), source)


@requires_ffmpeg
def test_export_all_real_archive(speech_source):
    segments = derive_segments(speech_source.duration, [1.5])
    data = export_all(segments, speech_source)
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.namelist() == ["片段 1.mp3", "片段 2.mp3"]
        for name in zf.namelist():
            audio = AudioSegment.from_file(io.BytesIO(zf.read(name)), format="mp3")
            assert len(audio) > 0


# --- Archive and saving ---

def test_write_archive_duplicate_names():
    units = [ExportUnit("a.mp3", b"1"), ExportUnit("a.mp3", b"2"), ExportUnit("a.mp3", b"3")]
    with zipfile.ZipFile(io.BytesIO(write_archive(units))) as zf:
        assert zf.namelist() == ["a.mp3", "a (2).mp3", "a (3).mp3"]
        assert zf.read("a (2).mp3") == b"2"


def test_save_bytes(tmp_path):
    path = save_bytes(b"data", str(tmp_path / "out"), "x.zip")
    with open(path, "rb") as f:
        assert f.read() == b"data"


def test_save_bytes_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a dir")
    with pytest.raises(ArchiveError):
        save_bytes(b"data", str(blocker), "x.zip")


def test_write_manifest(tmp_path):
    segments = derive_segments(10.0, [4.0])
    path = write_manifest(str(tmp_path), "talk", "/src/talk.wav", "talk_分割.zip",
                          segments, {"bitrate": "128k"})
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    for field in ["project", "source", "output", "generated_at", "splitter_version",
                  "settings", "segments", "stats"]:
        assert field in data, f"Missing field: {field}"
    assert data["segments"][0]["file"] == "片段 1.mp3"
    assert data["stats"]["segments"] == 2
    assert os.path.basename(path) == "output.json"
