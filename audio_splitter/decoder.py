"""Decode media files into an AudioSource via pydub/ffmpeg."""

import logging
import os

import numpy as np
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from audio_splitter.constants import SUPPORTED_EXTENSIONS
from audio_splitter.errors import DecodeError, InputError
from audio_splitter.models import AudioSource

logger = logging.getLogger(__name__)


def source_name(path: str) -> str:
    """File name without directory or extension: "/a/Talk 1.mp3" → "Talk 1"."""
    return os.path.splitext(os.path.basename(path))[0]


def audiosegment_to_source(audio: AudioSegment, name: str = "") -> AudioSource:
    """Convert a pydub AudioSegment into a float32 channel-major AudioSource.

    More than two channels are reduced to the first two, since everything
    downstream exports mono or stereo MP3.
    """
    samples = np.array(audio.get_array_of_samples(), dtype=np.float32)
    samples = samples / float(1 << (8 * audio.sample_width - 1))
    samples = samples.reshape((-1, audio.channels)).T
    if audio.channels > 2:
        logger.warning("%s has %d channels; keeping the first two", name or "audio", audio.channels)
        samples = samples[:2]
    return AudioSource(sample_rate=audio.frame_rate, samples=samples, name=name)


def load_audio(path: str) -> AudioSource:
    """Decode an audio or video file.

    Raises InputError for a missing file or unsupported extension and
    DecodeError when ffmpeg cannot decode the contents or finds no audio.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise InputError(f"Unsupported media type: {ext or 'no extension'} ({path})")
    if not os.path.isfile(path):
        raise InputError(f"File not found: {path}")

    # wav is read natively by pydub; everything else is probed by ffmpeg
    fmt = "wav" if ext == ".wav" else None
    try:
        audio = AudioSegment.from_file(path, format=fmt)
    except (CouldntDecodeError, IndexError) as e:
        raise DecodeError(f"Could not decode {path}: file may be corrupt or have no audio track") from e
    except OSError as e:
        raise DecodeError(f"Could not run ffmpeg to decode {path}: {e}") from e

    if audio.frame_count() == 0:
        raise DecodeError(f"No audio frames in {path}")

    source = audiosegment_to_source(audio, name=source_name(path))
    logger.info(
        "Loaded %s: %.2fs, %d Hz, %d channel(s)",
        path, source.duration, source.sample_rate, source.channel_count,
    )
    return source
