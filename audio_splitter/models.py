"""Data models for audio segmentation and export."""

from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True)
class AudioSource:
    """Decoded PCM audio as a channel-major float32 matrix in [-1, 1].

    ``samples`` has shape (channels, frames). The array is made read-only on
    construction so nothing downstream can edit the recording in place.
    """

    sample_rate: int
    samples: np.ndarray = field(repr=False)
    name: str = ""

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        # Always copy: the caller keeps no writable handle on our buffer
        samples = np.array(self.samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples.reshape((1, -1))
        if samples.ndim != 2 or samples.shape[0] == 0:
            raise ValueError(f"samples must be (channels, frames), got shape {samples.shape}")
        samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)

    @property
    def channel_count(self) -> int:
        return self.samples.shape[0]

    @property
    def frame_count(self) -> int:
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return self.frame_count / self.sample_rate

    def channel(self, index: int) -> np.ndarray:
        return self.samples[index]


@dataclass
class Marker:
    id: str
    time: float        # seconds


@dataclass
class Segment:
    id: str
    name: str
    start: float       # seconds
    end: float         # seconds

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "start": self.start,
            "end": self.end,
            "duration": self.duration,
        }


@dataclass
class ExportUnit:
    name: str          # sanitized filename, extension included
    data: bytes = field(repr=False)
