"""The mutable set of split points that drives segmentation."""

import bisect
import itertools
import logging
import secrets

from audio_splitter.constants import MARKER_DEDUPE_SECONDS, BOUNDARY_EPSILON
from audio_splitter.errors import ValidationError
from audio_splitter.models import Marker

logger = logging.getLogger(__name__)


class MarkerSet:
    """Sorted, de-duplicated split points inside [0, total_duration].

    Never holds two markers closer than MARKER_DEDUPE_SECONDS. Callers must
    re-derive segments after every mutation; Session does that for them.
    """

    def __init__(self, total_duration: float):
        self.total_duration = total_duration
        self._markers: list[Marker] = []
        self._counter = itertools.count(1)

    def __len__(self):
        return len(self._markers)

    def __iter__(self):
        return iter(list(self._markers))

    def __contains__(self, marker_id):
        return any(m.id == marker_id for m in self._markers)

    def _new_id(self) -> str:
        return f"marker-{next(self._counter)}-{secrets.token_hex(3)}"

    def times(self) -> list[float]:
        return [m.time for m in self._markers]

    def get(self, marker_id: str) -> Marker:
        for m in self._markers:
            if m.id == marker_id:
                return m
        raise KeyError(marker_id)

    def find_near(self, position: float, tolerance: float = BOUNDARY_EPSILON) -> Marker | None:
        """Return the closest marker strictly within tolerance of position."""
        best = None
        for m in self._markers:
            distance = abs(m.time - position)
            if distance < tolerance and (best is None or distance < abs(best.time - position)):
                best = m
        return best

    def add(self, position: float) -> Marker | None:
        """Insert a marker at position.

        Raises ValidationError when position is outside the audio. Returns
        None without changing anything when another marker is within the
        dedupe window.
        """
        if not 0 <= position <= self.total_duration:
            raise ValidationError(
                f"Marker position {position:.3f}s is outside 0..{self.total_duration:.3f}s"
            )
        if self.find_near(position, MARKER_DEDUPE_SECONDS) is not None:
            logger.debug("Skipping marker at %.3fs: too close to an existing marker", position)
            return None

        marker = Marker(id=self._new_id(), time=float(position))
        index = bisect.bisect_right(self.times(), marker.time)
        self._markers.insert(index, marker)
        return marker

    def remove(self, marker_id: str) -> Marker:
        marker = self.get(marker_id)
        self._markers.remove(marker)
        return marker

    def remove_near(self, position: float, tolerance: float = BOUNDARY_EPSILON) -> Marker | None:
        """Remove the marker sitting at position, if there is one."""
        marker = self.find_near(position, tolerance)
        if marker is not None:
            self._markers.remove(marker)
        return marker

    def clear(self) -> int:
        """Remove every marker. Returns how many were removed."""
        count = len(self._markers)
        self._markers = []
        return count

    def to_list(self) -> list[dict]:
        return [{"id": m.id, "time": m.time} for m in self._markers]

    @classmethod
    def from_list(cls, total_duration: float, data: list[dict]) -> "MarkerSet":
        """Rebuild from to_list() output, re-applying range and dedupe rules."""
        markers = cls(total_duration)
        for item in sorted(data, key=lambda d: d["time"]):
            time = item["time"]
            if not 0 <= time <= total_duration or markers.find_near(time, MARKER_DEDUPE_SECONDS):
                continue
            markers._markers.append(Marker(id=item.get("id") or markers._new_id(), time=float(time)))
        return markers
