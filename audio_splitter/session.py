"""Editing session: audio source, markers and the derived segment list."""

import logging
import threading
from contextlib import contextmanager

from audio_splitter.constants import DEFAULT_THRESHOLD_DB, DEFAULT_MIN_SILENCE
from audio_splitter.detector import detect_silence
from audio_splitter.errors import StateError, ValidationError
from audio_splitter.markers import MarkerSet
from audio_splitter.models import AudioSource, Marker, Segment
from audio_splitter.segments import derive_segments

logger = logging.getLogger(__name__)


class Session:
    """Explicit state for one recording.

    Owns the MarkerSet and re-derives the segment list after every marker
    mutation, so `segments` is never stale. Only one long-running operation
    (detect, export) may run at a time; see operation().

    The source may be absent: marker and naming work only needs the
    duration, while detection and export require decoded audio.
    """

    def __init__(self, total_duration: float, source: AudioSource | None = None, name: str = ""):
        self.total_duration = total_duration
        self.source = source
        self.name = name
        self.markers = MarkerSet(total_duration)
        self.segments: list[Segment] = []
        self._busy = threading.Lock()
        self._active = None
        self.refresh()

    @classmethod
    def from_source(cls, source: AudioSource) -> "Session":
        return cls(source.duration, source=source, name=source.name)

    @classmethod
    def restore(
        cls,
        total_duration: float,
        markers: list[dict],
        segments: list[dict] | None = None,
        name: str = "",
        source: AudioSource | None = None,
    ) -> "Session":
        """Rebuild a session from persisted markers and segment names."""
        session = cls(total_duration, source=source, name=name)
        session.markers = MarkerSet.from_list(total_duration, markers)
        previous = [
            Segment(id=s["id"], name=s["name"], start=s["start"], end=s["end"])
            for s in segments or []
        ]
        session.segments = derive_segments(total_duration, session.markers, previous)
        return session

    # --- Derivation ---

    def refresh(self) -> list[Segment]:
        """Re-derive segments from the current markers, carrying names over."""
        self.segments = derive_segments(self.total_duration, self.markers, self.segments)
        return self.segments

    def get_segment(self, segment_id: str) -> Segment:
        for seg in self.segments:
            if seg.id == segment_id:
                return seg
        raise ValidationError(f"Unknown segment id: {segment_id}")

    def index_of(self, segment_id: str) -> int:
        """0-based position of a segment in the current list."""
        for i, seg in enumerate(self.segments):
            if seg.id == segment_id:
                return i
        raise ValidationError(f"Unknown segment id: {segment_id}")

    # --- Marker mutations (each one re-derives) ---

    def add_marker(self, position: float) -> Marker | None:
        marker = self.markers.add(position)
        self.refresh()
        return marker

    def remove_marker(self, marker_id: str) -> Marker:
        try:
            marker = self.markers.remove(marker_id)
        except KeyError:
            raise ValidationError(f"Unknown marker id: {marker_id}") from None
        self.refresh()
        return marker

    def clear_markers(self) -> int:
        count = self.markers.clear()
        self.refresh()
        return count

    def import_boundaries(self, points, clear_first: bool = False) -> int:
        """Add markers from subtitle cues, chapters or bare times.

        points are floats, (start, end, label) triples or objects with
        start/end attributes (Cue, Chapter), in time order. Every
        start becomes a marker; the last end does too when it falls before
        the end of the audio. Points outside the audio are skipped. Returns
        the number of markers actually added.
        """
        times = []
        last_end = None
        for point in points:
            if isinstance(point, (int, float)):
                times.append(float(point))
                continue
            if hasattr(point, "start"):
                start, end = point.start, point.end
            else:
                start, end = point[0], point[1]
            times.append(float(start))
            last_end = float(end)
        if last_end is not None and last_end < self.total_duration:
            times.append(last_end)

        if clear_first:
            self.markers.clear()
        added = 0
        for t in times:
            if not 0 <= t <= self.total_duration:
                logger.debug("Skipping boundary at %.3fs: outside audio", t)
                continue
            if self.markers.add(t) is not None:
                added += 1
        self.refresh()
        return added

    # --- Long-running operations ---

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    @contextmanager
    def operation(self, label: str):
        """Reserve the session for one long-running operation.

        Raises StateError when another operation is already in flight.
        """
        if not self._busy.acquire(blocking=False):
            raise StateError(f"Cannot start {label}: {self._active} is still running")
        self._active = label
        try:
            yield self
        finally:
            self._active = None
            self._busy.release()

    def require_source(self) -> AudioSource:
        if self.source is None:
            raise StateError("No audio loaded: load a file first")
        return self.source

    def auto_split(
        self,
        threshold_db: float = DEFAULT_THRESHOLD_DB,
        min_silence_duration: float = DEFAULT_MIN_SILENCE,
        replace: bool = True,
    ) -> int:
        """Detect silences and place markers at them.

        With replace=True existing markers are cleared first, but only once
        detection has succeeded. Returns the number of markers added.
        """
        with self.operation("silence detection"):
            points = detect_silence(self.source, threshold_db, min_silence_duration)
            if replace:
                self.markers.clear()
            added = sum(1 for t in points if self.markers.add(t) is not None)
            self.refresh()
        logger.info("Auto split added %d markers", added)
        return added
