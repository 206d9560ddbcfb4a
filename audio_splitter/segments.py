"""Derive the named segment partition from markers."""

from audio_splitter.constants import (
    MIN_SEGMENT_SECONDS,
    BOUNDARY_EPSILON,
    NAME_MATCH_DECIMALS,
    DEFAULT_SEGMENT_NAME,
)
from audio_splitter.models import Marker, Segment

# float slack so a pair exactly MIN_SEGMENT_SECONDS long is kept
_LENGTH_SLACK = 1e-9


def default_name(index: int) -> str:
    """Default name for the 1-based segment index."""
    return DEFAULT_SEGMENT_NAME.format(index=index)


def _boundary_key(start: float, end: float) -> tuple[str, str]:
    return (f"{start:.{NAME_MATCH_DECIMALS}f}", f"{end:.{NAME_MATCH_DECIMALS}f}")


def build_boundaries(total_duration: float, marker_times) -> list[float]:
    """Return [0, interior markers..., total_duration].

    Markers within BOUNDARY_EPSILON of either end fold into that end rather
    than adding a second boundary next to it. Markers outside the audio are
    ignored.
    """
    interior = sorted(
        t for t in marker_times
        if BOUNDARY_EPSILON < t < total_duration - BOUNDARY_EPSILON
    )
    return [0.0] + interior + [float(total_duration)]


def split_ranges(boundaries: list[float]) -> list[tuple[float, float]]:
    """Turn boundaries into (start, end) ranges, absorbing slivers.

    A pair shorter than MIN_SEGMENT_SECONDS is skipped and its start carried
    forward so the next pair covers the gap. A sliver at the very end has no
    successor and is folded into the last range instead.
    """
    ranges = []
    start = boundaries[0]
    for end in boundaries[1:]:
        if end - start < MIN_SEGMENT_SECONDS - _LENGTH_SLACK:
            continue
        ranges.append((start, end))
        start = end
    if ranges and ranges[-1][1] < boundaries[-1]:
        ranges[-1] = (ranges[-1][0], boundaries[-1])
    return ranges


def derive_segments(
    total_duration: float,
    markers,
    previous: list[Segment] | tuple = (),
) -> list[Segment]:
    """Recompute the full segment list.

    markers may be Marker objects or plain times. Names from `previous` are
    reused only where a segment's start and end are unchanged to the
    millisecond; everything else gets the default "片段 N" name. The result
    is always a new list covering [0, total_duration) with no overlaps.
    """
    if not total_duration or total_duration < MIN_SEGMENT_SECONDS:
        return []

    times = [m.time if isinstance(m, Marker) else float(m) for m in markers]
    ranges = split_ranges(build_boundaries(total_duration, times))

    previous_names = {_boundary_key(s.start, s.end): s.name for s in previous}

    segments = []
    used_ids = set()
    for index, (start, end) in enumerate(ranges, start=1):
        segment_id = f"segment-{index}"
        suffix = 0
        while segment_id in used_ids:
            suffix += 1
            segment_id = f"segment-{index}-{suffix}"
        used_ids.add(segment_id)

        name = previous_names.get(_boundary_key(start, end)) or default_name(index)
        segments.append(Segment(id=segment_id, name=name, start=start, end=end))

    return segments
