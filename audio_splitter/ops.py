"""Segment editing: merge, delete, rename and batch rename."""

import logging
import warnings

from audio_splitter.constants import BOUNDARY_EPSILON
from audio_splitter.errors import ValidationError, EmptyNameWarning
from audio_splitter.models import Segment
from audio_splitter.segments import default_name
from audio_splitter.session import Session

logger = logging.getLogger(__name__)


def _selected(session: Session, ids) -> list[Segment]:
    """Resolve ids to segments sorted by start (duplicates collapsed)."""
    unique = list(dict.fromkeys(ids))
    return sorted((session.get_segment(i) for i in unique), key=lambda s: s.start)


def merge_selected(session: Session, ids) -> Segment:
    """Merge two or more adjacent segments into one.

    Removes the markers on the boundaries between the selected segments and
    re-derives. Raises ValidationError for fewer than two ids or for a
    selection with a gap (an unselected segment in between).
    """
    segments = _selected(session, ids)
    if len(segments) < 2:
        raise ValidationError("Select at least two contiguous segments to merge")

    for prev, curr in zip(segments, segments[1:]):
        if abs(prev.end - curr.start) > BOUNDARY_EPSILON:
            raise ValidationError(
                f"segments not contiguous: '{prev.name}' ends at {prev.end:.3f}s "
                f"but '{curr.name}' starts at {curr.start:.3f}s"
            )

    for seg in segments[:-1]:
        if session.markers.remove_near(seg.end) is None:
            logger.warning("No marker found at boundary %.3fs", seg.end)
    session.refresh()

    start = segments[0].start
    for seg in session.segments:
        if abs(seg.start - start) <= BOUNDARY_EPSILON:
            return seg
    # start was an absorbed sliver boundary; fall back to the covering segment
    return next(s for s in session.segments if s.start <= start < s.end)


def delete_selected(session: Session, ids) -> int:
    """Delete segments by removing the marker at each one's end.

    Each deleted segment is absorbed into its successor on re-derivation.
    The last segment ends at the end of the audio, has no end marker, and
    is left as is. Returns the number of markers removed.
    """
    removed = 0
    for seg in _selected(session, ids):
        if session.markers.remove_near(seg.end) is not None:
            removed += 1
    session.refresh()
    return removed


def rename(session: Session, segment_id: str, new_name: str) -> str:
    """Rename one segment and return the name actually applied.

    A blank name resets the segment to its default "片段 N" name and emits
    an EmptyNameWarning.
    """
    index = session.index_of(segment_id)
    segment = session.segments[index]
    name = (new_name or "").strip()
    if not name:
        name = default_name(index + 1)
        warnings.warn(
            f"Segment name cannot be empty; reset to '{name}'",
            EmptyNameWarning,
            stacklevel=2,
        )
    segment.name = name
    return name


def expand_rename_lines(lines) -> list[str]:
    """Turn batch-rename input into a flat list of names.

    "Alice hello/world" expands to ["Alice hello_0", "Alice world_1"]; other
    non-blank lines are used as-is.
    """
    if isinstance(lines, str):
        lines = lines.splitlines()

    names = []
    for line in lines:
        trimmed = line.strip()
        if not trimmed:
            continue
        parts = trimmed.split(" ")
        if "/" in trimmed and len(parts) > 1:
            speaker = parts[0]
            rest = " ".join(parts[1:])
            if "/" in rest:
                names.extend(
                    f"{speaker} {alt.strip()}_{i}"
                    for i, alt in enumerate(rest.split("/"))
                )
                continue
        names.append(trimmed)
    return names


def batch_rename(session: Session, lines) -> int:
    """Apply names positionally to the current segments.

    Extra names are ignored; segments past the end of the list keep their
    names. Returns how many segments were renamed.
    """
    names = expand_rename_lines(lines)
    if not names:
        raise ValidationError("Enter at least one name")

    applied = 0
    for segment, name in zip(session.segments, names):
        segment.name = name
        applied += 1
    return applied
