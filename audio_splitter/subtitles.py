"""Boundary sources: SRT/WebVTT subtitle cues and chapter lists."""

import json
import os
import re
from dataclasses import dataclass

from audio_splitter.errors import InputError

_SRT_TIME_RE = re.compile(r"(\d{2}:\d{2}:\d{2},\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2},\d{3})")
_VTT_TIME_RE = re.compile(r"(\d{2}:\d{2}:\d{2}\.\d{3})\s*-->\s*(\d{2}:\d{2}:\d{2}\.\d{3})")


@dataclass
class Cue:
    start: float
    end: float
    text: str


@dataclass
class Chapter:
    start: float
    end: float
    title: str


def parse_timestamp(ts: str) -> float:
    """'hh:mm:ss.mmm' or 'hh:mm:ss,mmm' → seconds."""
    hours, minutes, seconds = ts.replace(",", ".").split(":")
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_srt(content: str) -> list[Cue]:
    """Parse SRT blocks; blocks without a timing line or text are skipped."""
    cues = []
    for block in re.split(r"\r?\n\r?\n", content):
        lines = [line for line in block.splitlines() if line.strip()]
        if len(lines) < 3:
            continue
        match = _SRT_TIME_RE.search(lines[1])
        if not match:
            continue
        text = " ".join(lines[2:]).strip()
        if text:
            cues.append(Cue(parse_timestamp(match.group(1)), parse_timestamp(match.group(2)), text))
    return cues


def parse_vtt(content: str) -> list[Cue]:
    """Parse WebVTT cues; the header block up to the first blank line is skipped."""
    lines = content.splitlines()
    i = 0
    while i < len(lines) and lines[i].strip():
        i += 1

    cues = []
    while i < len(lines):
        while i < len(lines) and not lines[i].strip():
            i += 1
        if i >= len(lines):
            break
        # Optional cue identifier
        if not _VTT_TIME_RE.search(lines[i]) and i + 1 < len(lines):
            i += 1
        match = _VTT_TIME_RE.search(lines[i])
        i += 1
        if not match:
            continue

        text_lines = []
        while i < len(lines) and lines[i].strip():
            text_lines.append(lines[i].strip())
            i += 1
        text = " ".join(text_lines)
        if text:
            cues.append(Cue(parse_timestamp(match.group(1)), parse_timestamp(match.group(2)), text))
    return cues


def parse_subtitles(content: str, fmt: str) -> list[Cue]:
    if fmt == "vtt":
        return parse_vtt(content)
    if fmt == "srt":
        return parse_srt(content)
    raise InputError(f"Unsupported subtitle format: {fmt}")


def load_subtitles(path: str) -> list[Cue]:
    """Read an .srt or .vtt file."""
    ext = os.path.splitext(path)[1].lower().lstrip(".")
    if ext not in ("srt", "vtt"):
        raise InputError(f"Unsupported subtitle file: {path} (expected .srt or .vtt)")
    if not os.path.isfile(path):
        raise InputError(f"File not found: {path}")
    with open(path, encoding="utf-8-sig") as f:
        return parse_subtitles(f.read(), ext)


def load_chapters(path: str) -> list[Chapter]:
    """Read chapters from JSON.

    Accepts {"chapters": [{"start", "end", "title"}, ...]} (the summary
    format) or a bare list of chapter objects. Returned in start order.
    """
    if not os.path.isfile(path):
        raise InputError(f"File not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise InputError(f"Invalid chapter JSON in {path}: {e}") from e

    items = data.get("chapters", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise InputError(f"No chapter list found in {path}")
    try:
        chapters = [
            Chapter(float(c["start"]), float(c["end"]), str(c.get("title", "")))
            for c in items
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise InputError(f"Malformed chapter entry in {path}: {e}") from e
    return sorted(chapters, key=lambda c: c.start)
