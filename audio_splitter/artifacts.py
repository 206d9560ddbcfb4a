"""Project directories, JSON artifacts, and saving/restoring sessions."""

import json
import os
import re
import shutil

from audio_splitter.constants import (
    OUTPUT_DIR,
    DEFAULT_THRESHOLD_DB,
    DEFAULT_MIN_SILENCE,
    OUTPUT_BITRATE,
)
from audio_splitter.models import AudioSource
from audio_splitter.session import Session


# Invalidation map: what changed → list of subdirs to delete
INVALIDATION_MAP = {
    "markers": ["final"],
    "names": ["final"],
    "bitrate": ["final"],
    "threshold": [],
    "min-silence": [],
}

DEFAULT_SETTINGS = {
    "threshold_db": DEFAULT_THRESHOLD_DB,
    "min_silence": DEFAULT_MIN_SILENCE,
    "bitrate": OUTPUT_BITRATE,
}


def slug_from_path(media_path: str) -> str:
    """Convert a media filename to an output directory slug.

    "Episode 12 - Intro.mp3" → "episode_12_intro"
    "/path/to/访谈.wav" → "访谈"
    """
    basename = os.path.splitext(os.path.basename(media_path))[0]
    # Replace anything but word characters with underscore, collapse, strip edges
    slug = re.sub(r"\W+", "_", basename).strip("_").lower()
    return slug or "audio"


def init_output_dir(media_path: str, output_base: str = OUTPUT_DIR) -> str:
    """Create output/<slug>/ and its subdirectories. Returns the project dir."""
    project_dir = os.path.join(output_base, slug_from_path(media_path))
    os.makedirs(os.path.join(project_dir, "final"), exist_ok=True)
    return project_dir


def write_artifact(project_dir: str, filename: str, data: dict) -> str:
    """Write JSON artifact to project_dir/filename.

    Returns path to the written file.
    """
    path = os.path.join(project_dir, filename)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return path


def load_artifact(project_dir: str, filename: str) -> dict | None:
    """Read JSON artifact. Returns None if file doesn't exist."""
    path = os.path.join(project_dir, filename)
    if not os.path.exists(path):
        return None
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def write_project(project_dir: str, media_path: str, source: AudioSource) -> str:
    """Record where the audio came from and its format."""
    return write_artifact(project_dir, "project.json", {
        "source": os.path.abspath(media_path),
        "name": source.name,
        "duration": source.duration,
        "sample_rate": source.sample_rate,
        "channels": source.channel_count,
    })


def load_settings(project_dir: str) -> dict:
    """settings.json merged over the defaults."""
    return {**DEFAULT_SETTINGS, **(load_artifact(project_dir, "settings.json") or {})}


def save_session(project_dir: str, session: Session) -> None:
    """Persist markers and the current segment list (names included)."""
    write_artifact(project_dir, "markers.json", {"markers": session.markers.to_list()})
    write_artifact(project_dir, "segments.json", {
        "segments": [seg.to_dict() for seg in session.segments],
    })


def load_session(project_dir: str, source: AudioSource | None = None) -> Session:
    """Rebuild the session saved in project_dir.

    Works without decoded audio; pass `source` for detection or export.
    """
    project = load_artifact(project_dir, "project.json")
    if project is None:
        raise FileNotFoundError(os.path.join(project_dir, "project.json"))
    markers = (load_artifact(project_dir, "markers.json") or {}).get("markers", [])
    segments = (load_artifact(project_dir, "segments.json") or {}).get("segments", [])
    return Session.restore(
        project["duration"],
        markers,
        segments,
        name=project.get("name", ""),
        source=source,
    )


def invalidate_downstream(project_dir: str, change: str) -> list[str]:
    """Delete outputs made stale by a change.

    Returns list of cleared subdirectory names.
    """
    deleted = []
    for subdir in INVALIDATION_MAP.get(change, []):
        path = os.path.join(project_dir, subdir)
        if os.path.exists(path) and os.listdir(path):
            shutil.rmtree(path)
            os.makedirs(path, exist_ok=True)  # recreate empty dir
            deleted.append(subdir)
    return deleted


def get_project_status(project_dir: str) -> dict:
    """Return dict describing the state of each step."""
    status = {}

    project = load_artifact(project_dir, "project.json")
    status["load"] = {"state": "done"} if project else {"state": "pending"}

    markers = (load_artifact(project_dir, "markers.json") or {}).get("markers", [])
    status["markers"] = {"state": "done", "count": len(markers)} if markers else {"state": "pending"}

    segments = (load_artifact(project_dir, "segments.json") or {}).get("segments", [])
    status["segments"] = {"state": "done", "count": len(segments)} if segments else {"state": "pending"}

    final_dir = os.path.join(project_dir, "final")
    files = []
    if os.path.isdir(final_dir):
        files = [f for f in os.listdir(final_dir) if f.endswith((".mp3", ".zip"))]
    status["export"] = {"state": "done", "files": len(files)} if files else {"state": "pending"}

    return status


def list_projects(output_base: str = OUTPUT_DIR) -> list[str]:
    """Sorted slugs of directories under output_base that hold a project.json."""
    if not os.path.exists(output_base):
        return []
    projects = []
    for name in os.listdir(output_base):
        if os.path.exists(os.path.join(output_base, name, "project.json")):
            projects.append(name)
    return sorted(projects)
