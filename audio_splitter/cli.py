"""CLI interface with subcommand routing."""

import argparse
import logging
import os
import sys
import warnings

from audio_splitter.constants import OUTPUT_DIR, VERSION, OUTPUT_EXTENSION
from audio_splitter.artifacts import (
    DEFAULT_SETTINGS,
    init_output_dir,
    slug_from_path,
    write_artifact,
    load_artifact,
    write_project,
    load_settings,
    save_session,
    load_session,
    invalidate_downstream,
    get_project_status,
    list_projects,
)
from audio_splitter.decoder import load_audio
from audio_splitter.detector import validate_detection_params
from audio_splitter.errors import SplitterError
from audio_splitter.exporter import (
    archive_name,
    export_all,
    export_one,
    save_bytes,
    write_manifest,
)
from audio_splitter.ops import merge_selected, delete_selected, rename, batch_rename
from audio_splitter.session import Session
from audio_splitter.subtitles import load_subtitles, load_chapters


def _format_time(seconds: float) -> str:
    """Seconds → m:ss.mmm"""
    minutes, secs = divmod(max(seconds, 0.0), 60)
    return f"{int(minutes)}:{secs:06.3f}"


def _get_project_dir(slug: str) -> str:
    """Get project directory path, verify it exists."""
    project_dir = os.path.join(OUTPUT_DIR, slug)
    if not os.path.isdir(project_dir):
        print(f"Error: Project '{slug}' not found.", file=sys.stderr)
        print("Run 'splitter new <file>' to create a project.", file=sys.stderr)
        raise SystemExit(1)
    if not os.path.exists(os.path.join(project_dir, "project.json")):
        print(f"Error: Project '{slug}' is incomplete (no project.json).", file=sys.stderr)
        raise SystemExit(1)
    return project_dir


def _load_source(project_dir: str):
    """Decode the project's source file again."""
    project = load_artifact(project_dir, "project.json")
    return load_audio(project["source"])


def _print_segments(session):
    if not session.segments:
        print("No segments.")
        return
    for seg in session.segments:
        print(
            f"  {seg.id:<12} {_format_time(seg.start)} → {_format_time(seg.end)}"
            f"  ({seg.duration:.2f}s)  {seg.name}"
        )


def _save(project_dir: str, session, change: str):
    save_session(project_dir, session)
    deleted = invalidate_downstream(project_dir, change)
    if deleted:
        print(f"Invalidated: {', '.join(deleted)} (re-run export)")


def cmd_new(args):
    """Create a new project from an audio or video file."""
    file_path = args.file
    if not os.path.exists(file_path):
        print(f"Error: File not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)

    slug = slug_from_path(file_path)
    if os.path.exists(os.path.join(OUTPUT_DIR, slug, "project.json")):
        print(f"Error: Project '{slug}' already exists.", file=sys.stderr)
        print(f"Use 'splitter status {slug}' to review it.", file=sys.stderr)
        raise SystemExit(1)

    # Decode before creating anything so a bad file leaves no project behind
    source = load_audio(file_path)

    session = Session.from_source(source)

    project_dir = init_output_dir(file_path, output_base=OUTPUT_DIR)
    write_project(project_dir, file_path, source)
    write_artifact(project_dir, "settings.json", dict(DEFAULT_SETTINGS))
    save_session(project_dir, session)

    print(f"Created project: {slug}")
    print(
        f"Loaded {source.name}: {_format_time(source.duration)}, "
        f"{source.sample_rate} Hz, {source.channel_count} channel(s)"
    )
    print(f"Run 'splitter detect {slug}' to find split points, or 'splitter mark {slug} add <seconds>'.")


def cmd_status(args):
    """Show project status."""
    slug = args.slug
    project_dir = _get_project_dir(slug)
    project = load_artifact(project_dir, "project.json")
    settings = load_settings(project_dir)
    status = get_project_status(project_dir)

    print(f"Project: {slug}")
    print(f"Source:  {project.get('source', 'unknown')}")
    print(f"Length:  {_format_time(project.get('duration', 0))}")
    print(
        f"Settings: threshold {settings['threshold_db']} dB, "
        f"min silence {settings['min_silence']}s, bitrate {settings['bitrate']}"
    )
    print("Steps:")
    for step in ["load", "markers", "segments", "export"]:
        info = status.get(step, {"state": "pending"})
        marker = "[done]" if info["state"] == "done" else "[----]"
        details = ""
        if "count" in info:
            details = f" ({info['count']})"
        elif "files" in info:
            details = f" ({info['files']} files)"
        print(f"  {marker} {step:<10}{details}")


def cmd_list(args):
    """List all projects."""
    projects = list_projects(output_base=OUTPUT_DIR)
    if not projects:
        print("No projects found.")
        return
    print("Projects:")
    for name in projects:
        status = get_project_status(os.path.join(OUTPUT_DIR, name))
        marker = "[done]" if status["export"]["state"] == "done" else "[----]"
        print(f"  {marker} {name}")


def cmd_detect(args):
    """Detect silences and place markers at them."""
    project_dir = _get_project_dir(args.slug)
    settings = load_settings(project_dir)
    threshold = args.threshold if args.threshold is not None else settings["threshold_db"]
    min_silence = args.min_silence if args.min_silence is not None else settings["min_silence"]
    validate_detection_params(threshold, min_silence)

    session = load_session(project_dir, source=_load_source(project_dir))
    print(f"Analysing audio (threshold {threshold} dB, min silence {min_silence}s)...")
    added = session.auto_split(threshold, min_silence, replace=not args.keep)
    _save(project_dir, session, "markers")
    print(f"Detection finished: added {added} split points, {len(session.segments)} segments")


def cmd_mark(args):
    """Add, remove or clear markers."""
    project_dir = _get_project_dir(args.slug)
    session = load_session(project_dir)

    if args.action == "add":
        if not args.values:
            print("Error: 'mark add' requires one or more times in seconds", file=sys.stderr)
            raise SystemExit(1)
        for value in args.values:
            try:
                position = float(value)
            except ValueError:
                print(f"Error: Invalid time: {value}", file=sys.stderr)
                raise SystemExit(1)
            marker = session.add_marker(position)
            if marker is None:
                print(f"[skip] {position:.3f}s: a marker already exists within 0.05s")
            else:
                print(f"Added {marker.id} at {_format_time(marker.time)}")
    elif args.action == "remove":
        if not args.values:
            print("Error: 'mark remove' requires one or more marker ids", file=sys.stderr)
            raise SystemExit(1)
        for marker_id in args.values:
            session.remove_marker(marker_id)
            print(f"Removed {marker_id}")
    elif args.action == "clear":
        count = session.clear_markers()
        print(f"Cleared {count} markers")
    else:
        markers = list(session.markers)
        if not markers:
            print("No markers.")
        for m in markers:
            print(f"  {m.id:<22} {_format_time(m.time)}")
        return

    _save(project_dir, session, "markers")


def cmd_segments(args):
    """List the current segments."""
    project_dir = _get_project_dir(args.slug)
    session = load_session(project_dir)
    print(f"Segments ({len(session.segments)}):")
    _print_segments(session)


def cmd_merge(args):
    project_dir = _get_project_dir(args.slug)
    session = load_session(project_dir)
    merged = merge_selected(session, args.ids)
    _save(project_dir, session, "markers")
    print(f"Merged {len(set(args.ids))} segments into {merged.id} ({_format_time(merged.start)} → {_format_time(merged.end)})")


def cmd_delete(args):
    project_dir = _get_project_dir(args.slug)
    session = load_session(project_dir)
    removed = delete_selected(session, args.ids)
    _save(project_dir, session, "markers")
    print(f"Removed {removed} split points, {len(session.segments)} segments remain")


def cmd_rename(args):
    project_dir = _get_project_dir(args.slug)
    session = load_session(project_dir)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        name = rename(session, args.id, " ".join(args.name))
    for w in caught:
        print(f"Warning: {w.message}", file=sys.stderr)
    _save(project_dir, session, "names")
    print(f"Renamed {args.id} → {name}")


def cmd_batch_rename(args):
    project_dir = _get_project_dir(args.slug)
    if not os.path.exists(args.file):
        print(f"Error: File not found: {args.file}", file=sys.stderr)
        raise SystemExit(1)
    with open(args.file, encoding="utf-8") as f:
        text = f.read()
    session = load_session(project_dir)
    applied = batch_rename(session, text)
    _save(project_dir, session, "names")
    print(f"Applied {applied} names")


def cmd_import(args):
    """Split by subtitle cues or chapters."""
    project_dir = _get_project_dir(args.slug)
    if args.chapters or args.file.lower().endswith(".json"):
        points = load_chapters(args.file)
        kind = "chapters"
    else:
        points = load_subtitles(args.file)
        kind = "subtitle cues"
    if not points:
        print(f"Error: No {kind} found in {args.file}", file=sys.stderr)
        raise SystemExit(1)

    session = load_session(project_dir)
    added = session.import_boundaries(points, clear_first=not args.keep)
    _save(project_dir, session, "markers")
    print(f"Imported {len(points)} {kind}: added {added} split points, {len(session.segments)} segments")


def cmd_export(args):
    """Export one segment as MP3 or several as a ZIP archive."""
    project_dir = _get_project_dir(args.slug)
    settings = load_settings(project_dir)
    project = load_artifact(project_dir, "project.json")
    out_dir = args.output or os.path.join(project_dir, "final")

    session = load_session(project_dir, source=_load_source(project_dir))
    if args.segment:
        selected = [session.get_segment(i) for i in args.segment]
    else:
        selected = list(session.segments)
    if not selected:
        print("Error: No segments to export.", file=sys.stderr)
        raise SystemExit(1)

    def report(processed, total, percent):
        print(f"  Exported {processed}/{total} ({percent}%)")

    with session.operation("export"):
        if len(selected) == 1:
            print(f"Exporting {selected[0].name}...")
            unit = export_one(selected[0], session.source, bitrate=settings["bitrate"])
            path = save_bytes(unit.data, out_dir, unit.name)
        else:
            print(f"Exporting {len(selected)} segments...")
            data = export_all(selected, session.source, progress=report, bitrate=settings["bitrate"])
            path = save_bytes(data, out_dir, archive_name(project.get("name")))

    write_manifest(
        out_dir, args.slug, project["source"], os.path.basename(path), selected,
        {"bitrate": settings["bitrate"], "format": OUTPUT_EXTENSION.lstrip(".")},
    )
    print(f"Done: {path}")


def cmd_set(args):
    """Update project settings."""
    project_dir = _get_project_dir(args.slug)
    key, value = args.key, args.value
    settings = load_settings(project_dir)

    valid_keys = {"threshold", "min-silence", "bitrate"}
    if key not in valid_keys:
        print(f"Error: Invalid setting key: {key}", file=sys.stderr)
        print(f"Valid keys: {', '.join(sorted(valid_keys))}", file=sys.stderr)
        raise SystemExit(1)

    if key == "bitrate":
        if not value.rstrip("k").isdigit():
            print(f"Error: Invalid bitrate: {value} (e.g. 128k)", file=sys.stderr)
            raise SystemExit(1)
        settings["bitrate"] = value if value.endswith("k") else f"{value}k"
    else:
        try:
            number = float(value)
        except ValueError:
            print(f"Error: Invalid value: {value}", file=sys.stderr)
            raise SystemExit(1)
        if key == "threshold":
            validate_detection_params(number, settings["min_silence"])
            settings["threshold_db"] = number
        else:
            validate_detection_params(settings["threshold_db"], number)
            settings["min_silence"] = number

    write_artifact(project_dir, "settings.json", settings)
    print(f"Updated: {key} → {value}")
    deleted = invalidate_downstream(project_dir, key)
    if deleted:
        print(f"Invalidated: {', '.join(deleted)} (re-run export)")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="splitter",
        description="Audio Splitter: cut recordings into named segments and export them as MP3",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress details")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    new_parser = subparsers.add_parser("new", help="Create a project from an audio or video file")
    new_parser.add_argument("file", help="Path to the media file")
    new_parser.set_defaults(func=cmd_new)

    status_parser = subparsers.add_parser("status", help="Show project status")
    status_parser.add_argument("slug", help="Project slug (from filename)")
    status_parser.set_defaults(func=cmd_status)

    list_parser = subparsers.add_parser("list", help="List all projects")
    list_parser.set_defaults(func=cmd_list)

    detect_parser = subparsers.add_parser("detect", help="Place split points in silences")
    detect_parser.add_argument("slug", help="Project slug")
    detect_parser.add_argument("--threshold", type=float, help="Silence threshold in dB (-60..-20)")
    detect_parser.add_argument("--min-silence", type=float, help="Minimum silence in seconds (0.2..2.0)")
    detect_parser.add_argument("--keep", action="store_true", help="Keep existing split points")
    detect_parser.set_defaults(func=cmd_detect)

    mark_parser = subparsers.add_parser("mark", help="Add, remove, clear or list split points")
    mark_parser.add_argument("slug", help="Project slug")
    mark_parser.add_argument("action", nargs="?", default="list", choices=["add", "remove", "clear", "list"])
    mark_parser.add_argument("values", nargs="*", help="Times (add) or marker ids (remove)")
    mark_parser.set_defaults(func=cmd_mark)

    segments_parser = subparsers.add_parser("segments", help="List segments")
    segments_parser.add_argument("slug", help="Project slug")
    segments_parser.set_defaults(func=cmd_segments)

    merge_parser = subparsers.add_parser("merge", help="Merge contiguous segments")
    merge_parser.add_argument("slug", help="Project slug")
    merge_parser.add_argument("ids", nargs="+", help="Segment ids")
    merge_parser.set_defaults(func=cmd_merge)

    delete_parser = subparsers.add_parser("delete", help="Delete segments (absorb into the next one)")
    delete_parser.add_argument("slug", help="Project slug")
    delete_parser.add_argument("ids", nargs="+", help="Segment ids")
    delete_parser.set_defaults(func=cmd_delete)

    rename_parser = subparsers.add_parser("rename", help="Rename one segment")
    rename_parser.add_argument("slug", help="Project slug")
    rename_parser.add_argument("id", help="Segment id")
    rename_parser.add_argument("name", nargs="*", help="New name (empty resets to default)")
    rename_parser.set_defaults(func=cmd_rename)

    batch_parser = subparsers.add_parser("batch-rename", help="Rename segments from a text file, one name per line")
    batch_parser.add_argument("slug", help="Project slug")
    batch_parser.add_argument("file", help="Text file with names")
    batch_parser.set_defaults(func=cmd_batch_rename)

    import_parser = subparsers.add_parser("import", help="Split by subtitles (.srt/.vtt) or chapters (.json)")
    import_parser.add_argument("slug", help="Project slug")
    import_parser.add_argument("file", help="Subtitle or chapter file")
    import_parser.add_argument("--chapters", action="store_true", help="Treat file as chapter JSON")
    import_parser.add_argument("--keep", action="store_true", help="Keep existing split points")
    import_parser.set_defaults(func=cmd_import)

    export_parser = subparsers.add_parser("export", help="Export segments as MP3 / ZIP")
    export_parser.add_argument("slug", help="Project slug")
    export_parser.add_argument("--segment", action="append", help="Segment id (repeatable; default: all)")
    export_parser.add_argument("--output", help="Output directory (default: output/<slug>/final)")
    export_parser.set_defaults(func=cmd_export)

    set_parser = subparsers.add_parser("set", help="Update project settings")
    set_parser.add_argument("slug", help="Project slug")
    set_parser.add_argument("key", help="threshold | min-silence | bitrate")
    set_parser.add_argument("value", help="Setting value")
    set_parser.set_defaults(func=cmd_set)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        args.func(args)
    except SplitterError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
