import argparse
from pathlib import Path
from typing import Any, Optional
import json
import os
import traceback

from tagexplorer.lib.database import get_engine, get_sessionmaker, init_db
from tagexplorer.lib.errors import TagExplorerError
from tagexplorer.lib.export import default_export_filename, export_csv, export_json
from tagexplorer.lib.filetype import detect_media_type_from_path
from tagexplorer.lib.graph import GraphSnapshot, ViewState, link_opacity, node_opacity
from tagexplorer.lib.storage import LocalBlobStore
from tagexplorer.services.repository import Repository
from tagexplorer.services.tagging import API_KEY_ENV, FALLBACK_TAG, TaggingService, api_key_configured
from tagexplorer.services.upload import UploadPipeline

DEFAULTS = {
    "database": "tagexplorer.db",
    "storage_dir": "blobs",
    "ai": {
        "base_url": "https://ai-gateway.vercel.sh/v1",
        "model": "google/gemini-2.5-flash-lite",
        "max_tokens": 500,
        "timeout": 30.0,
        "max_image_edge": 1024,
    },
    "upload": {"max_retries": 3, "initial_delay": 1.0},
}


def _load_config(path: str, verbose: bool = True) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        if verbose:
            print(f"_load_config: path does not exist: {p}")
        return {}
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        print(f"ERROR: failed to read config file {p}: {e}")
        if verbose:
            traceback.print_exc()
        return {}
    if not isinstance(data, dict):
        print(f"ERROR: config file {p} must contain a JSON object")
        return {}
    if verbose:
        print(f"Config loaded from: {p}")
    return data


def _find_config(explicit: Optional[str]) -> Optional[str]:
    """CLI --config, then ./config.json, then config.json at the project root."""
    if explicit:
        return explicit
    candidate = Path.cwd() / "config.json"
    if candidate.exists():
        return str(candidate)
    project_cfg = Path(__file__).resolve().parents[2] / "config.json"
    if project_cfg.exists():
        return str(project_cfg)
    return None


def _as_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _validate_and_normalize_config(cfg: dict) -> dict:
    out: dict = {
        "database": str(cfg.get("database") or DEFAULTS["database"]),
        "storage_dir": str(cfg.get("storage_dir") or DEFAULTS["storage_dir"]),
    }

    ai_raw = cfg.get("ai") if isinstance(cfg.get("ai"), dict) else {}
    ai_def = DEFAULTS["ai"]
    out["ai"] = {
        "base_url": str(ai_raw.get("base_url") or ai_def["base_url"]),
        "model": str(ai_raw.get("model") or ai_def["model"]),
        "max_tokens": _as_int(ai_raw.get("max_tokens"), ai_def["max_tokens"]),
        "timeout": _as_float(ai_raw.get("timeout"), ai_def["timeout"]),
        "max_image_edge": _as_int(ai_raw.get("max_image_edge"), ai_def["max_image_edge"]),
    }

    up_raw = cfg.get("upload") if isinstance(cfg.get("upload"), dict) else {}
    up_def = DEFAULTS["upload"]
    out["upload"] = {
        "max_retries": max(1, _as_int(up_raw.get("max_retries"), up_def["max_retries"])),
        "initial_delay": max(0.0, _as_float(up_raw.get("initial_delay"), up_def["initial_delay"])),
    }
    return out


def _config(args) -> dict:
    cfg_path = _find_config(getattr(args, "config", None))
    raw = _load_config(cfg_path, verbose=False) if cfg_path else {}
    cfg = _validate_and_normalize_config(raw)
    # CLI overrides (if provided) take precedence over config file
    if getattr(args, "db", None):
        cfg["database"] = args.db
    if getattr(args, "storage_dir", None):
        cfg["storage_dir"] = args.storage_dir
    return cfg


def _open_repo(args, cfg: Optional[dict] = None) -> Repository:
    """Build a Repository for a command.

    Tests inject `args.session` (and optionally `args.storage`); otherwise the
    database and blob directory come from `cfg`, loaded here when not given.
    """
    cfg = cfg or _config(args)
    storage = getattr(args, "storage", None)
    if storage is None:
        storage = LocalBlobStore(cfg["storage_dir"])
    session = getattr(args, "session", None)
    if session is None:
        engine = get_engine(cfg["database"])
        init_db(engine)
        session = get_sessionmaker(engine)()
    return Repository(session, storage=storage)


def _tagger(args, cfg: dict):
    tagger = getattr(args, "tagger", None)
    if tagger is not None:
        return tagger
    ai = cfg["ai"]
    return TaggingService(
        base_url=ai["base_url"],
        model=ai["model"],
        max_tokens=ai["max_tokens"],
        timeout=ai["timeout"],
        max_image_edge=ai["max_image_edge"],
    )


def _split_tags(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [t.strip() for t in value.split(",") if t.strip()]


def upload(args):
    path = Path(args.path)
    if not path.is_file():
        print(f"FATAL: not a file: {path}")
        return 2

    cfg = _config(args)
    repo = _open_repo(args, cfg)
    pipeline = UploadPipeline(
        repo,
        repo.storage,
        _tagger(args, cfg),
        max_retries=cfg["upload"]["max_retries"],
        initial_delay=cfg["upload"]["initial_delay"],
    )

    data = path.read_bytes()
    media_type = getattr(args, "media_type", None) or detect_media_type_from_path(str(path))
    print(f"Analyzing {path.name} ({media_type}, {len(data):,} bytes)...")
    pending = pipeline.analyze(data, path.name, media_type)
    if pending is None:
        print(f"ERROR: {pipeline.error}")
        return 1

    print(f"  existing tags: {', '.join(pending.existing_tags) or '-'}")
    print(f"  new tags:      {', '.join(pending.new_tags) or '-'}")
    if pending.suggested_name:
        print(f"  suggested name: {pending.suggested_name}")

    known = [t.name for t in repo.list_tags()]
    for name in _split_tags(getattr(args, "drop_tags", None)):
        if name.lower() in pending.selected_tags:
            pending.toggle_tag(name)
    for name in _split_tags(getattr(args, "tags", None)):
        pending.add_manual_tag(name, known)
    if getattr(args, "name", None):
        pending.custom_name = args.name
    elif getattr(args, "keep_name", False):
        pending.custom_name = pending.name

    if not getattr(args, "yes", False):
        answer = input(f"Save as '{pending.final_name}' with tags [{', '.join(pending.selected_tags)}]? [Y/n] ")
        if answer.strip().lower() not in ("", "y", "yes"):
            pipeline.discard(pending)
            print("Discarded.")
            return 0

    f = pipeline.confirm(pending)
    print(f"Saved file {f.id}: {f.name} tags=[{', '.join(pending.selected_tags)}]")
    return 0


def _print_files(repo: Repository, files) -> None:
    if not files:
        print("No files")
        return
    for f in files:
        tags = ", ".join(t.name for t in repo.get_file_tags(f.id))
        size = f"{f.size:,}" if f.size is not None else "?"
        print(f"{f.id:>5}  {f.name}  ({f.media_type}, {size} bytes)  [{tags}]")


def files(args):
    repo = _open_repo(args)
    _print_files(repo, repo.list_files())
    return 0


def trash(args):
    repo = _open_repo(args)
    _print_files(repo, repo.list_deleted_files())
    return 0


def rename(args):
    repo = _open_repo(args)
    f = repo.rename_file(args.file_id, args.name)
    print(f"Renamed file {f.id} to {f.name}")
    return 0


def delete(args):
    repo = _open_repo(args)
    repo.soft_delete_file(args.file_id)
    print(f"Moved file {args.file_id} to trash")
    return 0


def restore(args):
    repo = _open_repo(args)
    repo.restore_file(args.file_id)
    print(f"Restored file {args.file_id}")
    return 0


def purge(args):
    repo = _open_repo(args)
    if not repo.permanent_delete_file(args.file_id):
        print(f"File {args.file_id} not found")
        return 1
    print(f"Permanently deleted file {args.file_id}")
    return 0


def empty_trash(args):
    repo = _open_repo(args)
    count = repo.empty_trash()
    print(f"Permanently deleted {count} file(s)")
    return 0


def tags(args):
    repo = _open_repo(args)
    all_tags = repo.list_tags()
    if not all_tags:
        print("No tags")
        return 0
    counts: dict[int, int] = {}
    for ft in repo.list_file_tags():
        counts[ft.tag_id] = counts.get(ft.tag_id, 0) + 1
    for t in all_tags:
        color = f" {t.color}" if t.color else ""
        print(f"{t.id:>5}  {t.name}{color}  ({counts.get(t.id, 0)} files)")
    return 0


def tag_create(args):
    repo = _open_repo(args)
    t = repo.create_tag(args.name, color=getattr(args, "color", None))
    print(f"Tag {t.id}: {t.name}")
    return 0


def tag_rename(args):
    repo = _open_repo(args)
    t = repo.rename_tag(args.tag_id, args.name)
    print(f"Renamed tag {t.id} to {t.name}")
    return 0


def tag_color(args):
    repo = _open_repo(args)
    color = None if args.color.lower() == "none" else args.color
    t = repo.set_tag_color(args.tag_id, color)
    print(f"Tag {t.id} color: {t.color or 'none'}")
    return 0


def tag_merge(args):
    repo = _open_repo(args)
    target = repo.merge_tags(args.source_id, args.target_id)
    print(f"Merged tag {args.source_id} into {target.id} ({target.name})")
    return 0


def tag_delete(args):
    repo = _open_repo(args)
    if not repo.delete_tag(args.tag_id):
        print(f"Tag {args.tag_id} not found")
        return 1
    print(f"Deleted tag {args.tag_id}")
    return 0


def link(args):
    repo = _open_repo(args)
    linked = repo.bulk_link_file_tags(args.file_id, _split_tags(args.tags))
    print(f"File {args.file_id} tagged: {', '.join(t.name for t in linked)}")
    return 0


def unlink(args):
    repo = _open_repo(args)
    if not repo.unlink_file_tag(args.file_id, args.tag_id):
        print(f"File {args.file_id} is not tagged with {args.tag_id}")
        return 1
    print(f"Removed tag {args.tag_id} from file {args.file_id}")
    return 0


def _parse_key(token: str) -> tuple[str, bool]:
    token = token.strip()
    if token.lower().startswith("shift+"):
        return token[len("shift+"):], True
    return token, False


def graph(args):
    """Print the file/tag graph with highlight, search and navigation results."""
    repo = _open_repo(args)
    snapshot = GraphSnapshot.from_rows(repo.list_files(), repo.list_tags(), repo.list_file_tags())
    state = ViewState().hover(getattr(args, "hover", None)).search(getattr(args, "search", None))

    if not snapshot.nodes:
        print("Graph is empty")
        return 0

    highlighted, highlighted_links = snapshot.highlight(state)
    matches = set(snapshot.search(state))
    print(f"Nodes ({len(snapshot.nodes)}):")
    for n in snapshot.nodes:
        marks = []
        if n.id in highlighted:
            marks.append("highlighted")
        if n.id in matches:
            marks.append("match")
        opacity = node_opacity(n.id, state.hovered_id, highlighted)
        suffix = f"  <{', '.join(marks)}>" if marks else ""
        print(f"  {n.id:<12} {n.name}  opacity={opacity:g}{suffix}")

    print(f"Edges ({len(snapshot.edges)}):")
    for e in snapshot.edges:
        opacity = link_opacity(e.source, e.target, state.hovered_id, highlighted_links)
        print(f"  {e.source} -- {e.target}  opacity={opacity:g}")

    if state.filter_active:
        print(f"Search '{state.query}': {len(matches)} match(es)")

    keys = getattr(args, "keys", None)
    if keys:
        print("Navigation:")
        for token in keys.split(","):
            key, shift = _parse_key(token)
            state = snapshot.navigate(state, key, shift)
            label = ("Shift+" if shift else "") + key
            if key == "Enter":
                target = snapshot.open_target(state)
                print(f"  {label:<14} -> open {target.name if target else '(nothing)'}")
                continue
            node = snapshot.get(state.selected_id) if state.selected_id else None
            print(f"  {label:<14} -> {node.id + ' ' + node.name if node else '(none)'}")
    return 0


def export(args):
    repo = _open_repo(args)
    fmt = args.format
    all_files = repo.list_files()
    all_tags = repo.list_tags()
    visible = {f.id for f in all_files}
    links = [ft for ft in repo.list_file_tags() if ft.file_id in visible]
    if fmt == "json":
        content = export_json(all_files, all_tags, links)
    else:
        content = export_csv(all_files, all_tags, links)

    output = getattr(args, "output", None)
    if output == "-":
        print(content)
        return 0
    out_path = Path(output or default_export_filename(fmt))
    out_path.write_text(content, encoding="utf-8")
    print(f"Exported {len(all_files)} file(s) and {len(all_tags)} tag(s) to {out_path}")
    return 0


def check_api_key(args):
    if api_key_configured(os.environ):
        print(f"{API_KEY_ENV} is configured")
        return 0
    print(f"{API_KEY_ENV} is not set; uploads will be tagged '{FALLBACK_TAG}'")
    return 1


def main(argv=None):
    parser = argparse.ArgumentParser(prog="tagexplorer")
    parser.add_argument("--config", help="Path to JSON config file (default: ./config.json)")
    parser.add_argument("--db", help="Override config: database URL or SQLite path")
    parser.add_argument("--storage-dir", help="Override config: directory holding uploaded blobs")
    sub = parser.add_subparsers(dest="cmd")

    p = sub.add_parser("upload", help="Upload an image or PDF and tag it")
    p.add_argument("path")
    p.add_argument("--tags", help="Comma-separated tags to add to the suggestions")
    p.add_argument("--drop-tags", help="Comma-separated suggested tags to leave out")
    p.add_argument("--name", help="Save under this name instead of the suggestion")
    p.add_argument("--keep-name", action="store_true", help="Ignore the suggested name")
    p.add_argument("--media-type", help="Skip content sniffing and use this MIME type")
    p.add_argument("--yes", "-y", action="store_true", help="Save without asking")
    p.set_defaults(func=upload)

    sub.add_parser("files", help="List files").set_defaults(func=files)
    sub.add_parser("trash", help="List files in the trash").set_defaults(func=trash)

    p = sub.add_parser("rename", help="Rename a file")
    p.add_argument("file_id", type=int)
    p.add_argument("name")
    p.set_defaults(func=rename)

    for name, func, help_text in (
        ("delete", delete, "Move a file to the trash"),
        ("restore", restore, "Restore a file from the trash"),
        ("purge", purge, "Permanently delete a file, its blob and its tag links"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("file_id", type=int)
        p.set_defaults(func=func)

    sub.add_parser("empty-trash", help="Permanently delete every trashed file").set_defaults(func=empty_trash)
    sub.add_parser("tags", help="List tags").set_defaults(func=tags)

    p = sub.add_parser("tag-create", help="Create a tag (or return the existing one)")
    p.add_argument("name")
    p.add_argument("--color", help="#rrggbb")
    p.set_defaults(func=tag_create)

    p = sub.add_parser("tag-rename", help="Rename a tag")
    p.add_argument("tag_id", type=int)
    p.add_argument("name")
    p.set_defaults(func=tag_rename)

    p = sub.add_parser("tag-color", help="Set a tag color (#rrggbb or 'none')")
    p.add_argument("tag_id", type=int)
    p.add_argument("color")
    p.set_defaults(func=tag_color)

    p = sub.add_parser("tag-merge", help="Move all files of SOURCE to TARGET and delete SOURCE")
    p.add_argument("source_id", type=int)
    p.add_argument("target_id", type=int)
    p.set_defaults(func=tag_merge)

    p = sub.add_parser("tag-delete", help="Delete a tag and its links")
    p.add_argument("tag_id", type=int)
    p.set_defaults(func=tag_delete)

    p = sub.add_parser("link", help="Tag a file (tags are created if needed)")
    p.add_argument("file_id", type=int)
    p.add_argument("tags", help="Comma-separated tag names")
    p.set_defaults(func=link)

    p = sub.add_parser("unlink", help="Remove a tag from a file")
    p.add_argument("file_id", type=int)
    p.add_argument("tag_id", type=int)
    p.set_defaults(func=unlink)

    p = sub.add_parser("graph", help="Show the file/tag graph")
    p.add_argument("--hover", help="Node id to highlight, e.g. tag:3")
    p.add_argument("--search", help="Highlight nodes whose name contains this text")
    p.add_argument("--keys", help="Comma-separated key presses to replay, e.g. Tab,ArrowDown,Shift+Tab,Enter")
    p.set_defaults(func=graph)

    p = sub.add_parser("export", help="Export files and tags")
    p.add_argument("--format", choices=("json", "csv"), default="json")
    p.add_argument("--output", "-o", help="Output path ('-' for stdout)")
    p.set_defaults(func=export)

    sub.add_parser("check-api-key", help=f"Check that {API_KEY_ENV} is set").set_defaults(func=check_api_key)

    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    try:
        return args.func(args)
    except (TagExplorerError, ValueError) as exc:
        print(f"ERROR: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
