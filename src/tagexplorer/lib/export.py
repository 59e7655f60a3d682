"""JSON and CSV exports of the file/tag collection."""
from __future__ import annotations

import csv
import io
import json
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Iterable, Optional

CSV_HEADERS = ["name", "type", "size", "createdAt", "tags"]


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def file_to_dict(f) -> dict:
    return {
        "id": f.id,
        "name": f.name,
        "type": f.media_type,
        "size": f.size,
        "createdAt": _iso(f.created_at),
    }


def tag_to_dict(t) -> dict:
    return {"id": t.id, "name": t.name, "color": t.color}


def export_json(files: Iterable, tags: Iterable, file_tags: Iterable, exported_at: Optional[datetime] = None) -> str:
    exported_at = exported_at or datetime.now(timezone.utc)
    data = {
        "exportedAt": _iso(exported_at),
        "files": [file_to_dict(f) for f in files],
        "tags": [tag_to_dict(t) for t in tags],
        "fileTags": [{"fileId": ft.file_id, "tagId": ft.tag_id} for ft in file_tags],
    }
    return json.dumps(data, indent=2)


def export_csv(files: Iterable, tags: Iterable, file_tags: Iterable) -> str:
    """One row per file with its tag names joined by '; '."""
    tag_names = {t.id: t.name for t in tags}
    names_by_file: dict[int, list[str]] = defaultdict(list)
    for ft in file_tags:
        name = tag_names.get(ft.tag_id)
        if name:
            names_by_file[ft.file_id].append(name)

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for f in files:
        writer.writerow([
            f.name,
            f.media_type,
            "" if f.size is None else f.size,
            _iso(f.created_at) or "",
            "; ".join(names_by_file.get(f.id, [])),
        ])
    return buf.getvalue()


def default_export_filename(fmt: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"tagexplorer-export-{today.isoformat()}.{fmt}"
