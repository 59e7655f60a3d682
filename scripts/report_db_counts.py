#!/usr/bin/env python
"""Report counts from the project's tables.

This script reads `config.json` (preferring CWD) to find the `database`
setting and supports SQLite paths and SQLAlchemy-compatible DSNs (including
MySQL via `mysql+pymysql://...` if the driver is installed).
"""
import json
from pathlib import Path

from sqlalchemy import text

from tagexplorer.lib.database import get_engine


def load_config():
    cwd_cfg = Path.cwd() / "config.json"
    if cwd_cfg.exists():
        with cwd_cfg.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    project_cfg = Path(__file__).resolve().parents[1] / "config.json"
    if project_cfg.exists():
        with project_cfg.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    return {}


def main():
    cfg = load_config()
    db = cfg.get("database")
    if not db:
        print("No 'database' key found in config.json")
        return 1

    engine = get_engine(db)
    with engine.connect() as conn:
        try:
            total = conn.execute(text("SELECT COUNT(*) FROM files")).scalar()
        except Exception as e:
            print("Error querying files table:", e)
            raise
        trashed = conn.execute(text("SELECT COUNT(*) FROM files WHERE deleted_at IS NOT NULL")).scalar()
        tags = conn.execute(text("SELECT COUNT(*) FROM tags")).scalar()
        links = conn.execute(text("SELECT COUNT(*) FROM file_tags")).scalar()
        unused = conn.execute(text(
            "SELECT COUNT(*) FROM tags WHERE id NOT IN (SELECT DISTINCT tag_id FROM file_tags)"
        )).scalar()

    print(
        f"DB: {db}\nFiles: {total} ({trashed} in trash)\n"
        f"Tags: {tags} ({unused} unused)\nFile-tag links: {links}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
