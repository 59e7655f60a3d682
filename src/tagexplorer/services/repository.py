import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tagexplorer.lib.errors import NotFoundError, TagConflictError
from tagexplorer.models.file import File
from tagexplorer.models.filetag import FileTag
from tagexplorer.models.tag import Tag

_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


def normalize_tag_name(name: str) -> str:
    """Tags are stored trimmed and lowercased; blank names are rejected."""
    normalized = (name or "").strip().lower()
    if not normalized:
        raise ValueError("tag name must not be blank")
    return normalized


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Repository:
    """Small repository/service layer wrapping SQLAlchemy session operations.

    Accepts a Session instance and, optionally, the blob store holding file
    contents so permanent deletes can remove the stored bytes as well.
    """

    def __init__(self, session: Session, storage=None):
        self.session = session
        self.storage = storage

    def _commit(self) -> None:
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    # File helpers
    def save_file(
        self,
        storage_id: str,
        name: str,
        media_type: str,
        size: Optional[int] = None,
        original_name: Optional[str] = None,
    ) -> File:
        f = File(
            storage_id=storage_id,
            name=name,
            original_name=original_name or name,
            media_type=media_type,
            size=size,
        )
        self.session.add(f)
        self._commit()
        # refresh to populate server defaults (created_at)
        self.session.refresh(f)
        return f

    def get_file_by_id(self, file_id: int) -> Optional[File]:
        return self.session.get(File, file_id)

    def _require_file(self, file_id: int) -> File:
        f = self.get_file_by_id(file_id)
        if f is None:
            raise NotFoundError(f"file {file_id} not found")
        return f

    def list_files(self) -> list[File]:
        return self.session.query(File).filter(File.deleted_at.is_(None)).order_by(File.id).all()

    def list_deleted_files(self) -> list[File]:
        return self.session.query(File).filter(File.deleted_at.isnot(None)).order_by(File.deleted_at, File.id).all()

    def rename_file(self, file_id: int, name: str) -> File:
        name = (name or "").strip()
        if not name:
            raise ValueError("file name must not be blank")
        f = self._require_file(file_id)
        f.name = name
        self._commit()
        return f

    def soft_delete_file(self, file_id: int) -> File:
        f = self._require_file(file_id)
        f.deleted_at = _now()
        self._commit()
        return f

    def restore_file(self, file_id: int) -> File:
        f = self._require_file(file_id)
        f.deleted_at = None
        self._commit()
        return f

    def _purge(self, f: File) -> None:
        # links, then the record; caller commits and then drops the blob
        self.session.query(FileTag).filter_by(file_id=f.id).delete(synchronize_session=False)
        self.session.delete(f)

    def _purge_all(self, files: list[File]) -> None:
        storage_ids = [f.storage_id for f in files]
        try:
            for f in files:
                self._purge(f)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        if self.storage is None:
            return
        for storage_id in storage_ids:
            try:
                self.storage.delete(storage_id)
            except (OSError, ValueError) as e:
                print(f"repository: could not delete blob {storage_id!r}: {e}")

    def permanent_delete_file(self, file_id: int) -> bool:
        f = self.get_file_by_id(file_id)
        if not f:
            return False
        self._purge_all([f])
        return True

    def empty_trash(self) -> int:
        trashed = self.list_deleted_files()
        self._purge_all(trashed)
        return len(trashed)

    # Tag helpers
    def get_tag_by_id(self, tag_id: int) -> Optional[Tag]:
        return self.session.get(Tag, tag_id)

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        return self.session.query(Tag).filter_by(name=normalize_tag_name(name)).first()

    def _require_tag(self, tag_id: int) -> Tag:
        t = self.get_tag_by_id(tag_id)
        if t is None:
            raise NotFoundError(f"tag {tag_id} not found")
        return t

    def list_tags(self) -> list[Tag]:
        return self.session.query(Tag).order_by(Tag.name).all()

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        """Return the tag with this (normalized) name, creating it if needed."""
        normalized = normalize_tag_name(name)
        existing = self.session.query(Tag).filter_by(name=normalized).first()
        if existing:
            return existing
        t = Tag(name=normalized, color=_validate_color(color))
        self.session.add(t)
        try:
            self.session.commit()
        except IntegrityError:
            # Lost a race with another writer creating the same name
            self.session.rollback()
            existing = self.session.query(Tag).filter_by(name=normalized).first()
            if existing is None:
                raise
            return existing
        self.session.refresh(t)
        return t

    def rename_tag(self, tag_id: int, name: str) -> Tag:
        normalized = normalize_tag_name(name)
        t = self._require_tag(tag_id)
        clash = self.session.query(Tag).filter(Tag.name == normalized, Tag.id != tag_id).first()
        if clash:
            raise TagConflictError(normalized, clash.id)
        t.name = normalized
        self._commit()
        return t

    def set_tag_color(self, tag_id: int, color: Optional[str]) -> Tag:
        t = self._require_tag(tag_id)
        t.color = _validate_color(color)
        self._commit()
        return t

    def merge_tags(self, source_id: int, target_id: int) -> Tag:
        """Move every file link from `source_id` to `target_id`, then drop the source.

        Runs as a single commit: on any failure nothing is reattached and the
        source tag survives.
        """
        if source_id == target_id:
            raise ValueError("cannot merge a tag into itself")
        source = self._require_tag(source_id)
        target = self._require_tag(target_id)

        already = {
            row[0] for row in self.session.query(FileTag.file_id).filter_by(tag_id=target.id).all()
        }
        try:
            for link in self.session.query(FileTag).filter_by(tag_id=source.id).all():
                if link.file_id in already:
                    self.session.delete(link)
                else:
                    link.tag_id = target.id
                    already.add(link.file_id)
            self.session.flush()
            self.session.delete(source)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return target

    def delete_tag(self, tag_id: int) -> bool:
        t = self.get_tag_by_id(tag_id)
        if not t:
            return False
        self.session.query(FileTag).filter_by(tag_id=t.id).delete(synchronize_session=False)
        self.session.delete(t)
        self._commit()
        return True

    # File <-> tag links
    def link_file_tag(self, file_id: int, tag_id: int) -> FileTag:
        self._require_file(file_id)
        self._require_tag(tag_id)
        existing = self.session.query(FileTag).filter_by(file_id=file_id, tag_id=tag_id).first()
        if existing:
            return existing
        link = FileTag(file_id=file_id, tag_id=tag_id)
        self.session.add(link)
        self._commit()
        return link

    def unlink_file_tag(self, file_id: int, tag_id: int) -> bool:
        link = self.session.query(FileTag).filter_by(file_id=file_id, tag_id=tag_id).first()
        if not link:
            return False
        self.session.delete(link)
        self._commit()
        return True

    def bulk_link_file_tags(self, file_id: int, tag_names: Iterable[str]) -> list[Tag]:
        """Create-or-get each named tag and link it to the file (duplicates skipped)."""
        self._require_file(file_id)
        linked: list[Tag] = []
        seen: set[str] = set()
        for raw in tag_names:
            if not raw or not raw.strip():
                continue
            name = normalize_tag_name(raw)
            if name in seen:
                continue
            seen.add(name)
            tag = self.create_tag(name)
            self.link_file_tag(file_id, tag.id)
            linked.append(tag)
        return linked

    def get_file_tags(self, file_id: int) -> list[Tag]:
        return (
            self.session.query(Tag)
            .join(FileTag, FileTag.tag_id == Tag.id)
            .filter(FileTag.file_id == file_id)
            .order_by(Tag.name)
            .all()
        )

    def list_file_tags(self) -> list[FileTag]:
        return self.session.query(FileTag).order_by(FileTag.id).all()


def _validate_color(color: Optional[str]) -> Optional[str]:
    if color is None or color == "":
        return None
    if not _COLOR_RE.match(color):
        raise ValueError(f"color must look like #rrggbb, got {color!r}")
    return color.lower()
