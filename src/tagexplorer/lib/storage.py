"""Local blob storage used as the upload transport.

The flow mirrors a hosted storage service: ask for a one-shot upload URL,
PUT the bytes to it, get back an opaque storage id. Blobs are plain files
named after their storage id under the store's root directory.
"""
from __future__ import annotations

import uuid
from pathlib import Path
from typing import Optional

from tagexplorer.lib.errors import UploadError

UPLOAD_SCHEME = "upload://"


class LocalBlobStore:
    """Filesystem-backed blob store.

    Usage:
        store = LocalBlobStore("/var/lib/tagexplorer/blobs")
        url = store.generate_upload_url()
        storage_id = store.put(url, data, "image/png")
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        # upload tokens that have been handed out but not yet used
        self._pending: set[str] = set()

    def generate_upload_url(self) -> str:
        token = uuid.uuid4().hex
        self._pending.add(token)
        return f"{UPLOAD_SCHEME}{token}"

    def put(self, upload_url: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store `data` under a fresh storage id. Each upload URL works once."""
        token = upload_url[len(UPLOAD_SCHEME):] if upload_url.startswith(UPLOAD_SCHEME) else None
        if token is None or token not in self._pending:
            raise UploadError("UPLOAD_FAILED", f"upload URL is unknown or already used: {upload_url}")
        self._pending.discard(token)

        storage_id = uuid.uuid4().hex
        try:
            self._path(storage_id).write_bytes(data)
        except OSError as exc:
            raise UploadError("UPLOAD_FAILED", f"cannot write blob: {exc}") from exc
        return storage_id

    def get(self, storage_id: str) -> Optional[bytes]:
        p = self._path(storage_id)
        if not p.exists():
            return None
        return p.read_bytes()

    def get_url(self, storage_id: str) -> Optional[str]:
        p = self._path(storage_id)
        return p.resolve().as_uri() if p.exists() else None

    def delete(self, storage_id: str) -> bool:
        p = self._path(storage_id)
        if not p.exists():
            return False
        p.unlink()
        return True

    def _path(self, storage_id: str) -> Path:
        # storage ids are uuid hex strings; reject anything that could escape root
        if not storage_id or not storage_id.isalnum():
            raise ValueError(f"invalid storage id: {storage_id!r}")
        return self.root / storage_id
