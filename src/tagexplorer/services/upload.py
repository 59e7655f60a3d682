"""Upload pipeline: store the bytes, ask for tag suggestions, persist on confirm.

    pipeline = UploadPipeline(repo, storage, TaggingService())
    pending = pipeline.analyze(data, "IMG_0001.jpg")
    if pending is None:
        print(pipeline.error)
    else:
        pending.toggle_tag("blurry")
        pipeline.confirm(pending)
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from tagexplorer.lib.errors import UploadError
from tagexplorer.lib.filetype import SUPPORTED_MEDIA_TYPES, detect_media_type, guess_extension, is_supported_upload
from tagexplorer.models.file import File
from tagexplorer.services.repository import Repository, normalize_tag_name

MAX_RETRIES = 3
INITIAL_DELAY = 1.0

ERROR_MESSAGES = {
    "UPLOAD_FAILED": "File upload failed. Check your connection.",
    "UNSUPPORTED_TYPE": "Unsupported file type. Accepted: " + ", ".join(SUPPORTED_MEDIA_TYPES) + ".",
    "AI_GATEWAY_API_KEY_MISSING": "API key not configured. Contact the administrator.",
    "FILE_NOT_FOUND": "File not found in storage.",
    "AI_ANALYSIS_FAILED": "AI analysis failed. Retry or add tags manually.",
    "RATE_LIMITED": "Too many requests. Wait a moment.",
    "UNKNOWN_ERROR": "An unexpected error occurred. Please try again.",
}


def get_error_message(code: Optional[str]) -> str:
    return ERROR_MESSAGES.get(code or "", ERROR_MESSAGES["UNKNOWN_ERROR"])


@dataclass
class PendingUpload:
    """An uploaded blob waiting for the user to confirm its tags and name."""

    storage_id: str
    name: str
    media_type: str
    size: int
    existing_tags: list[str] = field(default_factory=list)
    new_tags: list[str] = field(default_factory=list)
    suggested_name: Optional[str] = None
    custom_name: Optional[str] = None
    selected_tags: list[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.selected_tags:
            self.selected_tags = list(dict.fromkeys(self.existing_tags + self.new_tags))

    def toggle_tag(self, name: str) -> bool:
        """Flip selection of a suggested tag; returns True if now selected."""
        name = normalize_tag_name(name)
        if name in self.selected_tags:
            self.selected_tags.remove(name)
            return False
        self.selected_tags.append(name)
        return True

    def add_manual_tag(self, name: str, known_tags: Iterable[str] = ()) -> None:
        name = normalize_tag_name(name)
        if name in self.existing_tags or name in self.new_tags:
            return
        if name in set(known_tags):
            self.existing_tags.append(name)
        else:
            self.new_tags.append(name)
        if name not in self.selected_tags:
            self.selected_tags.append(name)

    @property
    def final_name(self) -> str:
        if self.custom_name and self.custom_name.strip():
            return self.custom_name.strip()
        if self.suggested_name:
            # keep the original extension when the model dropped it
            if not guess_extension(self.suggested_name):
                return self.suggested_name + guess_extension(self.name)
            return self.suggested_name
        return self.name


class UploadPipeline:
    def __init__(
        self,
        repo: Repository,
        storage,
        tagger,
        max_retries: int = MAX_RETRIES,
        initial_delay: float = INITIAL_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repo = repo
        self.storage = storage
        self.tagger = tagger
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self._sleep = sleep
        self.error: Optional[str] = None
        self.retry_count = 0
        self.is_analyzing = False

    def reset(self) -> None:
        self.error = None
        self.retry_count = 0
        self.is_analyzing = False

    def _attempt(self, data: bytes, file_name: str, media_type: str) -> PendingUpload:
        upload_url = self.storage.generate_upload_url()
        storage_id = self.storage.put(upload_url, data, media_type)
        try:
            known = [t.name for t in self.repo.list_tags()]
            suggestions = self.tagger.analyze(data, media_type, file_name, known)
        except Exception:
            # nothing references the blob yet
            self.storage.delete(storage_id)
            raise
        return PendingUpload(
            storage_id=storage_id,
            name=file_name,
            media_type=media_type,
            size=len(data),
            existing_tags=list(suggestions.existing_tags),
            new_tags=list(suggestions.new_tags),
            suggested_name=suggestions.suggested_name,
        )

    def analyze(self, data: bytes, file_name: str, media_type: Optional[str] = None) -> Optional[PendingUpload]:
        """Upload `data` and fetch tag suggestions, retrying with exponential backoff.

        Returns None when every attempt failed; `self.error` then holds a
        message for the user.
        """
        self.reset()
        media_type = media_type or detect_media_type(data)
        if not is_supported_upload(media_type):
            self.error = get_error_message("UNSUPPORTED_TYPE")
            return None

        self.is_analyzing = True
        last_code = "UNKNOWN_ERROR"
        for attempt in range(self.max_retries):
            self.retry_count = attempt + 1
            try:
                pending = self._attempt(data, file_name, media_type)
            except UploadError as exc:
                last_code = exc.code
                print(f"upload: attempt {attempt + 1}/{self.max_retries} for {file_name} failed: {exc}")
            except Exception as exc:
                last_code = "UNKNOWN_ERROR"
                print(f"upload: attempt {attempt + 1}/{self.max_retries} for {file_name} failed: {exc}")
            else:
                self.is_analyzing = False
                self.retry_count = 0
                return pending
            if attempt < self.max_retries - 1:
                self._sleep(self.initial_delay * (2 ** attempt))

        self.is_analyzing = False
        self.error = get_error_message(last_code)
        return None

    def confirm(self, pending: PendingUpload) -> File:
        """Persist the file and link the selected tags."""
        f = self.repo.save_file(
            storage_id=pending.storage_id,
            name=pending.final_name,
            media_type=pending.media_type,
            size=pending.size,
            original_name=pending.name,
        )
        self.repo.bulk_link_file_tags(f.id, pending.selected_tags)
        return f

    def discard(self, pending: PendingUpload) -> None:
        self.storage.delete(pending.storage_id)
