import io

import pytest
from PIL import Image

from tagexplorer.lib.database import InMemoryAdapter
from tagexplorer.lib.errors import UploadError
from tagexplorer.lib.storage import LocalBlobStore
from tagexplorer.services.repository import Repository
from tagexplorer.services.tagging import TagSuggestions, TaggingService
from tagexplorer.services.upload import ERROR_MESSAGES, PendingUpload, UploadPipeline, get_error_message


class FakeTagger:
    def __init__(self, result=None):
        self.result = result or TagSuggestions(["work"], ["beach", "sunset"], "beach-day")
        self.calls = []

    def analyze(self, data, media_type, file_name, existing_tags):
        self.calls.append((media_type, file_name, list(existing_tags)))
        return self.result


class FlakyStore(LocalBlobStore):
    """Blob store whose first `failures` puts fail."""

    def __init__(self, root, failures):
        super().__init__(root)
        self.failures = failures

    def put(self, upload_url, data, content_type=None):
        if self.failures > 0:
            self.failures -= 1
            raise UploadError("UPLOAD_FAILED", "simulated network error")
        return super().put(upload_url, data, content_type)


def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (0, 120, 255)).save(buf, format="PNG")
    return buf.getvalue()


def make_pipeline(tmp_path, store=None, tagger=None):
    repo = Repository(InMemoryAdapter().session())
    store = store or LocalBlobStore(tmp_path / "blobs")
    repo.storage = store
    sleeps = []
    pipeline = UploadPipeline(repo, store, tagger or FakeTagger(), sleep=sleeps.append)
    return pipeline, repo, store, sleeps


def test_analyze_and_confirm(tmp_path):
    tagger = FakeTagger()
    pipeline, repo, store, sleeps = make_pipeline(tmp_path, tagger=tagger)
    repo.create_tag("work")

    pending = pipeline.analyze(png_bytes(), "IMG_0042.jpg", "image/png")
    assert pending is not None
    assert pipeline.error is None
    assert pipeline.retry_count == 0
    assert tagger.calls == [("image/png", "IMG_0042.jpg", ["work"])]
    assert store.get(pending.storage_id) == png_bytes()
    assert pending.selected_tags == ["work", "beach", "sunset"]

    pending.toggle_tag("sunset")
    f = pipeline.confirm(pending)

    assert f.name == "beach-day.jpg"
    assert f.original_name == "IMG_0042.jpg"
    assert f.media_type == "image/png"
    assert f.size == len(png_bytes())
    assert [t.name for t in repo.get_file_tags(f.id)] == ["beach", "work"]
    assert sleeps == []


def test_analyze_detects_media_type(tmp_path):
    tagger = FakeTagger()
    pipeline, _, _, _ = make_pipeline(tmp_path, tagger=tagger)
    assert pipeline.analyze(png_bytes(), "picture") is not None
    assert tagger.calls[0][0] == "image/png"


def test_unsupported_type_is_rejected_without_upload(tmp_path):
    tagger = FakeTagger()
    pipeline, _, store, _ = make_pipeline(tmp_path, tagger=tagger)
    assert pipeline.analyze(b"hello", "notes.txt", "text/plain") is None
    assert pipeline.error == ERROR_MESSAGES["UNSUPPORTED_TYPE"]
    assert tagger.calls == []
    assert list(store.root.iterdir()) == []


def test_retries_with_exponential_backoff(tmp_path):
    store = FlakyStore(tmp_path / "blobs", failures=2)
    pipeline, _, _, sleeps = make_pipeline(tmp_path, store=store)

    pending = pipeline.analyze(png_bytes(), "a.png", "image/png")
    assert pending is not None
    assert sleeps == [1.0, 2.0]
    assert pipeline.error is None


def test_gives_up_after_max_retries(tmp_path):
    store = FlakyStore(tmp_path / "blobs", failures=10)
    pipeline, _, _, sleeps = make_pipeline(tmp_path, store=store)

    assert pipeline.analyze(png_bytes(), "a.png", "image/png") is None
    assert sleeps == [1.0, 2.0]
    assert pipeline.retry_count == 3
    assert pipeline.error == ERROR_MESSAGES["UPLOAD_FAILED"]
    assert not pipeline.is_analyzing

    pipeline.reset()
    assert pipeline.error is None and pipeline.retry_count == 0


def test_ai_failure_still_produces_untagged_upload(tmp_path):
    pipeline, repo, _, _ = make_pipeline(tmp_path, tagger=TaggingService(api_key=""))
    pending = pipeline.analyze(png_bytes(), "a.png", "image/png")
    assert pending.new_tags == ["untagged"]
    f = pipeline.confirm(pending)
    assert f.name == "a.png"
    assert [t.name for t in repo.get_file_tags(f.id)] == ["untagged"]


def test_discard_removes_blob(tmp_path):
    pipeline, repo, store, _ = make_pipeline(tmp_path)
    pending = pipeline.analyze(png_bytes(), "a.png", "image/png")
    pipeline.discard(pending)
    assert store.get(pending.storage_id) is None
    assert repo.list_files() == []


def test_pending_upload_tag_editing():
    p = PendingUpload(storage_id="s", name="doc.pdf", media_type="application/pdf", size=3,
                      existing_tags=["work"], new_tags=["taxes"])
    assert p.selected_tags == ["work", "taxes"]

    assert p.toggle_tag("Work") is False
    assert p.selected_tags == ["taxes"]
    assert p.toggle_tag("work") is True

    p.add_manual_tag(" Finance ", known_tags=["finance"])
    p.add_manual_tag("2024")
    assert p.existing_tags == ["work", "finance"]
    assert p.new_tags == ["taxes", "2024"]
    assert "finance" in p.selected_tags and "2024" in p.selected_tags

    with pytest.raises(ValueError):
        p.add_manual_tag("  ")


def test_pending_upload_final_name():
    p = PendingUpload(storage_id="s", name="IMG_1.jpg", media_type="image/jpeg", size=1)
    assert p.final_name == "IMG_1.jpg"
    p.suggested_name = "harbour-at-dusk"
    assert p.final_name == "harbour-at-dusk.jpg"
    p.suggested_name = "harbour.jpeg"
    assert p.final_name == "harbour.jpeg"
    p.custom_name = "  mine.jpg "
    assert p.final_name == "mine.jpg"


def test_error_messages():
    assert get_error_message("RATE_LIMITED") == ERROR_MESSAGES["RATE_LIMITED"]
    assert get_error_message("nope") == ERROR_MESSAGES["UNKNOWN_ERROR"]
    assert get_error_message(None) == ERROR_MESSAGES["UNKNOWN_ERROR"]


class FlakyTagger(FakeTagger):
    """Tagger whose first `failures` calls raise."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    def analyze(self, data, media_type, file_name, existing_tags):
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("tagger crashed")
        return super().analyze(data, media_type, file_name, existing_tags)


def test_failed_attempts_leave_no_orphan_blobs(tmp_path):
    pipeline, _, store, sleeps = make_pipeline(tmp_path, tagger=FlakyTagger(2))

    pending = pipeline.analyze(png_bytes(), "a.png", "image/png")
    assert pending is not None
    assert sleeps == [1.0, 2.0]
    pipeline.confirm(pending)
    assert [p.name for p in store.root.iterdir()] == [pending.storage_id]


def test_total_failure_leaves_blob_dir_empty(tmp_path):
    pipeline, _, store, _ = make_pipeline(tmp_path, tagger=FlakyTagger(5))

    assert pipeline.analyze(png_bytes(), "a.png", "image/png") is None
    assert pipeline.error == ERROR_MESSAGES["UNKNOWN_ERROR"]
    assert list(store.root.iterdir()) == []


def test_final_name_borrows_lowercased_extension():
    p = PendingUpload(storage_id="s", name="IMG_2.JPG", media_type="image/jpeg", size=1,
                      suggested_name="dog-park")
    assert p.final_name == "dog-park.jpg"
