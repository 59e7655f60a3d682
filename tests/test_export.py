import csv
import io
import json
from datetime import date, datetime, timezone
from types import SimpleNamespace

from tagexplorer.lib.export import default_export_filename, export_csv, export_json

FILES = [
    SimpleNamespace(id=1, name="report.pdf", media_type="application/pdf", size=2048,
                    created_at=datetime(2024, 3, 1, 12, 0, 0)),
    SimpleNamespace(id=2, name='trip, "day 1".jpg', media_type="image/jpeg", size=None,
                    created_at=datetime(2024, 3, 2, 8, 30, 0)),
]
TAGS = [SimpleNamespace(id=1, name="work", color="#3b82f6"), SimpleNamespace(id=2, name="2024", color=None)]
LINKS = [SimpleNamespace(file_id=1, tag_id=1), SimpleNamespace(file_id=1, tag_id=2)]


def test_export_json():
    out = json.loads(export_json(FILES, TAGS, LINKS, exported_at=datetime(2024, 4, 1, tzinfo=timezone.utc)))
    assert out["exportedAt"] == "2024-04-01T00:00:00+00:00"
    assert [f["name"] for f in out["files"]] == ["report.pdf", 'trip, "day 1".jpg']
    assert out["files"][0]["type"] == "application/pdf"
    assert out["files"][0]["createdAt"] == "2024-03-01T12:00:00+00:00"
    assert out["tags"][0] == {"id": 1, "name": "work", "color": "#3b82f6"}
    assert out["fileTags"] == [{"fileId": 1, "tagId": 1}, {"fileId": 1, "tagId": 2}]


def test_export_csv():
    text = export_csv(FILES, TAGS, LINKS)
    lines = text.splitlines()
    assert lines[0] == "name,type,size,createdAt,tags"
    assert lines[1] == "report.pdf,application/pdf,2048,2024-03-01T12:00:00+00:00,work; 2024"
    # commas and quotes are escaped
    assert lines[2].startswith('"trip, ""day 1"".jpg",image/jpeg,,')

    rows = list(csv.DictReader(io.StringIO(text)))
    assert rows[1]["name"] == 'trip, "day 1".jpg'
    assert rows[1]["tags"] == ""


def test_default_export_filename():
    assert default_export_filename("csv", date(2024, 1, 5)) == "tagexplorer-export-2024-01-05.csv"
