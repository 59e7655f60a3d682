import io
import json

import httpx
from PIL import Image

from tagexplorer.services import tagging
from tagexplorer.services.tagging import (
    TagSuggestions,
    TaggingService,
    api_key_configured,
    build_prompt,
    extract_pdf_text,
    parse_tagging_response,
    prepare_image,
)


def png_bytes(size=(4, 4)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


def chat_reply(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def make_service(handler, api_key="test-key", **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return TaggingService(api_key=api_key, base_url="https://gateway.test/v1", client=client, **kwargs)


def test_fallback_shape():
    fb = TagSuggestions.fallback()
    assert fb.existing_tags == []
    assert fb.new_tags == ["untagged"]
    assert fb.suggested_name is None


def test_parse_object_reply():
    content = (
        "Sure! Here you go:\n"
        '{"existingTags": ["Work", " travel "], "newTags": ["Beach", ""], "suggestedName": "beach-trip.jpg"}\n'
        "Hope that helps."
    )
    result = parse_tagging_response(content, ["work", "travel"])
    assert result.existing_tags == ["work", "travel"]
    assert result.new_tags == ["beach"]
    assert result.suggested_name == "beach-trip.jpg"


def test_parse_object_with_null_name():
    result = parse_tagging_response('{"existingTags": [], "newTags": ["invoice"], "suggestedName": null}', [])
    assert result.new_tags == ["invoice"]
    assert result.suggested_name is None


def test_parse_array_reply_splits_by_known_tags():
    result = parse_tagging_response('["Work", "sunset", "work"]', ["work"])
    assert result.existing_tags == ["work"]
    assert result.new_tags == ["sunset"]
    assert result.suggested_name is None


def test_parse_garbage_falls_back():
    assert parse_tagging_response("no json here", []) == TagSuggestions.fallback()
    assert parse_tagging_response("{not: valid json}", []) == TagSuggestions.fallback()
    assert parse_tagging_response("", []) == TagSuggestions.fallback()
    assert parse_tagging_response(None, []) == TagSuggestions.fallback()


def test_build_prompt():
    prompt = build_prompt("image", ["work", "family"], "IMG_0001.jpg")
    assert 'Existing tags in the system: ["work", "family"]' in prompt
    assert 'The file is currently named: "IMG_0001.jpg"' in prompt
    assert "Document text:" not in prompt

    prompt = build_prompt("text", [], "doc.pdf")
    assert "Existing tags" not in prompt
    assert prompt.rstrip().endswith("Document text:")


def test_api_key_configured():
    assert api_key_configured({"AI_GATEWAY_API_KEY": "k"})
    assert not api_key_configured({})
    assert not api_key_configured({"AI_GATEWAY_API_KEY": ""})


def test_analyze_without_key_returns_fallback():
    def handler(request):
        raise AssertionError("no request expected without an API key")

    service = make_service(handler, api_key="")
    assert service.analyze(png_bytes(), "image/png", "a.png", []) == TagSuggestions.fallback()


def test_analyze_image_request_and_reply():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return chat_reply('{"existingTags": ["pets"], "newTags": ["cat"], "suggestedName": "cat.png"}')

    service = make_service(handler, model="test-model", max_tokens=321)
    result = service.analyze(png_bytes(), "image/png", "IMG_1.png", ["pets"])

    assert result == TagSuggestions(["pets"], ["cat"], "cat.png")
    assert seen["url"] == "https://gateway.test/v1/chat/completions"
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["max_tokens"] == 321
    content = seen["body"]["messages"][0]["content"]
    assert content[0]["type"] == "text"
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
    assert content[1]["image_url"]["detail"] == "low"


def test_analyze_http_error_returns_fallback():
    service = make_service(lambda request: httpx.Response(500, text="boom"))
    assert service.analyze(png_bytes(), "image/png", "a.png", []) == TagSuggestions.fallback()


def test_analyze_timeout_returns_fallback():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    service = make_service(handler)
    assert service.analyze(png_bytes(), "image/png", "a.png", []) == TagSuggestions.fallback()


def test_analyze_empty_choices_returns_fallback():
    service = make_service(lambda request: httpx.Response(200, json={"choices": []}))
    assert service.analyze(png_bytes(), "image/png", "a.png", []) == TagSuggestions.fallback()


def test_pdf_messages_include_extracted_text(monkeypatch):
    monkeypatch.setattr(tagging, "extract_pdf_text", lambda data: "quarterly revenue " * 400)
    service = TaggingService(api_key="k")
    messages = service.build_messages(b"%PDF-1.4", "application/pdf", "q3.pdf", [])
    content = messages[0]["content"]
    assert isinstance(content, str)
    assert "Document text:" in content
    assert content.count("quarterly revenue") >= 200
    # only the first 4000 characters of text are sent
    assert len(content) < len(build_prompt("text", [], "q3.pdf")) + 4001


def test_pdf_with_little_text(monkeypatch):
    monkeypatch.setattr(tagging, "extract_pdf_text", lambda data: "scan")
    service = TaggingService(api_key="k")
    content = service.build_messages(b"%PDF-1.4", "application/pdf", "scan.pdf", [])[0]["content"]
    assert "minimal text content" in content


def test_extract_pdf_text_bad_input():
    assert extract_pdf_text(b"definitely not a pdf") == ""


def test_prepare_image_downscales_large_images():
    big = png_bytes((2000, 1000))
    data, mime = prepare_image(big, "image/png", max_edge=500)
    assert mime == "image/jpeg"
    with Image.open(io.BytesIO(data)) as img:
        assert img.size == (500, 250)

    small = png_bytes((10, 10))
    assert prepare_image(small, "image/png", max_edge=500) == (small, "image/png")
    assert prepare_image(b"junk", "image/png", max_edge=500) == (b"junk", "image/png")
