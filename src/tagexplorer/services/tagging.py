"""AI tag suggestions for uploaded files.

Images are sent to an OpenAI-compatible chat completions endpoint as a
data URL; PDFs are reduced to their text first. The service never raises
to its caller: any failure degrades to `TagSuggestions.fallback()`.
"""
from __future__ import annotations

import base64
import io
import json
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

import httpx
import pdfplumber
from PIL import Image

from tagexplorer.lib.filetype import get_file_category

DEFAULT_BASE_URL = "https://ai-gateway.vercel.sh/v1"
DEFAULT_MODEL = "google/gemini-2.5-flash-lite"
API_KEY_ENV = "AI_GATEWAY_API_KEY"
FALLBACK_TAG = "untagged"

# PDFs with less extracted text than this are treated as scans
MIN_PDF_TEXT = 100
MAX_PDF_TEXT = 4000

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


@dataclass
class TagSuggestions:
    existing_tags: list[str] = field(default_factory=list)
    new_tags: list[str] = field(default_factory=list)
    suggested_name: Optional[str] = None

    @classmethod
    def fallback(cls) -> "TagSuggestions":
        return cls(existing_tags=[], new_tags=[FALLBACK_TAG], suggested_name=None)


def api_key_configured(env=None) -> bool:
    env = os.environ if env is None else env
    return bool(env.get(API_KEY_ENV))


def build_prompt(kind: str, existing_tags: list[str], file_name: str) -> str:
    """Build the tagging prompt for an 'image' or a 'text' (PDF) upload."""
    tag_list = ""
    if existing_tags:
        quoted = ", ".join(f'"{t}"' for t in existing_tags)
        tag_list = (
            f"\nExisting tags in the system: [{quoted}]\n"
            "Prefer reusing existing tags when relevant, but you can propose new ones if needed.\n"
        )

    if kind == "image":
        base = (
            "Analyze this image and suggest relevant tags for organizing it in a personal file system.\n"
            "Include: subject matter, setting, mood, colors, objects, people, activities."
        )
    else:
        base = (
            "Analyze this document text and suggest relevant tags for organizing it in a personal file system.\n"
            "Include: topic, domain, type of document, key themes."
        )

    prompt = f"""{base}

The file is currently named: "{file_name}"
{tag_list}
Rules:
- Return 3-8 tags maximum
- Tags should be single words or short phrases (2-3 words max)
- Use lowercase
- Be specific but not too granular
- Do NOT include: file metadata, technical details, quality assessments
- If the current filename is not descriptive (e.g. "IMG_20240301.jpg", "document(3).pdf", random characters), suggest a better name

Return ONLY a JSON object with this exact format, no explanation:
{{
  "existingTags": ["tag1", "tag2"],
  "newTags": ["tag3", "tag4"],
  "suggestedName": "better-name.ext"
}}

- "existingTags": tags picked from the existing tags list above
- "newTags": new tags not in the existing list
- "suggestedName": a suggested filename, or null if the current name is already good
"""
    if kind != "image":
        prompt += "\nDocument text:\n"
    return prompt


def _clean_tags(values) -> list[str]:
    if not isinstance(values, list):
        return []
    out: list[str] = []
    for v in values:
        t = str(v).strip().lower()
        if t and t not in out:
            out.append(t)
    return out


def parse_tagging_response(content: Optional[str], existing_tags: Iterable[str]) -> TagSuggestions:
    """Parse the model's reply.

    The expected reply is a JSON object; a bare JSON array of tags (older
    prompt format) is also accepted and split by membership in
    `existing_tags`. Anything else yields the fallback.
    """
    if not content:
        return TagSuggestions.fallback()

    try:
        match = _OBJECT_RE.search(content)
        if match:
            parsed = json.loads(match.group(0))
            if not isinstance(parsed, dict):
                return TagSuggestions.fallback()
            name = parsed.get("suggestedName")
            name = name.strip() if isinstance(name, str) and name.strip() else None
            return TagSuggestions(
                existing_tags=_clean_tags(parsed.get("existingTags") or []),
                new_tags=_clean_tags(parsed.get("newTags") or []),
                suggested_name=name,
            )

        match = _ARRAY_RE.search(content)
        if match:
            tags = _clean_tags(json.loads(match.group(0)))
            known = set(existing_tags)
            return TagSuggestions(
                existing_tags=[t for t in tags if t in known],
                new_tags=[t for t in tags if t not in known],
            )
    except (ValueError, TypeError) as exc:
        print(f"tagging: could not parse model reply: {exc}")
    return TagSuggestions.fallback()


def extract_pdf_text(data: bytes) -> str:
    """Concatenate the text of every page; '' if the PDF cannot be read."""
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            parts = [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:
        print(f"tagging: PDF text extraction failed: {exc}")
        return ""
    return " ".join(p for p in parts if p)


def prepare_image(data: bytes, media_type: str, max_edge: int) -> tuple[bytes, str]:
    """Downscale images larger than `max_edge` pixels to a JPEG.

    Returns the original bytes unchanged when the image is small enough or
    Pillow cannot decode it.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            if max(img.size) <= max_edge:
                return data, media_type
            img.thumbnail((max_edge, max_edge))
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            out = io.BytesIO()
            img.save(out, format="JPEG", quality=85)
            return out.getvalue(), "image/jpeg"
    except Exception:
        return data, media_type


class TaggingService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 500,
        timeout: float = 30.0,
        max_image_edge: int = 1024,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key if api_key is not None else os.environ.get(API_KEY_ENV)
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_image_edge = max_image_edge
        self._client = client

    def build_messages(self, data: bytes, media_type: str, file_name: str, existing_tags: list[str]) -> list[dict]:
        if get_file_category(media_type) == "pdf":
            prompt = build_prompt("text", existing_tags, file_name)
            text = extract_pdf_text(data)
            if len(text) >= MIN_PDF_TEXT:
                prompt += text[:MAX_PDF_TEXT]
            else:
                prompt += "(PDF with minimal text content - likely a scanned document or image-based PDF)"
            return [{"role": "user", "content": prompt}]

        mime = media_type if media_type and media_type.startswith("image/") else "image/jpeg"
        payload, mime = prepare_image(data, mime, self.max_image_edge)
        encoded = base64.b64encode(payload).decode("ascii")
        return [{
            "role": "user",
            "content": [
                {"type": "text", "text": build_prompt("image", existing_tags, file_name)},
                {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{encoded}", "detail": "low"}},
            ],
        }]

    def _complete(self, messages: list[dict]) -> Optional[str]:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        body = {"model": self.model, "messages": messages, "max_tokens": self.max_tokens}
        url = f"{self.base_url}/chat/completions"
        if self._client is not None:
            response = self._client.post(url, headers=headers, json=body, timeout=self.timeout)
        else:
            with httpx.Client() as client:
                response = client.post(url, headers=headers, json=body, timeout=self.timeout)
        response.raise_for_status()
        choices = response.json().get("choices") or []
        if not choices:
            return None
        return (choices[0].get("message") or {}).get("content")

    def analyze(self, data: bytes, media_type: str, file_name: str, existing_tags: Iterable[str]) -> TagSuggestions:
        existing = list(existing_tags)
        if not self.api_key:
            print(f"tagging: {API_KEY_ENV} not configured; using fallback tags for {file_name}")
            return TagSuggestions.fallback()
        try:
            messages = self.build_messages(data, media_type, file_name, existing)
            content = self._complete(messages)
        except Exception as exc:
            print(f"tagging: AI analysis error for {file_name}: {exc}")
            return TagSuggestions.fallback()
        return parse_tagging_response(content, existing)
