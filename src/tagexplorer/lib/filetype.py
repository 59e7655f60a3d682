"""File type detection using magic bytes (file signatures).

Uploads are checked by content, not by extension, so a PDF renamed to
`.jpg` is still routed through text extraction.
"""
from pathlib import Path
from typing import Optional
import magic

# Types accepted by the upload pipeline
SUPPORTED_MEDIA_TYPES = (
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "application/pdf",
)


def detect_media_type(data: bytes) -> Optional[str]:
    """Detect the media type of an in-memory upload using magic bytes.

    Args:
        data: Raw file content (the first few KB are enough)

    Returns:
        Media type string (e.g. 'image/png', 'application/pdf')
        or None if detection fails

    Examples:
        >>> detect_media_type(b'%PDF-1.7 ...')
        'application/pdf'
    """
    if not data:
        return None
    try:
        return magic.from_buffer(data[:8192], mime=True)
    except Exception:
        return None


def detect_media_type_from_path(file_path: str) -> Optional[str]:
    try:
        return magic.from_file(str(file_path), mime=True)
    except Exception:
        return None


def get_file_category(media_type: Optional[str]) -> Optional[str]:
    """Categorize a media type for the tagging prompt.

    Returns 'image', 'pdf', or None.

    Examples:
        >>> get_file_category('image/webp')
        'image'
        >>> get_file_category('application/pdf')
        'pdf'
        >>> get_file_category('text/plain') is None
        True
    """
    if not media_type:
        return None
    if media_type == "application/pdf":
        return "pdf"
    if media_type.startswith("image/"):
        return "image"
    return None


def is_supported_upload(media_type: Optional[str]) -> bool:
    return media_type in SUPPORTED_MEDIA_TYPES


def guess_extension(name: str) -> str:
    """Return the lowercase extension of `name` including the dot, or ''."""
    return Path(name).suffix.lower()
