"""
Text processing utilities.
"""

import json
import logging
import re
from typing import Any, Optional, Sequence

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_DATA_URL = re.compile(r"^data:(?P<media_type>[\w/+.-]+);base64,", re.IGNORECASE)

def sanitize_text(text: str) -> str:
    """Clean text for PostgreSQL storage."""
    if not text or not isinstance(text, str):
        return ""

    # Remove null bytes
    text = text.replace('\x00', '')

    # Drop control characters except common whitespace
    text = ''.join(
        char for char in text
        if ord(char) >= 32 or char in '\n\r\t'
    )

    text = text.strip()
    if not text:
        return ""

    max_length = 1_000_000
    if len(text) > max_length:
        text = text[:max_length]
        logger.warning(f"Text truncated to {max_length} characters")

    return text

def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """Truncate text to specified length with suffix."""
    if not text:
        return ""

    text = str(text).strip()
    if len(text) <= max_length:
        return text

    truncated = text[:max_length - len(suffix)]
    return truncated.rstrip() + suffix

def clean_filename(filename: str) -> str:
    """Clean filename by removing problematic characters."""
    valid_chars = '-_.() abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'
    cleaned = ''.join(c for c in filename if c in valid_chars)
    cleaned = cleaned.strip('. ')

    if not cleaned:
        cleaned = 'unnamed_file'

    return cleaned

def format_embedding_vector(embedding: Sequence[float]) -> str:
    """Render an embedding in the pgvector literal format ``[a,b,...]``."""
    return f"[{','.join(str(float(x)) for x in embedding)}]"

def extract_json_object(raw: str) -> Optional[dict]:
    """
    Pull the outermost JSON object out of a model response.

    Code fences and surrounding prose are ignored. Returns None when no
    object can be decoded.
    """
    if not raw:
        return None
    cleaned = _CODE_FENCE.sub("", raw.strip())
    match = _JSON_OBJECT.search(cleaned)
    if not match:
        return None
    try:
        value: Any = json.loads(match.group(0), strict=False)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None

def split_data_url(value: str, default_media_type: str = "image/jpeg") -> tuple:
    """Split a ``data:<type>;base64,`` URL into ``(media_type, payload)``."""
    match = _DATA_URL.match(value)
    if not match:
        return default_media_type, value
    return match.group("media_type").lower(), value[match.end():]
