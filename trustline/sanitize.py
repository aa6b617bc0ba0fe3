import re
from typing import Optional, Tuple

# dropped together with their contents, like a sanitizer with no allowed tags
_DANGEROUS_BLOCKS = re.compile(r"<(script|style|iframe|object|embed)\b[^>]*>.*?(</\1\s*>|$)", re.I | re.S)
_TAG = re.compile(r"<[^>]*>?")
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

MAX_DISPLAY_NAME = 80
MAX_DESCRIPTION = 160


def strip_markup(value: str) -> str:
    """Remove tags (and script-like blocks entirely) plus control characters, then trim."""
    text = _DANGEROUS_BLOCKS.sub("", value)
    text = _TAG.sub("", text)
    text = _CONTROL.sub("", text)
    return text.strip()


def clean_text(value: Optional[str], max_length: int) -> Tuple[Optional[str], bool]:
    """Return (sanitized text, truncated?). None passes through untouched."""
    if value is None:
        return None, False
    text = strip_markup(value)
    if len(text) > max_length:
        return text[:max_length], True
    return text, False


def normalize_hostname(value: str) -> str:
    return strip_markup(value).lower().rstrip(".")
