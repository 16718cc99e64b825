"""Helpers shared by the rss and content routers."""

from typing import Optional
from urllib.parse import urlsplit

from feedgate.core.errors import ValidationError

_SCHEMES = {"http", "https"}


def is_valid_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme.lower() in _SCHEMES and bool(parts.netloc)


def require_url(value: Optional[str], param: str) -> str:
    if not value:
        raise ValidationError(f"Missing {param} parameter")
    if not is_valid_url(value):
        raise ValidationError(f"Invalid {param}")
    return value
