"""
feedgate/rss/parser.py
═══════════════════════════════════════════════════════════════════════════
Upstream XML → FeedDocument.

  0. Accepts str or raw bytes; a leading BOM is ignored
  1. Empty body                            → ValidationError
  2. Body not starting with <?xml or <rss  → ValidationError
  3. XML builder blows up                  → ParseError
  4. No <rss><channel> at the top          → ValidationError
  5. Everything else is normalised: missing fields become "", items
     always come back as a tuple

Only title / link / description are carried; everything else in the
upstream feed is dropped on purpose.
═══════════════════════════════════════════════════════════════════════════
"""

import logging
from typing import Optional, Union

from bs4 import BeautifulSoup, Tag

from feedgate.core.errors import ParseError, ValidationError
from feedgate.rss.models import FeedChannel, FeedDocument, FeedItem

log = logging.getLogger("rss_parser")

_FIELDS = ("title", "link", "description")
_BOM = b"\xef\xbb\xbf"


def _text(parent: Tag, name: str) -> str:
    # Skip namespaced siblings such as <atom:link rel="self"/>
    el: Optional[Tag] = next(
        (t for t in parent.find_all(name, recursive=False) if not t.prefix), None
    )
    if el is None:
        return ""
    return el.get_text().strip()


def _item(el: Tag) -> FeedItem:
    return FeedItem(**{f: _text(el, f) for f in _FIELDS})


def parse_feed(content: Union[str, bytes]) -> FeedDocument:
    """Raw upstream bytes are preferred: lxml then honours the encoding the
    document declares instead of whatever the HTTP layer guessed."""
    if isinstance(content, bytes):
        stripped = content.lstrip(_BOM).strip()
        heads: tuple = (b"<?xml", b"<rss")
    else:
        stripped = (content or "").lstrip("\ufeff").strip()
        heads = ("<?xml", "<rss")
    if not stripped:
        raise ValidationError("Empty content")

    if not stripped.startswith(heads):
        raise ValidationError(
            "Invalid XML format: Document must start with XML declaration or RSS tag"
        )

    try:
        soup = BeautifulSoup(stripped, "xml")
    except Exception as ex:
        raise ParseError(f"Failed to parse XML: {ex}") from ex

    rss = soup.find("rss", recursive=False)
    channel = rss.find("channel", recursive=False) if rss is not None else None
    if channel is None:
        raise ValidationError("Invalid RSS format: Document structure is invalid")

    items = tuple(_item(el) for el in channel.find_all("item", recursive=False))
    log.debug(f"Parsed channel with {len(items)} items")
    return FeedDocument(
        channel=FeedChannel(
            title=_text(channel, "title"),
            link=_text(channel, "link"),
            description=_text(channel, "description"),
            items=items,
        )
    )
