"""
feedgate/rss/rewriter.py
Link rewriting and RSS serialisation.

rewrite() points every item link back at the gateway:

    <base_url>/content/?contentURL=<percent-encoded original>

and returns the originals so the allowlist can be replaced with exactly the
URLs this version of the feed exposes. Documents are frozen dataclasses, so
the caller's input is never touched.
"""

from dataclasses import replace
from urllib.parse import quote
from xml.sax.saxutils import escape

from feedgate.rss.models import FeedDocument, FeedItem

# Same unreserved set as JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"

_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def content_link(base_url: str, original: str) -> str:
    return f"{base_url.rstrip('/')}/content/?contentURL={quote(original, safe=_URI_COMPONENT_SAFE)}"


def rewrite(document: FeedDocument, base_url: str) -> tuple[FeedDocument, set[str]]:
    originals: set[str] = set()
    items: list[FeedItem] = []

    for item in document.channel.item_list:
        if not item.link:
            items.append(item)
            continue
        originals.add(item.link)
        items.append(replace(item, link=content_link(base_url, item.link)))

    channel = replace(document.channel, items=tuple(items))
    return replace(document, channel=channel), originals


def escape_xml(text: str) -> str:
    # & < > are always handled by escape(); quotes need the extra map
    return escape(text or "", _ENTITIES)


def _item_xml(item: FeedItem) -> str:
    return (
        "<item>\n"
        f"      <title>{escape_xml(item.title)}</title>\n"
        f"      <link>{escape_xml(item.link)}</link>\n"
        f"      <description>{escape_xml(item.description)}</description>\n"
        "    </item>"
    )


def to_xml(document: FeedDocument) -> str:
    ch = document.channel
    items = "\n    ".join(_item_xml(i) for i in ch.item_list)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<rss version="2.0">\n'
        "  <channel>\n"
        f"    <title>{escape_xml(ch.title)}</title>\n"
        f"    <link>{escape_xml(ch.link)}</link>\n"
        f"    <description>{escape_xml(ch.description)}</description>\n"
        f"    {items}\n"
        "  </channel>\n"
        "</rss>"
    )
