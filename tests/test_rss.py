"""Tests for feed parsing, link rewriting and serialisation."""

from urllib.parse import parse_qs, urlsplit

import pytest

from conftest import ARTICLE_A, ARTICLE_B, BASE_URL, LATIN1_FEED, TWO_ITEM_FEED, rss_xml
from feedgate.core.errors import ParseError, ValidationError
from feedgate.rss.models import FeedChannel, FeedDocument, FeedItem
from feedgate.rss.parser import parse_feed
from feedgate.rss.rewriter import content_link, rewrite, to_xml


def _decoded(link: str) -> str:
    parts = urlsplit(link)
    assert parts.path == "/content/"
    return parse_qs(parts.query)["contentURL"][0]


# ── Parser ────────────────────────────────────────────────────────────────────

def test_parse_two_items():
    doc = parse_feed(TWO_ITEM_FEED)

    assert doc.channel.title == "Example News"
    assert doc.channel.link == "https://news.example/"
    assert [i.link for i in doc.channel.item_list] == [ARTICLE_A, ARTICLE_B]


def test_parse_single_item_is_still_a_sequence():
    doc = parse_feed(rss_xml(("Only", "https://x.com/only", "d")))
    assert isinstance(doc.channel.items, tuple)
    assert len(doc.channel.items) == 1


def test_parse_missing_fields_become_empty_strings():
    doc = parse_feed(
        '<rss version="2.0"><channel><title>T</title><item><title>No link</title></item></channel></rss>'
    )
    item = doc.channel.item_list[0]
    assert item.link == ""
    assert item.description == ""
    assert doc.channel.description == ""


def test_parse_skips_namespaced_link():
    doc = parse_feed(
        '<?xml version="1.0"?>'
        '<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom"><channel>'
        '<atom:link href="https://feeds.example/self" rel="self"/>'
        "<link>https://news.example/</link>"
        "</channel></rss>"
    )
    assert doc.channel.link == "https://news.example/"


@pytest.mark.parametrize("content", ["", "   \n ", b"", b" \n"])
def test_parse_empty_content(content):
    with pytest.raises(ValidationError):
        parse_feed(content)


def test_parse_rejects_non_xml():
    with pytest.raises(ValidationError):
        parse_feed("<html><body>not a feed</body></html>")


def test_parse_rejects_non_rss_root():
    with pytest.raises(ValidationError):
        parse_feed('<?xml version="1.0"?><feed xmlns="http://www.w3.org/2005/Atom"></feed>')


def test_parse_rejects_rss_without_channel():
    with pytest.raises(ValidationError):
        parse_feed('<rss version="2.0"></rss>')


def test_parse_bytes_honours_declared_encoding():
    doc = parse_feed(LATIN1_FEED)

    assert doc.channel.title == "Caf\u00e9 News"
    assert doc.channel.item_list[0].title == "Cr\u00e8me br\u00fbl\u00e9e"


def test_parse_bytes_with_bom_and_leading_whitespace():
    doc = parse_feed(b"\xef\xbb\xbf\n  " + TWO_ITEM_FEED.encode("utf-8"))
    assert [i.link for i in doc.channel.item_list] == [ARTICLE_A, ARTICLE_B]


def test_parse_bytes_rejects_non_xml():
    with pytest.raises(ValidationError):
        parse_feed(b"<html><body>not a feed</body></html>")


def test_parse_error_is_distinct_from_validation_error():
    assert not issubclass(ParseError, ValidationError)


# ── Rewriter ──────────────────────────────────────────────────────────────────

def test_rewrite_points_links_at_gateway():
    doc = parse_feed(TWO_ITEM_FEED)
    rewritten, originals = rewrite(doc, BASE_URL)

    assert originals == {ARTICLE_A, ARTICLE_B}
    for item in rewritten.channel.item_list:
        assert item.link.startswith(f"{BASE_URL}/content/?contentURL=")


def test_rewritten_link_round_trips():
    tricky = "https://x.com/a b?q=1&r=é#frag"
    link = content_link(BASE_URL, tricky)
    assert _decoded(link) == tricky


def test_encoding_matches_encode_uri_component():
    link = content_link(BASE_URL, "https://x.com/a?b=c&d=e")
    assert link == f"{BASE_URL}/content/?contentURL=https%3A%2F%2Fx.com%2Fa%3Fb%3Dc%26d%3De"


def test_items_without_link_pass_through():
    doc = FeedDocument(FeedChannel(items=(FeedItem(title="t"), FeedItem(link="https://x.com/a"))))
    rewritten, originals = rewrite(doc, BASE_URL)

    assert rewritten.channel.item_list[0] == FeedItem(title="t")
    assert originals == {"https://x.com/a"}


def test_single_item_and_list_shapes_rewrite_identically():
    item = FeedItem("t", "https://x.com/a", "d")
    single = FeedDocument(FeedChannel("T", "L", "D", items=item))
    listed = FeedDocument(FeedChannel("T", "L", "D", items=[item]))

    assert rewrite(single, BASE_URL) == rewrite(listed, BASE_URL)


def test_rewrite_does_not_mutate_input():
    doc = parse_feed(TWO_ITEM_FEED)
    rewrite(doc, "http://one.test")
    second, _ = rewrite(doc, "http://two.test")

    assert [i.link for i in doc.channel.item_list] == [ARTICLE_A, ARTICLE_B]
    assert all(i.link.startswith("http://two.test/content/") for i in second.channel.item_list)


def test_channel_fields_copied_through():
    doc = parse_feed(TWO_ITEM_FEED)
    rewritten, _ = rewrite(doc, BASE_URL)
    assert rewritten.channel.title == doc.channel.title
    assert rewritten.channel.link == doc.channel.link
    assert rewritten.channel.description == doc.channel.description


def test_rewrite_is_idempotent_in_output():
    doc = parse_feed(TWO_ITEM_FEED)
    assert to_xml(rewrite(doc, BASE_URL)[0]) == to_xml(rewrite(doc, BASE_URL)[0])


# ── Serialiser ────────────────────────────────────────────────────────────────

def test_to_xml_escapes_five_entities():
    doc = FeedDocument(FeedChannel(title="""a & b < c > d " e ' f"""))
    xml = to_xml(doc)
    assert "<title>a &amp; b &lt; c &gt; d &quot; e &apos; f</title>" in xml


def test_to_xml_renders_empty_fields():
    doc = FeedDocument(FeedChannel(items=(FeedItem(title="only title"),)))
    xml = to_xml(doc)
    assert "<link></link>" in xml
    assert "<description></description>" in xml


def test_serialised_feed_parses_back():
    doc = parse_feed(TWO_ITEM_FEED)
    rewritten, _ = rewrite(doc, BASE_URL)
    again = parse_feed(to_xml(rewritten))

    assert again == rewritten
    assert [_decoded(i.link) for i in again.channel.item_list] == [ARTICLE_A, ARTICLE_B]
