"""Tests for pagesync.services.feed: Atom, JSON feed, sitemap and tag counts."""

from datetime import datetime, timedelta, timezone
from xml.etree import ElementTree

from pagesync.models.page import PageModel
from pagesync.services.feed import (
    ATOM_NS,
    SITEMAP_NS,
    SiteInfo,
    order_for_feed,
    render_feed,
    render_json_feed,
    render_sitemap,
    tag_counts,
)
from pagesync.services.renderer import MarkdownRenderer

_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
_SITE = SiteInfo(title="My Site", url="https://example.com/", author="Site Owner", lang="en")


def _page(page_id: str, publish_at=None, **overrides) -> PageModel:
    fields = {
        "page_id": page_id,
        "datasource_id": "blog",
        "title": f"Post {page_id}",
        "slug": f"post-{page_id}",
        "content": f"Content of **{page_id}**",
        "publish_at": publish_at,
        "updated_at": _NOW - timedelta(days=30),
    }
    fields.update(overrides)
    return PageModel(**fields)


def _atom_entries(xml: str):
    root = ElementTree.fromstring(xml.encode("utf-8"))
    return root, root.findall(f"{{{ATOM_NS}}}entry")


class TestOrderForFeed:
    def test_newest_first_with_drafts_as_now(self):
        pages = [
            _page("a", publish_at=_NOW - timedelta(days=2)),
            _page("draft"),
            _page("b", publish_at=_NOW - timedelta(days=1)),
        ]
        assert [page.page_id for page in order_for_feed(pages, _NOW)] == ["draft", "b", "a"]

    def test_future_posts_sort_before_drafts(self):
        pages = [_page("draft"), _page("future", publish_at=_NOW + timedelta(days=1))]
        assert [page.page_id for page in order_for_feed(pages, _NOW)] == ["future", "draft"]


class TestRenderFeed:
    def test_entries_are_ordered(self):
        pages = [
            _page("a", publish_at=_NOW - timedelta(days=2)),
            _page("draft"),
            _page("b", publish_at=_NOW - timedelta(days=1)),
        ]
        _, entries = _atom_entries(render_feed(pages, _SITE, now=_NOW))
        titles = [entry.find(f"{{{ATOM_NS}}}title").text for entry in entries]
        assert titles == ["Post draft", "Post b", "Post a"]

    def test_draft_published_is_now(self):
        _, entries = _atom_entries(render_feed([_page("draft")], _SITE, now=_NOW))
        assert entries[0].find(f"{{{ATOM_NS}}}published").text == "2024-06-01T12:00:00Z"

    def test_feed_metadata(self):
        root, _ = _atom_entries(render_feed([], _SITE, now=_NOW))
        assert root.find(f"{{{ATOM_NS}}}title").text == "My Site"
        assert root.find(f"{{{ATOM_NS}}}author/{{{ATOM_NS}}}name").text == "Site Owner"
        assert root.find(f"{{{ATOM_NS}}}updated").text == "2024-06-01T12:00:00Z"

    def test_entry_links_and_categories(self):
        page = _page("a", publish_at=_NOW, tags=["python", {"name": "ignored"}])
        _, entries = _atom_entries(render_feed([page], _SITE, now=_NOW))
        entry = entries[0]
        assert entry.find(f"{{{ATOM_NS}}}link").get("href") == "https://example.com/post-a"
        terms = [cat.get("term") for cat in entry.findall(f"{{{ATOM_NS}}}category")]
        assert terms == ["python"]

    def test_entry_authors_fall_back_to_site_author(self):
        _, entries = _atom_entries(render_feed([_page("a")], _SITE, now=_NOW))
        names = [name.text for name in entries[0].iter(f"{{{ATOM_NS}}}name")]
        assert names == ["Site Owner"]

    def test_content_is_rendered_when_renderer_given(self):
        xml = render_feed([_page("a")], _SITE, now=_NOW, renderer=MarkdownRenderer(cache_size=0))
        _, entries = _atom_entries(xml)
        content = entries[0].find(f"{{{ATOM_NS}}}content")
        assert content.get("type") == "html"
        assert "<strong>a</strong>" in content.text


class TestRenderJsonFeed:
    def test_structure_and_order(self):
        pages = [_page("a", publish_at=_NOW - timedelta(days=1)), _page("draft")]
        feed = render_json_feed(pages, _SITE, now=_NOW)
        assert feed["version"] == "https://jsonfeed.org/version/1.1"
        assert feed["feed_url"] == "https://example.com/feed.json"
        assert [item["id"] for item in feed["items"]] == ["draft", "a"]
        assert feed["items"][0]["date_published"] == "2024-06-01T12:00:00Z"
        assert "content_html" not in feed["items"][0]

    def test_authors_from_page(self):
        page = _page("a", authors=["Ada", {"name": "Grace"}])
        feed = render_json_feed([page], _SITE, now=_NOW)
        assert feed["items"][0]["authors"] == [{"name": "Ada"}, {"name": "Grace"}]


class TestRenderSitemap:
    def test_lists_home_and_pages(self):
        xml = render_sitemap([_page("a"), _page("b")], _SITE)
        root = ElementTree.fromstring(xml.encode("utf-8"))
        locs = [loc.text for loc in root.iter(f"{{{SITEMAP_NS}}}loc")]
        assert locs == ["https://example.com/", "https://example.com/post-a", "https://example.com/post-b"]

    def test_lastmod_uses_updated_at(self):
        xml = render_sitemap([_page("a")], _SITE)
        root = ElementTree.fromstring(xml.encode("utf-8"))
        lastmods = [node.text for node in root.iter(f"{{{SITEMAP_NS}}}lastmod")]
        assert lastmods == ["2024-05-02T12:00:00Z"]


class TestTagCounts:
    def test_counts_sorted_by_frequency_then_name(self):
        pages = [
            _page("1", tags=["a", "b"]),
            _page("2", tags=["a"]),
            _page("3", tags=["a", "c"]),
        ]
        counts = [(tag.name, tag.count) for tag in tag_counts(pages)]
        assert counts == [("a", 3), ("b", 1), ("c", 1)]

    def test_non_string_tags_are_ignored(self):
        pages = [_page("1", tags=["a", {"name": "rich"}, 7])]
        assert [(tag.name, tag.count) for tag in tag_counts(pages)] == [("a", 1)]

    def test_empty(self):
        assert tag_counts([]) == []
