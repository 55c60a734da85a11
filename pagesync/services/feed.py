"""Derived views over a page collection: Atom feed, JSON feed, sitemap, tag counts."""

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote, urljoin
from xml.etree import ElementTree

from pydantic import BaseModel

from pagesync.models.page import PageModel
from pagesync.models.response import TagCount
from pagesync.services.normalizer import make_excerpt
from pagesync.services.renderer import Renderer

ATOM_NS = "http://www.w3.org/2005/Atom"
SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
JSON_FEED_VERSION = "https://jsonfeed.org/version/1.1"

_XML_DECLARATION = "<?xml version='1.0' encoding='utf-8'?>\n"


class SiteInfo(BaseModel):
    title: str
    url: str
    author: str
    subtitle: Optional[str] = None
    lang: Optional[str] = None

    def url_for(self, path: str) -> str:
        base = self.url if self.url.endswith("/") else f"{self.url}/"
        return urljoin(base, path)


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def order_for_feed(pages: Sequence[PageModel], now: datetime) -> List[PageModel]:
    """Newest first by ``publish_at``; drafts count as published *now*."""
    return sorted(pages, key=lambda page: page.publish_at or now, reverse=True)


def _author_names(page: PageModel, fallback: str) -> List[str]:
    names: List[str] = []
    for author in page.authors:
        if isinstance(author, str) and author.strip():
            names.append(author.strip())
        elif isinstance(author, dict) and author.get("name"):
            names.append(str(author["name"]))
    return names or [fallback]


def _string_tags(page: PageModel) -> List[str]:
    return [tag for tag in page.tags if isinstance(tag, str)]


def _sub(parent: ElementTree.Element, tag: str, text: Optional[str] = None, **attrs: str) -> ElementTree.Element:
    elem = ElementTree.SubElement(parent, tag, attrs)
    if text is not None:
        elem.text = text
    return elem


def render_feed(
    pages: Sequence[PageModel],
    site: SiteInfo,
    now: Optional[datetime] = None,
    renderer: Optional[Renderer] = None,
) -> str:
    """Return an Atom 1.0 document for *pages*.

    Entry content is rendered HTML when a *renderer* is given, the raw
    markdown otherwise.
    """
    now = now or datetime.now(timezone.utc)

    attrs = {"xmlns": ATOM_NS}
    if site.lang:
        attrs["xml:lang"] = site.lang
    feed = ElementTree.Element("feed", attrs)
    _sub(feed, "id", site.url)
    _sub(feed, "title", site.title)
    if site.subtitle:
        _sub(feed, "subtitle", site.subtitle)
    _sub(feed, "link", href=site.url)
    _sub(feed, "link", href=site.url_for("atom.xml"), rel="self", type="application/atom+xml")
    _sub(feed, "updated", _iso(now))
    author = _sub(feed, "author")
    _sub(author, "name", site.author)

    for page in order_for_feed(pages, now):
        link = site.url_for(page.slug)
        published = page.publish_at or now
        entry = _sub(feed, "entry")
        _sub(entry, "title", page.title, type="html")
        _sub(entry, "link", href=link)
        _sub(entry, "id", link)
        _sub(entry, "published", _iso(published))
        _sub(entry, "updated", _iso(page.updated_at or published))
        for name in _author_names(page, site.author):
            _sub(_sub(entry, "author"), "name", name)
        _sub(entry, "summary", make_excerpt(page.content), type="text")
        if renderer is not None:
            _sub(entry, "content", renderer.render(page.content or "").html, type="html")
        else:
            _sub(entry, "content", page.content or "", type="text")
        for tag in _string_tags(page):
            _sub(entry, "category", term=tag, scheme=site.url_for(f"?tags={quote(tag)}"))

    return _XML_DECLARATION + ElementTree.tostring(feed, encoding="unicode")


def render_json_feed(
    pages: Sequence[PageModel],
    site: SiteInfo,
    now: Optional[datetime] = None,
    renderer: Optional[Renderer] = None,
) -> Dict[str, Any]:
    """Return a JSON Feed 1.1 document for *pages*, ordered like :func:`render_feed`."""
    now = now or datetime.now(timezone.utc)
    items = []
    for page in order_for_feed(pages, now):
        published = page.publish_at or now
        item: Dict[str, Any] = {
            "id": page.page_id,
            "url": site.url_for(page.slug),
            "title": page.title,
            "summary": make_excerpt(page.content),
            "content_text": page.content or "",
            "date_published": _iso(published),
            "date_modified": _iso(page.updated_at or published),
            "tags": _string_tags(page),
            "authors": [{"name": name} for name in _author_names(page, site.author)],
        }
        if renderer is not None:
            item["content_html"] = renderer.render(page.content or "").html
        items.append(item)

    feed: Dict[str, Any] = {
        "version": JSON_FEED_VERSION,
        "title": site.title,
        "home_page_url": site.url,
        "feed_url": site.url_for("feed.json"),
        "authors": [{"name": site.author}],
        "items": items,
    }
    if site.subtitle:
        feed["description"] = site.subtitle
    if site.lang:
        feed["language"] = site.lang
    return feed


def render_sitemap(pages: Sequence[PageModel], site: SiteInfo) -> str:
    urlset = ElementTree.Element("urlset", {"xmlns": SITEMAP_NS})
    home = _sub(urlset, "url")
    _sub(home, "loc", site.url)
    _sub(home, "changefreq", "weekly")
    _sub(home, "priority", "0.7")

    for page in pages:
        entry = _sub(urlset, "url")
        _sub(entry, "loc", site.url_for(page.slug))
        lastmod = page.updated_at or page.publish_at
        if lastmod is not None:
            _sub(entry, "lastmod", _iso(lastmod))
        _sub(entry, "changefreq", "weekly")
        _sub(entry, "priority", "0.5")

    return _XML_DECLARATION + ElementTree.tostring(urlset, encoding="unicode")


def tag_counts(pages: Sequence[PageModel]) -> List[TagCount]:
    """Count string tags across *pages*: count descending, then name ascending."""
    counts: Counter = Counter()
    for page in pages:
        counts.update(_string_tags(page))
    return [
        TagCount(name=name, count=count)
        for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]
