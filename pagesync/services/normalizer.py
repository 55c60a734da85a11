"""Text normalisation helpers: slugs, heading anchors, excerpts, HTML bodies."""

import re
import unicodedata
from typing import Dict, Optional

from bs4 import BeautifulSoup
from markdown_it import MarkdownIt
from markdownify import markdownify

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

# Plain CommonMark, used only to strip markup before taking an excerpt
_EXCERPT_PARSER = MarkdownIt("commonmark", {"html": True})


def slugify(value: str, fallback: str = "section") -> str:
    """Turn *value* into a lowercase, ASCII-only, hyphen-separated slug."""
    # Normalise unicode, keep only ASCII
    slug = unicodedata.normalize("NFKD", value)
    slug = slug.encode("ascii", "ignore").decode("ascii")

    # Lowercase and replace runs of non-alphanumeric chars with a single hyphen
    slug = _NON_ALNUM_RE.sub("-", slug.lower())
    slug = slug.strip("-")

    return slug or fallback


class AnchorRegistry:
    """Hands out unique anchor ids within one document (``intro``, ``intro-1``, ...)."""

    def __init__(self) -> None:
        self._seen: Dict[str, int] = {}

    def anchor_for(self, heading: str) -> str:
        base = slugify(heading)
        if base not in self._seen:
            self._seen[base] = 0
            return base
        count = self._seen[base]
        candidate = base
        # A literal heading may already have produced "intro-1"
        while candidate in self._seen:
            count += 1
            candidate = f"{base}-{count}"
        self._seen[base] = count
        self._seen[candidate] = 0
        return candidate


def make_excerpt(content: Optional[str], length: int = 200) -> str:
    """Return a plain-text prefix of markdown *content*, cut on a word boundary."""
    if not content:
        return ""
    html = _EXCERPT_PARSER.render(content)
    plain = BeautifulSoup(html, "lxml").get_text(separator=" ", strip=True)
    plain = " ".join(plain.split())
    if len(plain) <= length:
        return plain
    cut = plain[:length].rsplit(" ", 1)[0]
    return f"{cut}…"


def html_to_markdown(html: str) -> str:
    """Convert an HTML page body to markdown (ATX headings)."""
    return markdownify(html, heading_style="ATX").strip()
