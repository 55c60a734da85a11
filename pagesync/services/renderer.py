"""Markdown → (HTML, table of contents) rendering with an optional fingerprint cache."""

import hashlib
import json
import logging
import re
import threading
from collections import OrderedDict
from functools import partial
from typing import List, Optional, Protocol

from markdown_it import MarkdownIt
from markdown_it.common.utils import escapeHtml
from markdown_it.token import Token
from mdit_py_plugins.footnote import footnote_plugin
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from pagesync.models.render import RenderFeatures, RenderFlags, RenderResult, TocEntry
from pagesync.services.normalizer import AnchorRegistry

logger = logging.getLogger(__name__)

# Bump when the HTML produced for the same input changes
RENDERER_VERSION = "2"

# {red}(some text) → <span class="text-red">some text</span>
_TEXT_COLOR_RE = re.compile(r"\{([a-z]+)\}\(([^)<]+?)\)")

# Token spans only; the fence renderer adds <pre><code class="language-xxx">
_CODE_FORMATTER = HtmlFormatter(nowrap=True)


class Renderer(Protocol):
    def render(self, markdown_text: str, flags: Optional[RenderFlags] = None) -> RenderResult:
        ...


def fingerprint(markdown_text: str, flags: RenderFlags) -> str:
    """Deterministic cache key for a ``(markdown_text, flags)`` pair."""
    payload = json.dumps(
        {"version": RENDERER_VERSION, "flags": flags.model_dump(), "text": markdown_text},
        sort_keys=True,
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _mangle(value: str) -> str:
    """Encode every character as a hex character reference to hide addresses from scrapers."""
    return "".join(f"&#x{ord(char):x};" for char in value)


def _inline_text(token: Token) -> str:
    """Plain text of an inline token, markup stripped."""
    if not token.children:
        return token.content
    return "".join(child.content for child in token.children if child.type in ("text", "code_inline"))


def _render_link_open(self, tokens, idx, options, env):
    token = tokens[idx]
    href = token.attrGet("href")
    if token.meta.get("mangle") and href:
        title = token.attrGet("title")
        title_attr = f' title="{escapeHtml(str(title))}"' if title else ""
        return f'<a href="{_mangle(str(href))}"{title_attr}>'
    return self.renderToken(tokens, idx, options, env)


def _render_text(self, tokens, idx, options, env):
    token = tokens[idx]
    if token.meta.get("mangle"):
        return _mangle(token.content)
    content = escapeHtml(token.content)
    if env.get("text_colors"):
        content = _TEXT_COLOR_RE.sub(r'<span class="text-\1">\2</span>', content)
    return content


def _render_code_inline(self, tokens, idx, options, env):
    token = tokens[idx]
    css_class = env.get("inline_code_class")
    class_attr = f' class="{escapeHtml(css_class)}"' if css_class else ""
    return f"<code{class_attr}{self.renderAttrs(token)}>{escapeHtml(token.content)}</code>"


def _highlight_code(code: str, language: str, attrs: str, line_numbers: bool = False) -> str:
    """Pygments token markup for a fenced block; ``""`` lets markdown-it escape it verbatim."""
    if not language:
        return ""
    try:
        lexer = get_lexer_by_name(language)
    except ClassNotFound:
        return ""
    highlighted = highlight(code, lexer, _CODE_FORMATTER)
    if line_numbers:
        lines = highlighted.rstrip("\n").split("\n")
        highlighted = "\n".join(
            f'<span class="line-number">{number}</span>{line}' for number, line in enumerate(lines, start=1)
        ) + "\n"
    return highlighted


def _add_heading_link(inline: Token, anchor: str) -> None:
    """Wrap the heading text in a link to its own anchor, unless it already holds a link."""
    children = inline.children or []
    if not children or any(child.type == "link_open" for child in children):
        return
    link_open = Token("link_open", "a", 1)
    link_open.attrSet("href", f"#{anchor}")
    inline.children = [link_open, *children, Token("link_close", "a", -1)]


def _build_parser(flags: RenderFlags) -> MarkdownIt:
    options = {"html": flags.html, "linkify": flags.linkify, "typographer": flags.typographer}
    if flags.highlight:
        options["highlight"] = partial(_highlight_code, line_numbers=flags.line_numbers)
    md = MarkdownIt("commonmark", options)
    if flags.tables:
        md.enable("table")
    if flags.strikethrough:
        md.enable("strikethrough")
    if flags.linkify:
        md.enable("linkify")
    if flags.typographer:
        md.enable(["replacements", "smartquotes"])
    if flags.footnotes:
        md.use(footnote_plugin)
    md.add_render_rule("link_open", _render_link_open)
    md.add_render_rule("text", _render_text)
    md.add_render_rule("code_inline", _render_code_inline)
    return md


def _mark_mailto_children(children: List[Token]) -> None:
    inside_mailto = False
    for child in children:
        if child.type == "link_open":
            href = str(child.attrGet("href") or "")
            inside_mailto = href.startswith("mailto:")
            if inside_mailto:
                child.meta["mangle"] = True
        elif child.type == "link_close":
            inside_mailto = False
        elif inside_mailto and child.type == "text":
            child.meta["mangle"] = True


def render_markdown(markdown_text: str, flags: RenderFlags) -> RenderResult:
    """Render *markdown_text* without any caching."""
    md = _build_parser(flags)
    env = {"text_colors": flags.text_colors, "inline_code_class": flags.inline_code_class}
    tokens = md.parse(markdown_text or "", env)

    anchors = AnchorRegistry()
    toc: List[TocEntry] = []
    languages: List[str] = []

    for idx, token in enumerate(tokens):
        if token.type == "heading_open":
            heading = _inline_text(tokens[idx + 1])
            anchor = anchors.anchor_for(heading)
            token.attrSet("id", anchor)
            level = int(token.tag[1:])
            if flags.toc_min_level <= level <= flags.toc_max_level:
                toc.append(TocEntry(level=level, text=heading, anchor=anchor))
            if flags.heading_links:
                _add_heading_link(tokens[idx + 1], anchor)
        elif token.type == "fence":
            info = token.info.strip()
            language = info.split()[0] if info else ""
            if language and language not in languages:
                languages.append(language)
        elif token.type == "inline" and token.children:
            if flags.lazy_images:
                for child in token.children:
                    if child.type == "image":
                        child.attrSet("loading", "lazy")
            if flags.mangle_emails:
                _mark_mailto_children(token.children)

    html = md.renderer.render(tokens, md.options, env)

    features = RenderFeatures(languages=languages, images="<img" in html)
    return RenderResult(html=html, toc=toc, features=features)


class MarkdownRenderer:
    """Markdown renderer with an in-process LRU side table keyed by :func:`fingerprint`.

    ``cache_size=0`` disables caching; output is identical either way.
    """

    def __init__(self, default_flags: Optional[RenderFlags] = None, cache_size: int = 256):
        self.default_flags = default_flags or RenderFlags()
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, RenderResult]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def render(self, markdown_text: str, flags: Optional[RenderFlags] = None) -> RenderResult:
        flags = flags or self.default_flags
        if not self.cache_size:
            return render_markdown(markdown_text, flags)

        key = fingerprint(markdown_text, flags)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                self.hits += 1
                return cached.model_copy(deep=True)

        result = render_markdown(markdown_text, flags)

        with self._lock:
            self.misses += 1
            self._cache[key] = result
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return result.model_copy(deep=True)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
