"""Tests for pagesync.services.renderer and the normaliser helpers it relies on."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from pagesync.models.render import RenderFlags
from pagesync.services.normalizer import AnchorRegistry, make_excerpt, slugify
from pagesync.services.renderer import MarkdownRenderer, fingerprint, render_markdown

_DOC = """# Title

Intro paragraph.

## Getting Started

### Install

#### Details

##### Too deep

```python
print("hi")
```

```bash
pip install pagesync
```
"""


class TestSlugify:
    def test_basic(self):
        assert slugify("Getting Started") == "getting-started"

    def test_strips_accents_and_symbols(self):
        assert slugify("Café & Crème!") == "cafe-creme"

    def test_fallback_for_empty(self):
        assert slugify("!!!") == "section"


class TestAnchorRegistry:
    def test_duplicates_get_suffixes(self):
        anchors = AnchorRegistry()
        assert [anchors.anchor_for("Intro") for _ in range(3)] == ["intro", "intro-1", "intro-2"]

    def test_literal_suffix_heading_does_not_collide(self):
        anchors = AnchorRegistry()
        assert anchors.anchor_for("Intro") == "intro"
        assert anchors.anchor_for("Intro 1") == "intro-1"
        assert anchors.anchor_for("Intro") == "intro-2"


class TestRenderMarkdown:
    def test_toc_respects_level_range(self):
        result = render_markdown(_DOC, RenderFlags())
        assert [(entry.level, entry.text) for entry in result.toc] == [
            (2, "Getting Started"),
            (3, "Install"),
            (4, "Details"),
        ]

    def test_custom_toc_range(self):
        result = render_markdown(_DOC, RenderFlags(toc_min_level=1, toc_max_level=2))
        assert [entry.level for entry in result.toc] == [1, 2]

    def test_headings_get_anchor_ids(self):
        result = render_markdown(_DOC, RenderFlags())
        assert '<h2 id="getting-started"><a href="#getting-started">Getting Started</a></h2>' in result.html
        assert result.toc[0].anchor == "getting-started"

    def test_heading_anchor_ignores_inline_markup(self):
        result = render_markdown("## Use `sync` *now*", RenderFlags())
        assert result.toc[0].text == "Use sync now"
        assert result.toc[0].anchor == "use-sync-now"

    def test_code_languages_are_reported_once(self):
        result = render_markdown(_DOC + "\n```python\nx = 1\n```\n", RenderFlags())
        assert result.features.languages == ["python", "bash"]

    def test_images_are_lazy(self):
        result = render_markdown("![Alt](pic.png)", RenderFlags())
        assert 'loading="lazy"' in result.html
        assert result.features.images is True

    def test_lazy_images_can_be_disabled(self):
        result = render_markdown("![Alt](pic.png)", RenderFlags(lazy_images=False))
        assert "loading" not in result.html

    def test_mailto_links_are_mangled(self):
        result = render_markdown("[me@example.com](mailto:me@example.com)", RenderFlags())
        assert "me@example.com" not in result.html
        assert "&#x6d;&#x65;" in result.html

    def test_regular_links_are_not_mangled(self):
        result = render_markdown("[site](https://example.com)", RenderFlags())
        assert '<a href="https://example.com">site</a>' in result.html

    def test_mangling_can_be_disabled(self):
        result = render_markdown("[mail](mailto:me@example.com)", RenderFlags(mangle_emails=False))
        assert 'href="mailto:me@example.com"' in result.html

    def test_tables_and_strikethrough(self):
        result = render_markdown("| a | b |\n|---|---|\n| 1 | 2 |\n\n~~old~~", RenderFlags())
        assert "<table>" in result.html
        assert "<s>old</s>" in result.html

    def test_raw_html_respects_flag(self):
        assert "<div>raw</div>" in render_markdown("<div>raw</div>", RenderFlags()).html
        assert "&lt;div&gt;" in render_markdown("<div>raw</div>", RenderFlags(html=False)).html

    def test_text_colors(self):
        result = render_markdown("This is {red}(important).", RenderFlags(text_colors=True))
        assert '<span class="text-red">important</span>' in result.html

    def test_text_colors_leave_inline_code_alone(self):
        result = render_markdown("Use `{red}(x)` to get {red}(y).", RenderFlags(text_colors=True))
        assert '<code class="inline-code-block">{red}(x)</code>' in result.html
        assert '<span class="text-red">y</span>' in result.html

    def test_text_colors_leave_attributes_alone(self):
        result = render_markdown("![{red}(alt)](pic.png)", RenderFlags(text_colors=True))
        assert 'alt="{red}(alt)"' in result.html
        assert "<span" not in result.html

    def test_text_colors_leave_code_blocks_alone(self):
        result = render_markdown("```\n{red}(x)\n```", RenderFlags(text_colors=True))
        assert "{red}(x)" in result.html
        assert "text-red" not in result.html

    def test_text_colors_off_by_default(self):
        result = render_markdown("This is {red}(important).", RenderFlags())
        assert "{red}(important)" in result.html

    def test_empty_input(self):
        result = render_markdown("", RenderFlags())
        assert result.html == ""
        assert result.toc == []

    def test_inverted_toc_range_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            RenderFlags(toc_min_level=4, toc_max_level=2)


class TestRenderFeatures:
    def test_code_is_highlighted(self):
        result = render_markdown('```python\nprint("hi")\n```', RenderFlags())
        assert '<pre><code class="language-python">' in result.html
        assert '<span class="nb">print</span>' in result.html

    def test_unknown_language_is_escaped_verbatim(self):
        result = render_markdown("```nosuchlang\n<b>x</b>\n```", RenderFlags())
        assert '<pre><code class="language-nosuchlang">&lt;b&gt;x&lt;/b&gt;\n</code></pre>' in result.html

    def test_highlighting_can_be_disabled(self):
        result = render_markdown('```python\nprint("hi")\n```', RenderFlags(highlight=False))
        assert "<span" not in result.html
        assert "print(&quot;hi&quot;)" in result.html

    def test_line_numbers(self):
        result = render_markdown("```python\na = 1\nb = 2\n```", RenderFlags(line_numbers=True))
        assert '<span class="line-number">1</span>' in result.html
        assert '<span class="line-number">2</span>' in result.html
        assert '<span class="line-number">3</span>' not in result.html

    def test_bare_urls_are_linked(self):
        result = render_markdown("See https://example.com for more.", RenderFlags())
        assert '<a href="https://example.com">https://example.com</a>' in result.html

    def test_linkify_can_be_disabled(self):
        result = render_markdown("See https://example.com for more.", RenderFlags(linkify=False))
        assert "<a" not in result.html

    def test_typographer(self):
        result = render_markdown('He said "hi" (c) 2024', RenderFlags())
        assert "“hi”" in result.html
        assert "©" in result.html

    def test_typographer_can_be_disabled(self):
        result = render_markdown('He said "hi"', RenderFlags(typographer=False))
        assert "&quot;hi&quot;" in result.html

    def test_footnotes(self):
        result = render_markdown("Claim.[^1]\n\n[^1]: Source.", RenderFlags())
        assert 'class="footnote-ref"' in result.html
        assert 'class="footnotes"' in result.html
        assert "Source." in result.html

    def test_footnotes_can_be_disabled(self):
        result = render_markdown("Claim.[^1]\n\n[^1]: Source.", RenderFlags(footnotes=False))
        assert "footnote" not in result.html

    def test_heading_links_can_be_disabled(self):
        result = render_markdown("## Intro", RenderFlags(heading_links=False))
        assert result.html == '<h2 id="intro">Intro</h2>\n'

    def test_heading_with_link_is_not_wrapped_again(self):
        result = render_markdown("## See [docs](https://example.com)", RenderFlags())
        assert result.html.count("<a ") == 1

    def test_inline_code_class(self):
        assert '<code class="inline-code-block">x</code>' in render_markdown("`x`", RenderFlags()).html
        assert "<code>x</code>" in render_markdown("`x`", RenderFlags(inline_code_class="")).html


class TestMarkdownRenderer:
    def test_cached_and_uncached_output_match(self):
        cached = MarkdownRenderer(cache_size=8)
        uncached = MarkdownRenderer(cache_size=0)
        assert cached.render(_DOC) == uncached.render(_DOC)
        assert cached.render(_DOC) == uncached.render(_DOC)

    def test_repeated_render_hits_cache(self):
        renderer = MarkdownRenderer(cache_size=8)
        renderer.render(_DOC)
        renderer.render(_DOC)
        assert renderer.misses == 1
        assert renderer.hits == 1

    def test_flags_are_part_of_the_key(self):
        renderer = MarkdownRenderer(cache_size=8)
        with_lazy = renderer.render("![a](b.png)")
        without_lazy = renderer.render("![a](b.png)", RenderFlags(lazy_images=False))
        assert with_lazy.html != without_lazy.html
        assert renderer.misses == 2

    def test_cache_is_bounded(self):
        renderer = MarkdownRenderer(cache_size=2)
        for text in ("a", "b", "c"):
            renderer.render(text)
        renderer.render("a")
        assert renderer.misses == 4

    def test_callers_cannot_corrupt_cache(self):
        renderer = MarkdownRenderer(cache_size=8)
        first = renderer.render(_DOC)
        first.toc.clear()
        assert len(renderer.render(_DOC).toc) == 3

    def test_fingerprint_is_stable(self):
        flags = RenderFlags()
        assert fingerprint("x", flags) == fingerprint("x", RenderFlags())
        assert fingerprint("x", flags) != fingerprint("y", flags)


class TestMakeExcerpt:
    def test_strips_markup(self):
        assert make_excerpt("# Title\n\nSome **bold** text.") == "Title Some bold text."

    def test_cuts_on_word_boundary(self):
        excerpt = make_excerpt("word " * 100, length=22)
        assert excerpt == "word word word word…"

    def test_empty(self):
        assert make_excerpt(None) == ""
