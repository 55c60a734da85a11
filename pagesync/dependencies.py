"""Service wiring shared by the routers.

The services live on ``app.state.services``; they are built from
:data:`pagesync.config.settings` on first use unless something (tests, an
embedding application) installed its own set beforehand.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import Request

from pagesync.config import Settings, settings
from pagesync.models.render import RenderFlags
from pagesync.models.sync import RemovalPolicy
from pagesync.services.feed import SiteInfo
from pagesync.services.renderer import MarkdownRenderer
from pagesync.services.retrieval import RetrievalService
from pagesync.services.source import ContentSource, HttpContentSource
from pagesync.services.store import PageStore
from pagesync.services.sync import SyncCoordinator


@dataclass
class Services:
    store: PageStore
    source: ContentSource
    renderer: MarkdownRenderer
    retrieval: RetrievalService
    coordinator: SyncCoordinator
    site: SiteInfo
    datasources: List[str] = field(default_factory=list)
    sync_secret: Optional[str] = None

    def knows(self, datasource_id: str) -> bool:
        """An empty datasource list means every datasource is accepted."""
        return not self.datasources or datasource_id in self.datasources


def build_services(
    config: Settings,
    store: Optional[PageStore] = None,
    source: Optional[ContentSource] = None,
) -> Services:
    store = store or PageStore.from_url(
        config.database_url,
        search_scan_limit=config.search_scan_limit,
        list_max_limit=config.list_max_limit,
    )
    source = source or HttpContentSource(
        config.source_base_url, token=config.source_token, timeout=config.source_timeout
    )
    flags = RenderFlags(
        html=config.markdown_html,
        lazy_images=config.markdown_lazy_images,
        mangle_emails=config.markdown_mangle_emails,
        text_colors=config.markdown_text_colors,
        highlight=config.markdown_highlight,
        line_numbers=config.markdown_line_numbers,
        linkify=config.markdown_linkify,
        typographer=config.markdown_typographer,
        footnotes=config.markdown_footnotes,
        heading_links=config.markdown_heading_links,
        inline_code_class=config.markdown_inline_code_class,
        toc_min_level=config.toc_min_level,
        toc_max_level=config.toc_max_level,
    )
    renderer = MarkdownRenderer(default_flags=flags, cache_size=config.render_cache_size)
    return Services(
        store=store,
        source=source,
        renderer=renderer,
        retrieval=RetrievalService(
            store,
            renderer,
            search_limit=config.search_limit,
            default_limit=config.list_default_limit,
        ),
        coordinator=SyncCoordinator(source, store, removal_policy=RemovalPolicy(config.removal_policy)),
        site=SiteInfo(
            title=config.site_title,
            subtitle=config.site_subtitle,
            url=config.site_url,
            author=config.site_author,
            lang=config.site_lang,
        ),
        datasources=list(config.datasources),
        sync_secret=config.sync_secret,
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services(settings)
        request.app.state.services = services
    return services
