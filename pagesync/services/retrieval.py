"""Read path: pages by slug, by collection and by quick search, rendered on demand."""

import logging
from typing import List, Optional

from pagesync.models.page import PageModel
from pagesync.models.render import RenderFlags
from pagesync.models.response import RenderedPage, SearchHit
from pagesync.services.errors import StoreError
from pagesync.services.normalizer import make_excerpt
from pagesync.services.renderer import Renderer
from pagesync.services.store import PageStore

logger = logging.getLogger(__name__)

# Ceiling for whole-collection aggregates such as tag counts
MAX_COLLECTED_PAGES = 5000


class RetrievalService:
    def __init__(
        self,
        store: PageStore,
        renderer: Renderer,
        search_limit: int = 5,
        default_limit: int = 20,
    ):
        self.store = store
        self.renderer = renderer
        self.search_limit = search_limit
        self.default_limit = default_limit

    def get_all_posts(
        self,
        limit: Optional[int] = None,
        datasource_id: Optional[str] = None,
        offset: int = 0,
        published_only: bool = False,
    ) -> List[PageModel]:
        return self.store.list(
            datasource_id=datasource_id,
            limit=limit if limit is not None else self.default_limit,
            offset=offset,
            published_only=published_only,
        )

    def collect_posts(self, datasource_id: str, max_pages: int = MAX_COLLECTED_PAGES) -> List[PageModel]:
        """Page through a datasource in store-sized batches, up to *max_pages* rows."""
        batch_size = self.store.list_max_limit
        collected: List[PageModel] = []
        while len(collected) < max_pages:
            batch = self.store.list(datasource_id=datasource_id, limit=batch_size, offset=len(collected))
            collected.extend(batch)
            if not batch or len(batch) < batch_size:
                break
        return collected[:max_pages]

    def get_post_by_slug(self, datasource_id: str, slug: str) -> PageModel:
        """Raises :class:`NotFoundError` on a miss and :class:`StoreError` on failure."""
        return self.store.get_by_slug(datasource_id, slug)

    def render_post(self, page: PageModel, flags: Optional[RenderFlags] = None) -> RenderedPage:
        result = self.renderer.render(page.content or "", flags)
        return RenderedPage(page=page, html=result.html, toc=result.toc, features=result.features)

    def get_rendered_post(self, datasource_id: str, slug: str, flags: Optional[RenderFlags] = None) -> RenderedPage:
        return self.render_post(self.get_post_by_slug(datasource_id, slug), flags)

    def search_quickly(self, query: str, datasource_id: Optional[str] = None) -> List[SearchHit]:
        """Bounded ranked search.  A store failure yields an empty result, never an error."""
        try:
            pages = self.store.search(query, limit=self.search_limit, datasource_id=datasource_id)
        except StoreError as exc:
            logger.warning("Quick search failed for %r: %s", query, exc)
            return []

        return [
            SearchHit(
                page_id=page.page_id,
                datasource_id=page.datasource_id,
                slug=page.slug,
                title=page.title,
                excerpt=make_excerpt(page.content),
                publish_at=page.publish_at,
                tags=page.tags,
            )
            for page in pages
        ]
