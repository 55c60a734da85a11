import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from pagesync.dependencies import Services, get_services
from pagesync.models.response import PostListResponse, RenderedPage, SearchHit, TagCountResponse
from pagesync.services.errors import NotFoundError, StoreError
from pagesync.services.feed import tag_counts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.get("/search/quick", response_model=List[SearchHit], summary="Quick substring search")
def search_quick(
    q: str = Query(default="", description="Case-insensitive substring to look for."),
    datasource: Optional[str] = Query(default=None),
    services: Services = Depends(get_services),
) -> List[SearchHit]:
    """Return at most the configured number of hits; failures yield ``[]``."""
    return services.retrieval.search_quickly(q, datasource_id=datasource)


@router.get("/{datasource}/posts", response_model=PostListResponse, summary="List a datasource's pages")
def list_posts(
    datasource: str,
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    published_only: bool = False,
    services: Services = Depends(get_services),
) -> PostListResponse:
    try:
        posts = services.retrieval.get_all_posts(
            limit=limit, datasource_id=datasource, offset=offset, published_only=published_only
        )
    except StoreError as exc:
        logger.error("Listing posts for %s failed: %s", datasource, exc)
        raise HTTPException(status_code=500, detail="Failed to load posts.")

    effective_limit = min(limit or services.retrieval.default_limit, services.store.list_max_limit)
    return PostListResponse(
        datasource_id=datasource,
        limit=effective_limit,
        offset=offset,
        count=len(posts),
        posts=posts,
    )


@router.get("/{datasource}/posts/{slug}", response_model=RenderedPage, summary="Fetch and render one page")
def get_post(
    datasource: str,
    slug: str,
    response: Response,
    services: Services = Depends(get_services),
) -> RenderedPage:
    try:
        rendered = services.retrieval.get_rendered_post(datasource, slug)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Post not found")
    except StoreError as exc:
        logger.error("Failed to load post %s/%s: %s", datasource, slug, exc)
        raise HTTPException(status_code=500, detail="Failed to load post")

    response.headers["Cache-Control"] = "public, max-age=60, s-maxage=60"
    return rendered


@router.get("/{datasource}/tags", response_model=TagCountResponse, summary="Tag frequencies for a datasource")
def list_tags(datasource: str, services: Services = Depends(get_services)) -> TagCountResponse:
    try:
        pages = services.retrieval.collect_posts(datasource)
    except StoreError as exc:
        logger.warning("Tag aggregation for %s failed: %s", datasource, exc)
        pages = []
    return TagCountResponse(datasource_id=datasource, tags=tag_counts(pages))
