import logging
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response

from pagesync.dependencies import Services, get_services
from pagesync.models.page import PageModel
from pagesync.services.errors import StoreError
from pagesync.services.feed import render_feed, render_json_feed, render_sitemap

logger = logging.getLogger(__name__)

router = APIRouter()


def _feed_pages(services: Services, datasource: str) -> List[PageModel]:
    """Most recent pages for a feed; an unavailable store yields an empty feed."""
    try:
        return services.retrieval.get_all_posts(limit=services.store.list_max_limit, datasource_id=datasource)
    except StoreError as exc:
        logger.error("Error fetching posts for %s feed: %s", datasource, exc)
        return []


@router.get("/{datasource}/atom.xml", summary="Atom feed")
def atom_feed(datasource: str, services: Services = Depends(get_services)) -> Response:
    body = render_feed(_feed_pages(services, datasource), services.site, renderer=services.renderer)
    return Response(content=body, media_type="application/atom+xml; charset=utf-8")


@router.get("/{datasource}/feed.json", summary="JSON feed")
def json_feed(datasource: str, services: Services = Depends(get_services)) -> JSONResponse:
    body = render_json_feed(_feed_pages(services, datasource), services.site, renderer=services.renderer)
    return JSONResponse(content=body, media_type="application/feed+json")


@router.get("/{datasource}/sitemap.xml", summary="Sitemap")
def sitemap(datasource: str, services: Services = Depends(get_services)) -> Response:
    body = render_sitemap(_feed_pages(services, datasource), services.site)
    return Response(content=body, media_type="application/xml; charset=utf-8")
