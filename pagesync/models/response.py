from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel

from pagesync.models.page import PageModel
from pagesync.models.render import RenderFeatures, TocEntry


class RenderedPage(BaseModel):
    page: PageModel
    html: str
    toc: List[TocEntry]
    features: RenderFeatures


class PostListResponse(BaseModel):
    datasource_id: str
    limit: int
    offset: int
    count: int
    posts: List[PageModel]


class SearchHit(BaseModel):
    """Trimmed page shape returned by quick search."""

    page_id: str
    datasource_id: str
    slug: str
    title: str
    excerpt: str
    publish_at: Optional[datetime] = None
    tags: List[Any]


class TagCount(BaseModel):
    name: str
    count: int


class TagCountResponse(BaseModel):
    datasource_id: str
    tags: List[TagCount]
