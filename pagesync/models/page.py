from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PageModel(BaseModel):
    """Canonical content unit, as stored in the ``pages`` table."""

    model_config = ConfigDict(frozen=True)

    page_id: str = Field(min_length=1)
    datasource_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    content: Optional[str] = None  # markdown source; None means no body yet
    publish_at: Optional[datetime] = None  # None means draft
    updated_at: Optional[datetime] = None  # filled in by the store on write
    tags: List[Any] = Field(default_factory=list)
    authors: List[Any] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)

    def mutable_fields(self) -> Dict[str, Any]:
        """Fields replaced wholesale on every successful upsert.

        ``datasource_id`` is not among them: a page never changes tenant.
        """
        return {
            "title": self.title,
            "slug": self.slug,
            "content": self.content,
            "publish_at": self.publish_at,
            "tags": list(self.tags),
            "authors": list(self.authors),
            "meta": dict(self.meta),
        }
