from typing import Any, Dict, Optional

from pydantic import BaseModel


class WebhookRequest(BaseModel):
    event: str
    datasource_id: Optional[str] = None
    page: Optional[Dict[str, Any]] = None
    """Raw external page record; passed to the ingestion transformer as-is.

    The owning datasource is read from ``datasource_id`` on the request, or
    from ``page["datasource_id"]`` / ``page["parent"]["datasource_id"]``.
    """

    def resolve_datasource(self) -> Optional[str]:
        if self.datasource_id:
            return self.datasource_id
        if not self.page:
            return None
        if self.page.get("datasource_id"):
            return str(self.page["datasource_id"])
        parent = self.page.get("parent")
        if isinstance(parent, dict) and parent.get("datasource_id"):
            return str(parent["datasource_id"])
        return None
