"""Exception taxonomy shared by the store, the transformer and the sync coordinator."""

from typing import Optional


class PageSyncError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(PageSyncError):
    """An external record could not be turned into a canonical page."""

    def __init__(self, message: str, page_id: Optional[str] = None):
        super().__init__(message)
        self.page_id = page_id


class ConflictError(PageSyncError):
    """Another page already owns ``(datasource_id, slug)``."""

    def __init__(self, datasource_id: str, slug: str, owner_page_id: Optional[str] = None):
        detail = f"Slug '{slug}' is already used in datasource '{datasource_id}'"
        if owner_page_id:
            detail += f" by page '{owner_page_id}'"
        super().__init__(detail)
        self.datasource_id = datasource_id
        self.slug = slug
        self.owner_page_id = owner_page_id


class TenantConflictError(ConflictError):
    """The page id is already stored under a different datasource."""

    def __init__(self, page_id: str, datasource_id: str, owner_datasource_id: str):
        PageSyncError.__init__(self, f"Page '{page_id}' belongs to datasource '{owner_datasource_id}', not '{datasource_id}'")
        self.page_id = page_id
        self.datasource_id = datasource_id
        self.slug = None
        self.owner_page_id = page_id
        self.owner_datasource_id = owner_datasource_id


class AdapterError(PageSyncError):
    """The external content source could not be reached or refused the request."""


class StoreError(PageSyncError):
    """A persistence operation failed for a single write or read."""


class StoreUnavailableError(StoreError):
    """The store itself is unreachable; the current sync must abort."""


class NotFoundError(PageSyncError):
    """Lookup miss. Not a failure state; callers map it to an absent result."""


class SyncInProgressError(PageSyncError):
    """A sync for the same datasource is already running."""

    def __init__(self, datasource_id: str):
        super().__init__(f"A sync for datasource '{datasource_id}' is already in progress.")
        self.datasource_id = datasource_id
