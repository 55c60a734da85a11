"""Relational page store.

Persists :class:`~pagesync.models.page.PageModel` rows in the ``pages`` table
and per-datasource sync cursors in ``sync_state``.  Every write runs in a
single transaction; the ``(datasource_id, slug)`` ownership check happens
inside that transaction so a colliding write is rejected with
:class:`ConflictError` instead of overwriting the other page.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, NamedTuple, Optional, Set

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    or_,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from pagesync.models.page import PageModel
from pagesync.services.errors import (
    ConflictError,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
    TenantConflictError,
)

logger = logging.getLogger(__name__)

Base = declarative_base()

# JSONB (with GIN indexes) on PostgreSQL, generic JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

DEFAULT_SEARCH_SCAN_LIMIT = 200
DEFAULT_LIST_MAX_LIMIT = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on read; stored values are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PageRow(Base):
    __tablename__ = "pages"

    page_id = Column(String, primary_key=True)
    datasource_id = Column(String, nullable=False)
    title = Column(Text, nullable=False)
    slug = Column(String, nullable=False)
    content = Column(Text, nullable=True)
    publish_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    tags = Column(JSONType, nullable=False, default=list)
    authors = Column(JSONType, nullable=False, default=list)
    meta = Column(JSONType, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("datasource_id", "slug", name="pages_datasource_id_slug_key"),
        Index("idx_pages_datasource", "datasource_id"),
        Index("idx_pages_datasource_slug", "datasource_id", "slug"),
        Index("idx_pages_publish_at", "publish_at"),
        Index("idx_pages_meta", "meta", postgresql_using="gin"),
        Index("idx_pages_tags", "tags", postgresql_using="gin"),
    )


class SyncStateRow(Base):
    __tablename__ = "sync_state"

    datasource_id = Column(String, primary_key=True)
    cursor = Column(Text, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class UpsertResult(NamedTuple):
    page: PageModel
    created: bool


def _to_model(row: PageRow) -> PageModel:
    return PageModel(
        page_id=row.page_id,
        datasource_id=row.datasource_id,
        title=row.title,
        slug=row.slug,
        content=row.content,
        publish_at=_as_utc(row.publish_at),
        updated_at=_as_utc(row.updated_at),
        tags=list(row.tags or []),
        authors=list(row.authors or []),
        meta=dict(row.meta or {}),
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _match_count(page: PageModel, needle: str) -> int:
    return page.title.lower().count(needle) + (page.content or "").lower().count(needle)


class PageStore:
    """Multi-tenant page persistence over any SQLAlchemy engine."""

    def __init__(
        self,
        engine: Engine,
        search_scan_limit: int = DEFAULT_SEARCH_SCAN_LIMIT,
        list_max_limit: int = DEFAULT_LIST_MAX_LIMIT,
    ):
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self.search_scan_limit = search_scan_limit
        self.list_max_limit = list_max_limit

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "PageStore":
        """Build a store for *url* and make sure the schema exists."""
        engine_kwargs: dict = {}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
        store = cls(create_engine(url, **engine_kwargs), **kwargs)
        store.create_schema()
        return store

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self._engine)
        except OperationalError as exc:
            raise StoreUnavailableError(str(exc)) from exc

    def ping(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Open a session wrapped in one transaction, translating driver errors."""
        try:
            with self._session_factory() as session:
                with session.begin():
                    yield session
        except OperationalError as exc:
            logger.error("Store unavailable: %s", exc)
            raise StoreUnavailableError(str(exc)) from exc
        except SQLAlchemyError as exc:
            logger.error("Store operation failed: %s", exc)
            raise StoreError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, page: PageModel) -> UpsertResult:
        """Insert *page* or fully replace the mutable fields of the stored row.

        Raises:
            ConflictError: another page owns ``(datasource_id, slug)``.
            TenantConflictError: the page id is stored under another
                datasource; the stored row is left untouched.
            StoreError: the write failed.
        """
        now = _utcnow()
        with self._session() as session:
            owner = session.execute(
                select(PageRow.page_id).where(
                    PageRow.datasource_id == page.datasource_id,
                    PageRow.slug == page.slug,
                    PageRow.page_id != page.page_id,
                )
            ).scalar_one_or_none()
            if owner is not None:
                raise ConflictError(page.datasource_id, page.slug, owner)

            row = session.get(PageRow, page.page_id, with_for_update=True)
            if row is not None and row.datasource_id != page.datasource_id:
                raise TenantConflictError(page.page_id, page.datasource_id, row.datasource_id)

            updated_at = _as_utc(page.updated_at) or now
            fields = page.mutable_fields()
            fields["publish_at"] = _as_utc(fields["publish_at"])
            created = row is None

            if created:
                row = PageRow(
                    page_id=page.page_id,
                    datasource_id=page.datasource_id,
                    updated_at=updated_at,
                    **fields,
                )
                session.add(row)
            else:
                previous = _as_utc(row.updated_at)
                if previous is not None and updated_at < previous:
                    updated_at = previous
                for name, value in fields.items():
                    setattr(row, name, value)
                row.updated_at = updated_at

            try:
                session.flush()
            except IntegrityError as exc:
                # A concurrent writer claimed the slug between the check and the flush
                raise ConflictError(page.datasource_id, page.slug) from exc

            stored = _to_model(row)

        logger.debug(
            "Page upserted",
            extra={"page_id": page.page_id, "datasource_id": page.datasource_id, "inserted": created},
        )
        return UpsertResult(stored, created)

    def unpublish_missing(self, datasource_id: str, keep_ids: Iterable[str]) -> int:
        """Mark every published page of *datasource_id* not in *keep_ids* as a draft.

        Returns the number of pages tombstoned.
        """
        keep = set(keep_ids)
        now = _utcnow()
        count = 0
        with self._session() as session:
            rows = session.execute(
                select(PageRow).where(
                    PageRow.datasource_id == datasource_id,
                    PageRow.publish_at.is_not(None),
                )
            ).scalars()
            for row in rows:
                if row.page_id in keep:
                    continue
                row.publish_at = None
                previous = _as_utc(row.updated_at)
                row.updated_at = max(now, previous) if previous else now
                count += 1
        return count

    def save_cursor(self, datasource_id: str, cursor: Optional[str]) -> None:
        with self._session() as session:
            row = session.get(SyncStateRow, datasource_id)
            if row is None:
                session.add(SyncStateRow(datasource_id=datasource_id, cursor=cursor, last_synced_at=_utcnow()))
            else:
                row.cursor = cursor
                row.last_synced_at = _utcnow()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_cursor(self, datasource_id: str) -> Optional[str]:
        with self._session() as session:
            row = session.get(SyncStateRow, datasource_id)
            return row.cursor if row is not None else None

    def get_by_id(self, page_id: str) -> PageModel:
        with self._session() as session:
            row = session.get(PageRow, page_id)
            if row is None:
                raise NotFoundError(f"No page with id '{page_id}'")
            return _to_model(row)

    def get_by_slug(self, datasource_id: str, slug: str) -> PageModel:
        with self._session() as session:
            row = session.execute(
                select(PageRow).where(PageRow.datasource_id == datasource_id, PageRow.slug == slug)
            ).scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"No page '{slug}' in datasource '{datasource_id}'")
            return _to_model(row)

    def page_ids(self, datasource_id: str) -> Set[str]:
        with self._session() as session:
            return set(
                session.execute(
                    select(PageRow.page_id).where(PageRow.datasource_id == datasource_id)
                ).scalars()
            )

    def list(
        self,
        datasource_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        published_only: bool = False,
    ) -> List[PageModel]:
        """Return pages newest first, never more than ``list_max_limit`` per call."""
        limit = max(0, min(limit, self.list_max_limit))
        offset = max(0, offset)
        if limit == 0:
            return []

        stmt = select(PageRow)
        if datasource_id is not None:
            stmt = stmt.where(PageRow.datasource_id == datasource_id)
        if published_only:
            stmt = stmt.where(PageRow.publish_at.is_not(None))
        stmt = (
            stmt.order_by(
                PageRow.publish_at.desc().nulls_last(),
                PageRow.updated_at.desc(),
                PageRow.page_id,
            )
            .limit(limit)
            .offset(offset)
        )
        with self._session() as session:
            return [_to_model(row) for row in session.execute(stmt).scalars()]

    def search(self, query: str, limit: int = 5, datasource_id: Optional[str] = None) -> List[PageModel]:
        """Case-insensitive substring search over title and content.

        Candidates (at most ``search_scan_limit``, most recent first) are ranked
        by the number of matches, then by ``updated_at`` descending.
        """
        needle = (query or "").strip()
        if not needle or limit <= 0:
            return []

        pattern = f"%{_escape_like(needle)}%"
        stmt = select(PageRow).where(
            or_(
                PageRow.title.ilike(pattern, escape="\\"),
                PageRow.content.ilike(pattern, escape="\\"),
            )
        )
        if datasource_id is not None:
            stmt = stmt.where(PageRow.datasource_id == datasource_id)
        stmt = stmt.order_by(PageRow.updated_at.desc()).limit(self.search_scan_limit)

        with self._session() as session:
            candidates = [_to_model(row) for row in session.execute(stmt).scalars()]

        lowered = needle.lower()
        candidates.sort(key=lambda p: (-_match_count(p, lowered), -p.updated_at.timestamp()))
        return candidates[:limit]
