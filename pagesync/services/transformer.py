"""Ingestion transformer: external page record → canonical :class:`PageModel`.

Pure and deterministic: no I/O, no clock reads.  Records are plain mappings
as produced by a :class:`~pagesync.services.source.ContentSource`.
"""

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from pydantic import ValidationError as ModelValidationError

from pagesync.models.page import PageModel
from pagesync.services.errors import ValidationError
from pagesync.services.normalizer import html_to_markdown

UNTITLED = "Untitled"


def _text(record: Mapping[str, Any], *keys: str) -> Optional[str]:
    """First non-blank string value among *keys*, stripped."""
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        if not isinstance(value, (str, int)):
            raise ValidationError(f"Field '{key}' must be a string, got {type(value).__name__}")
        value = str(value).strip()
        if value:
            return value
    return None


def _timestamp(record: Mapping[str, Any], page_id: str, *keys: str) -> Optional[datetime]:
    for key in keys:
        value = record.get(key)
        if value is None or value == "":
            continue
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError as exc:
                raise ValidationError(f"Field '{key}' is not an ISO 8601 timestamp: {value!r}", page_id) from exc
        else:
            raise ValidationError(f"Field '{key}' must be a timestamp", page_id)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return None


def _sequence(record: Mapping[str, Any], key: str, page_id: str) -> List[Any]:
    value = record.get(key)
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"Field '{key}' must be a list", page_id)
    return list(value)


def transform(record: Mapping[str, Any], datasource_id: Optional[str] = None) -> PageModel:
    """Validate and normalise one external *record*.

    ``datasource_id`` is used when the record does not name its own.

    Raises:
        ValidationError: the record lacks ``page_id``, ``title`` or ``slug``,
            or a field has the wrong shape.
    """
    if not isinstance(record, Mapping):
        raise ValidationError("External record must be a mapping")

    page_id = _text(record, "page_id", "id")
    if not page_id:
        raise ValidationError("Record is missing 'page_id'")

    try:
        title = _text(record, "title")
        slug = _text(record, "slug")
        owner = _text(record, "datasource_id") or datasource_id
    except ValidationError as exc:
        exc.page_id = page_id
        raise

    if not title:
        raise ValidationError("Record is missing 'title'", page_id)
    if not slug:
        raise ValidationError("Record is missing 'slug'", page_id)
    if not owner:
        raise ValidationError("Record has no datasource", page_id)

    content = record.get("content")
    if content is not None and not isinstance(content, str):
        raise ValidationError("Field 'content' must be a string", page_id)
    if content is None and record.get("content_html") is not None:
        # HTML-bodied sources (e.g. REST CMS exports) are stored as markdown
        content_html = record["content_html"]
        if not isinstance(content_html, str):
            raise ValidationError("Field 'content_html' must be a string", page_id)
        content = html_to_markdown(content_html)

    meta = record.get("meta")
    if meta is None:
        meta = {}
    elif not isinstance(meta, Mapping):
        raise ValidationError("Field 'meta' must be an object", page_id)

    try:
        return PageModel(
            page_id=page_id,
            datasource_id=owner,
            title=title,
            slug=slug,
            content=content,
            publish_at=_timestamp(record, page_id, "publish_at"),
            updated_at=_timestamp(record, page_id, "updated_at", "last_edited_time"),
            tags=_sequence(record, "tags", page_id),
            authors=_sequence(record, "authors", page_id),
            meta=dict(meta),
        )
    except ModelValidationError as exc:
        raise ValidationError(str(exc), page_id) from exc


def apply_title_fallback(record: Mapping[str, Any]) -> Mapping[str, Any]:
    """Caller-side policy: give title-less records the "Untitled" placeholder."""
    title = record.get("title")
    if isinstance(title, str) and title.strip():
        return record
    return {**record, "title": UNTITLED}
