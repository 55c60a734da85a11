"""Tests for pagesync.services.transformer."""

from datetime import datetime, timezone

import pytest

from pagesync.services.errors import ValidationError
from pagesync.services.transformer import UNTITLED, apply_title_fallback, transform


def _record(**overrides) -> dict:
    record = {
        "page_id": "p1",
        "datasource_id": "blog",
        "title": "Hello World",
        "slug": "hello-world",
        "content": "# Hello\n\nSome body text.",
        "publish_at": "2024-03-01T10:00:00Z",
        "tags": ["python", "sync"],
        "authors": ["Ada"],
        "meta": {"cover": "cover.png"},
    }
    record.update(overrides)
    return record


class TestTransformValidRecords:
    def test_maps_all_fields(self):
        page = transform(_record())
        assert page.page_id == "p1"
        assert page.datasource_id == "blog"
        assert page.title == "Hello World"
        assert page.slug == "hello-world"
        assert page.content.startswith("# Hello")
        assert page.publish_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert page.tags == ["python", "sync"]
        assert page.authors == ["Ada"]
        assert page.meta == {"cover": "cover.png"}

    def test_authors_of_any_shape_are_kept(self):
        page = transform(_record(authors=["Ada", {"name": "Grace"}, 42]))
        assert page.authors == ["Ada", {"name": "Grace"}, 42]

    def test_absent_containers_become_empty(self):
        page = transform(_record(tags=None, authors=None, meta=None))
        assert page.tags == []
        assert page.authors == []
        assert page.meta == {}

    def test_missing_publish_at_is_a_draft(self):
        page = transform(_record(publish_at=None))
        assert page.publish_at is None

    def test_offset_timestamps_are_normalised_to_utc(self):
        page = transform(_record(publish_at="2024-03-01T12:00:00+02:00"))
        assert page.publish_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_last_edited_time_is_used_for_updated_at(self):
        page = transform(_record(last_edited_time="2024-03-02T08:30:00Z"))
        assert page.updated_at == datetime(2024, 3, 2, 8, 30, tzinfo=timezone.utc)

    def test_id_is_accepted_as_page_id(self):
        record = _record()
        del record["page_id"]
        record["id"] = "abc-123"
        assert transform(record).page_id == "abc-123"

    def test_datasource_falls_back_to_argument(self):
        record = _record()
        del record["datasource_id"]
        assert transform(record, "docs").datasource_id == "docs"

    def test_whitespace_is_stripped_from_identity_fields(self):
        page = transform(_record(title="  Spaced  ", slug=" spaced "))
        assert page.title == "Spaced"
        assert page.slug == "spaced"

    def test_is_deterministic(self):
        assert transform(_record()) == transform(_record())

    def test_content_html_is_converted_to_markdown(self):
        record = _record(content=None, content_html="<h2>Intro</h2><p>Hello <strong>there</strong></p>")
        page = transform(record)
        assert "## Intro" in page.content
        assert "**there**" in page.content


class TestTransformRejections:
    @pytest.mark.parametrize("field", ["page_id", "title", "slug"])
    def test_missing_required_field(self, field):
        record = _record()
        del record[field]
        with pytest.raises(ValidationError):
            transform(record)

    @pytest.mark.parametrize("field", ["title", "slug"])
    def test_blank_required_field(self, field):
        with pytest.raises(ValidationError) as exc_info:
            transform(_record(**{field: "   "}))
        assert exc_info.value.page_id == "p1"

    def test_no_datasource_anywhere(self):
        record = _record()
        del record["datasource_id"]
        with pytest.raises(ValidationError):
            transform(record)

    def test_non_mapping_record(self):
        with pytest.raises(ValidationError):
            transform(["not", "a", "record"])

    def test_bad_timestamp(self):
        with pytest.raises(ValidationError) as exc_info:
            transform(_record(publish_at="yesterday"))
        assert exc_info.value.page_id == "p1"

    def test_tags_must_be_a_list(self):
        with pytest.raises(ValidationError):
            transform(_record(tags="python"))

    def test_meta_must_be_an_object(self):
        with pytest.raises(ValidationError):
            transform(_record(meta=["x"]))

    def test_content_must_be_a_string(self):
        with pytest.raises(ValidationError):
            transform(_record(content={"blocks": []}))

    def test_title_of_wrong_type_carries_page_id(self):
        with pytest.raises(ValidationError) as exc_info:
            transform(_record(title={"rich": "text"}))
        assert exc_info.value.page_id == "p1"

    def test_model_rejection_becomes_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            transform(_record(meta={1: "numeric key"}))
        assert exc_info.value.page_id == "p1"


class TestApplyTitleFallback:
    def test_missing_title_gets_placeholder(self):
        record = _record()
        del record["title"]
        assert transform(apply_title_fallback(record)).title == UNTITLED

    def test_existing_title_is_untouched(self):
        record = _record()
        assert apply_title_fallback(record) is record

    def test_does_not_mutate_input(self):
        record = _record(title="")
        apply_title_fallback(record)
        assert record["title"] == ""
