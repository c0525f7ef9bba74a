"""Tests for the Markdown/front-matter record codec."""
import datetime
from datetime import timezone

import frontmatter
import pytest

from civic_index.exceptions import ErrorCode, MalformedFrontMatterError
from civic_index.models.schema import Author
from civic_index.storage.record_codec import RecordCodec

from conftest import T1, T2, make_record

VALID = """---
id: bylaw-2024-001
title: Noise Restriction Bylaw
type: bylaw
status: published
author: aclerk
created: 2024-01-10T09:00:00Z
updated: '2024-02-01T12:30:00Z'
tags: [noise, curfew]
module: legal-register
---

# Noise Restriction Bylaw

No amplified sound after 22:00.
"""


@pytest.fixture
def codec():
    return RecordCodec()


class TestDecode:
    """Tests for RecordCodec.decode."""

    def test_decode_valid_record(self, codec):
        record = codec.decode(VALID)
        assert record.id == "bylaw-2024-001"
        assert record.title == "Noise Restriction Bylaw"
        assert record.type == "bylaw"
        assert record.status == "published"
        assert record.author == "aclerk"
        assert record.tags == ["noise", "curfew"]
        assert record.module == "legal-register"
        assert record.content.startswith("# Noise Restriction Bylaw")
        assert record.created_at == datetime.datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
        assert record.updated_at == datetime.datetime(2024, 2, 1, 12, 30, tzinfo=timezone.utc)
        assert record.workflow_state is None

    def test_missing_front_matter(self, codec):
        with pytest.raises(MalformedFrontMatterError) as exc_info:
            codec.decode("# Just a heading\n\nNo metadata here.")
        assert "missing" in exc_info.value.message.lower()

    def test_invalid_yaml(self, codec):
        text = "---\nid: [unclosed\ntitle: x\n---\n\nBody"
        with pytest.raises(MalformedFrontMatterError):
            codec.decode(text)

    def test_front_matter_not_a_mapping(self, codec):
        with pytest.raises(MalformedFrontMatterError):
            codec.decode("---\n- just\n- a list\n---\n\nBody")

    @pytest.mark.parametrize(
        "replacement",
        [
            "authors: 5",
            "authors: true",
            "authors: 1.5",
            "author: [aclerk]",
            "author: {name: Ada}",
            "author: aclerk\n1: numeric key",
        ],
    )
    def test_odd_header_values_are_malformed(self, codec, replacement):
        with pytest.raises(MalformedFrontMatterError):
            codec.decode(VALID.replace("author: aclerk", replacement))

    @pytest.mark.parametrize("field", ["id", "title", "type", "status"])
    def test_missing_required_field(self, codec, field):
        lines = [line for line in VALID.splitlines() if not line.startswith(f"{field}:")]
        with pytest.raises(MalformedFrontMatterError) as exc_info:
            codec.decode("\n".join(lines))
        assert exc_info.value.code == ErrorCode.MISSING_REQUIRED_FIELD
        assert field in exc_info.value.missing_fields

    def test_blank_required_field(self, codec):
        with pytest.raises(MalformedFrontMatterError):
            codec.decode(VALID.replace("title: Noise Restriction Bylaw", "title: '  '"))

    def test_invalid_timestamp(self, codec):
        with pytest.raises(MalformedFrontMatterError) as exc_info:
            codec.decode(VALID.replace("created: 2024-01-10T09:00:00Z", "created: yesterday"))
        assert exc_info.value.code == ErrorCode.INVALID_RECORD

    def test_updated_before_created_is_invalid(self, codec):
        text = VALID.replace("updated: '2024-02-01T12:30:00Z'", "updated: '2023-01-01T00:00:00Z'")
        with pytest.raises(MalformedFrontMatterError):
            codec.decode(text)

    def test_unsafe_id_is_invalid(self, codec):
        with pytest.raises(MalformedFrontMatterError):
            codec.decode(VALID.replace("id: bylaw-2024-001", "id: ../etc/passwd"))

    def test_workflow_state_in_file_is_ignored(self, codec):
        text = VALID.replace("module: legal-register", "module: legal-register\nworkflow_state: approved\nworkflowState: x")
        record = codec.decode(text)
        assert record.workflow_state is None
        assert "workflow_state" not in record.metadata.extra
        assert "workflowState" not in record.metadata.extra

    def test_unknown_keys_kept_as_extra_metadata(self, codec):
        text = VALID.replace(
            "module: legal-register",
            "module: legal-register\nreviewed: 2024-01-20\njurisdiction: Springfield",
        )
        record = codec.decode(text)
        assert record.metadata.extra == {"reviewed": "2024-01-20", "jurisdiction": "Springfield"}


class TestLegacyFrontMatter:
    """Older record layouts are normalized on decode."""

    def test_legacy_timestamp_keys(self, codec):
        text = VALID.replace("created:", "created_at:").replace("updated:", "updated_at:")
        record = codec.decode(text)
        assert record.created_at == T1
        assert record.updated_at == T2

    def test_missing_author_derived_from_username(self, codec):
        text = VALID.replace(
            "author: aclerk",
            "authors:\n  - name: Ada Clerk\n    username: ada.c\n    role: clerk",
        )
        record = codec.decode(text)
        assert record.author == "ada.c"
        assert record.authors == [Author(name="Ada Clerk", username="ada.c", role="clerk")]

    def test_missing_author_derived_from_name(self, codec):
        text = VALID.replace("author: aclerk", "authors:\n  - name: Ada  Clerk")
        assert codec.decode(text).author == "ada.clerk"

    def test_string_authors_become_objects(self, codec):
        text = VALID.replace("author: aclerk", "authors: [Grace Hopper, Ada Clerk]")
        record = codec.decode(text)
        assert [a.name for a in record.authors] == ["Grace Hopper", "Ada Clerk"]
        assert record.author == "Grace Hopper"

    def test_missing_author_defaults_to_unknown(self, codec):
        record = codec.decode(VALID.replace("author: aclerk\n", ""))
        assert record.author == "unknown"

    def test_comma_separated_tags(self, codec):
        record = codec.decode(VALID.replace("tags: [noise, curfew]", "tags: 'noise, curfew, noise'"))
        assert record.tags == ["noise", "curfew"]


class TestEncode:
    """Tests for RecordCodec.encode."""

    def test_round_trip(self, codec):
        record = make_record(module="legal-register", slug="noise", version=1.2, jurisdiction="Springfield")
        assert codec.decode(codec.encode(record)) == record

    def test_round_trip_minimal(self, codec):
        record = make_record(tags=(), authors=[])
        assert codec.decode(codec.encode(record)) == record

    def test_workflow_state_never_written(self, codec):
        record = make_record()
        record.workflow_state = "awaiting_signature"
        text = codec.encode(record)
        assert "workflow" not in text
        decoded = codec.decode(text)
        assert decoded.workflow_state is None
        assert decoded == record.model_copy(update={"workflow_state": None})

    def test_key_order_is_stable(self, codec):
        record = make_record(module="legal-register", slug="noise", version="2", jurisdiction="Springfield")
        keys = list(frontmatter.loads(codec.encode(record)).metadata)
        assert keys == [
            "id", "title", "type", "status", "author", "authors",
            "created", "updated", "tags", "module", "slug", "version", "jurisdiction",
        ]

    def test_optional_keys_omitted(self, codec):
        keys = set(frontmatter.loads(codec.encode(make_record(tags=(), authors=[]))).metadata)
        assert keys == {"id", "title", "type", "status", "author", "created", "updated"}

    def test_timestamps_written_with_z_suffix(self, codec):
        text = codec.encode(make_record())
        assert "2024-01-10T09:00:00Z" in text
        assert "2024-02-01T12:30:00Z" in text

    def test_layout(self, codec):
        text = codec.encode(make_record(content="Body text"))
        assert text.startswith("---\n")
        assert text.endswith("---\n\nBody text")

    def test_encode_is_deterministic(self, codec):
        record = make_record()
        assert codec.encode(record) == codec.encode(record)
