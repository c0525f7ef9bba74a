"""Tests for the record store scanner."""
import pytest

from civic_index.exceptions import ErrorCode, RecordStoreError
from civic_index.storage.scanner import RecordScanner, ScanOptions

from conftest import make_record, write_record


@pytest.fixture
def scanner():
    return RecordScanner()


class TestRecordScanner:
    """Tests for RecordScanner.scan."""

    def test_scan_sample_store(self, scanner, records_dir):
        result = scanner.scan(records_dir)
        assert len(result) == 3
        assert result.warnings == []
        assert [s.path for s in result.records] == [
            "legal-register/bylaw-noise-restriction.md",
            "policies/policy-data-retention.md",
            "resolutions/resolution-budget-2024.md",
        ]
        assert [r.id for r in result.entities] == [
            "bylaw-2024-001", "policy-2024-002", "resolution-2024-003",
        ]

    def test_malformed_file_becomes_warning(self, scanner, records_dir):
        (records_dir / "broken.md").write_text(
            "---\ntitle: No id here\ntype: bylaw\nstatus: draft\n"
            "created: 2024-01-01T00:00:00Z\nupdated: 2024-01-01T00:00:00Z\n---\n\nBody",
            encoding="utf-8",
        )
        (records_dir / "plain.md").write_text("Just text, no front matter", encoding="utf-8")
        result = scanner.scan(records_dir)
        assert len(result) == 3
        assert [w.path for w in result.warnings] == ["broken.md", "plain.md"]
        assert "id" in result.warnings[0].reason

    @pytest.mark.parametrize(
        "header",
        [
            "authors: 5",
            "authors: true",
            "author: [aclerk]",
            "1: numeric key",
        ],
    )
    def test_odd_header_becomes_warning(self, scanner, records_dir, header):
        (records_dir / "odd.md").write_text(
            f"---\nid: odd-1\ntitle: Odd\ntype: bylaw\nstatus: draft\n{header}\n"
            "created: 2024-01-01T00:00:00Z\nupdated: 2024-01-01T00:00:00Z\n---\n\nBody",
            encoding="utf-8",
        )
        result = scanner.scan(records_dir)
        assert len(result) == 3
        assert [w.path for w in result.warnings] == ["odd.md"]

    def test_undecodable_bytes_become_warning(self, scanner, records_dir):
        (records_dir / "binary.md").write_bytes(b"\xff\xfe\x00garbage")
        result = scanner.scan(records_dir)
        assert len(result) == 3
        assert result.warnings[0].path == "binary.md"

    def test_duplicate_id_is_reported(self, scanner, records_dir):
        write_record(records_dir, "zz-copy/duplicate.md", make_record(title="Duplicate"))
        result = scanner.scan(records_dir)
        assert len(result) == 3
        assert len(result.warnings) == 1
        assert result.warnings[0].path == "zz-copy/duplicate.md"
        assert "Duplicate record id" in result.warnings[0].reason
        bylaw = next(s for s in result.records if s.record.id == "bylaw-2024-001")
        assert bylaw.record.title == "Noise Restriction Bylaw"

    def test_hidden_and_non_markdown_files_skipped(self, scanner, records_dir):
        write_record(records_dir, ".drafts/hidden.md", make_record(record_id="hidden-1"))
        write_record(records_dir, "policies/.secret.md", make_record(record_id="hidden-2"))
        (records_dir / "index.yml").write_text("entries: []\n", encoding="utf-8")
        (records_dir / "notes.txt").write_text("not a record", encoding="utf-8")
        result = scanner.scan(records_dir)
        assert len(result) == 3
        assert result.warnings == []

    def test_subdirectory_filter(self, scanner, records_dir):
        result = scanner.scan(
            records_dir, ScanOptions(subdirectories=("policies", "resolutions", "missing"))
        )
        assert [s.record.id for s in result.records] == ["policy-2024-002", "resolution-2024-003"]

    def test_subdirectory_outside_root_ignored(self, scanner, records_dir, tmp_path):
        write_record(tmp_path / "elsewhere", "x.md", make_record(record_id="outside"))
        result = scanner.scan(records_dir, ScanOptions(subdirectories=("../elsewhere",)))
        assert len(result) == 0

    def test_single_worker_gives_same_result(self, scanner, records_dir):
        parallel = scanner.scan(records_dir, ScanOptions(max_workers=8))
        serial = scanner.scan(records_dir, ScanOptions(max_workers=1))
        assert parallel.records == serial.records

    def test_empty_store(self, scanner, tmp_path):
        result = scanner.scan(tmp_path)
        assert len(result) == 0
        assert result.warnings == []

    def test_missing_root_raises(self, scanner, tmp_path):
        with pytest.raises(RecordStoreError) as exc_info:
            scanner.scan(tmp_path / "does-not-exist")
        assert exc_info.value.code == ErrorCode.RECORD_STORE_NOT_FOUND

    def test_root_that_is_a_file_raises(self, scanner, tmp_path):
        path = tmp_path / "file.md"
        path.write_text("x", encoding="utf-8")
        with pytest.raises(RecordStoreError):
            scanner.scan(path)
