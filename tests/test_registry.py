"""
Tests for the document catalog and the constraints its schema enforces.
"""

from datetime import datetime, timezone

import pytest

from pdf_share_backend.database import Database
from pdf_share_backend.errors import IntegrityError, NotFound
from pdf_share_backend.models import Provenance
from pdf_share_backend.pdf_structure import DocumentMetadata
from pdf_share_backend.registry import DocumentRegistry
from pdf_share_backend.share_ledger import ShareLedger


def make_metadata(page_count=3):
    stamp = datetime(2025, 6, 1, tzinfo=timezone.utc)
    return DocumentMetadata(
        page_count=page_count,
        title="Minutes",
        author="Board",
        subject="",
        creator="",
        producer="",
        creation_date=stamp,
        modification_date=stamp,
        is_encrypted=False,
    )


@pytest.fixture
def database(tmp_path):
    return Database(tmp_path / "registry.db")


@pytest.fixture
def registry(database, clock):
    return DocumentRegistry(database, clock=clock)


class TestCreate:
    def test_round_trips_through_catalog(self, registry, clock):
        record = registry.create(
            make_metadata(3),
            "ab/abc.pdf",
            Provenance.ORIGINAL,
            "minutes.pdf",
            2048,
            owner_id="alice",
        )

        stored = registry.get(record.id)
        assert stored == record
        assert stored.page_count == 3
        assert stored.metadata.title == "Minutes"
        assert stored.created_at == clock()
        assert stored.source_ids == []

    def test_keeps_source_order(self, registry):
        record = registry.create(
            make_metadata(2), "cd/cde.pdf", Provenance.MERGED, "merged.pdf", 10, source_ids=["b", "a", "c"]
        )
        assert registry.get(record.id).source_ids == ["b", "a", "c"]

    def test_pointer_is_referenced_once(self, registry):
        registry.create(make_metadata(), "ab/shared.pdf", Provenance.ORIGINAL, "one.pdf", 1)
        with pytest.raises(IntegrityError):
            registry.create(make_metadata(), "ab/shared.pdf", Provenance.ORIGINAL, "two.pdf", 1)


class TestConstraints:
    def test_page_count_update_is_an_integrity_error(self, registry, database):
        record = registry.create(make_metadata(3), "ef/efg.pdf", Provenance.ORIGINAL, "doc.pdf", 1)

        with pytest.raises(IntegrityError):
            with database.transaction() as conn:
                conn.execute("UPDATE documents SET page_count = 4 WHERE id = ?", (record.id,))
        assert registry.get(record.id).page_count == 3

    def test_deactivated_link_cannot_be_reactivated(self, registry, database, clock):
        record = registry.create(make_metadata(), "gh/ghi.pdf", Provenance.ORIGINAL, "doc.pdf", 1, owner_id="alice")
        ledger = ShareLedger(database, clock=clock)
        link = ledger.issue(record.id, owner_id="alice")
        ledger.deactivate(link.token, "alice")

        with pytest.raises(IntegrityError):
            with database.transaction() as conn:
                conn.execute("UPDATE share_links SET is_active = 1 WHERE token = ?", (link.token,))
        assert not ledger.get(link.token).is_active

    def test_check_page_count(self, registry):
        record = registry.create(make_metadata(3), "ij/ijk.pdf", Provenance.ORIGINAL, "doc.pdf", 1)
        DocumentRegistry.check_page_count(record, 3)
        with pytest.raises(IntegrityError):
            DocumentRegistry.check_page_count(record, 2)


class TestDeletion:
    def test_soft_delete_hides_record(self, registry):
        record = registry.create(make_metadata(), "kl/klm.pdf", Provenance.ORIGINAL, "doc.pdf", 1)

        deleted = registry.soft_delete(record.id)

        assert deleted.is_deleted
        with pytest.raises(NotFound):
            registry.get(record.id)
        assert registry.get(record.id, include_deleted=True).is_deleted

    def test_hard_delete_returns_removed_record(self, registry):
        record = registry.create(make_metadata(), "mn/mno.pdf", Provenance.ORIGINAL, "doc.pdf", 1)

        removed = registry.hard_delete(record.id)

        assert removed.storage_pointer == "mn/mno.pdf"
        with pytest.raises(NotFound):
            registry.get(record.id, include_deleted=True)
