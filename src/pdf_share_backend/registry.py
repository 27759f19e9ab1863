"""
Catalog of document records.

A record describes one persisted document: where its bytes live, what was
extracted from them and how it came to exist (its provenance). Page counts
are written once at creation and never updated; the schema enforces this with
a trigger and ``check_page_count`` reports any later disagreement as an
IntegrityError.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from .database import Database
from .errors import IntegrityError, NotFound
from .models import DocumentResponse, Provenance
from .pdf_structure import DocumentMetadata
from .utils import deserialize_datetime, new_document_id, serialize_datetime, utcnow

logger = logging.getLogger(__name__)


@dataclass
class DocumentRecord:
    """
    Catalog entry for one persisted document.

    Attributes:
        id: Unique document identifier (hex UUID)
        storage_pointer: Artifact store address of the document bytes
        original_name: Sanitized display file name
        file_size: Size of the artifact in bytes
        metadata: Structural and descriptive fields, including page count
        provenance: How the document was produced
        source_ids: Documents this one was derived from, in input order
        owner_id: Opaque id of the owning user, None for anonymous uploads
        created_at: Creation timestamp (UTC)
        is_deleted: Soft-delete flag
        deleted_at: Soft-delete timestamp (UTC)
    """

    id: str
    storage_pointer: str
    original_name: str
    file_size: int
    metadata: DocumentMetadata
    provenance: Provenance
    source_ids: List[str]
    owner_id: Optional[str]
    created_at: datetime
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    @property
    def page_count(self) -> int:
        return self.metadata.page_count

    def to_response(self) -> DocumentResponse:
        return DocumentResponse(
            id=self.id,
            original_name=self.original_name,
            file_size=self.file_size,
            page_count=self.page_count,
            provenance=self.provenance,
            source_ids=list(self.source_ids),
            owner_id=self.owner_id,
            created_at=self.created_at,
            metadata=self.metadata.to_response(),
        )


@dataclass
class NewDocument:
    """A record waiting to be committed together with its already stored artifact."""

    storage_pointer: str
    original_name: str
    file_size: int
    metadata: DocumentMetadata
    provenance: Provenance
    owner_id: Optional[str] = None
    source_ids: Sequence[str] = field(default_factory=tuple)


def record_from_row(row: sqlite3.Row) -> DocumentRecord:
    metadata = DocumentMetadata(
        page_count=row["page_count"],
        title=row["title"],
        author=row["author"],
        subject=row["subject"],
        creator=row["creator"],
        producer=row["producer"],
        creation_date=deserialize_datetime(row["creation_date"]),
        modification_date=deserialize_datetime(row["modification_date"]),
        is_encrypted=bool(row["is_encrypted"]),
    )
    return DocumentRecord(
        id=row["id"],
        storage_pointer=row["storage_pointer"],
        original_name=row["original_name"],
        file_size=row["file_size"],
        metadata=metadata,
        provenance=Provenance(row["provenance"]),
        source_ids=json.loads(row["source_ids"] or "[]"),
        owner_id=row["owner_id"],
        created_at=deserialize_datetime(row["created_at"]),
        is_deleted=bool(row["is_deleted"]),
        deleted_at=deserialize_datetime(row["deleted_at"]),
    )


class DocumentRegistry:
    def __init__(
        self,
        database: Database,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_document_id,
    ) -> None:
        self.database = database
        self._clock = clock
        self._id_factory = id_factory

    def create(
        self,
        metadata: DocumentMetadata,
        storage_pointer: str,
        provenance: Provenance,
        original_name: str,
        file_size: int,
        owner_id: Optional[str] = None,
        source_ids: Sequence[str] = (),
    ) -> DocumentRecord:
        """Commit a single record for an artifact that is already stored."""
        draft = NewDocument(
            storage_pointer=storage_pointer,
            original_name=original_name,
            file_size=file_size,
            metadata=metadata,
            provenance=provenance,
            owner_id=owner_id,
            source_ids=source_ids,
        )
        return self.create_many([draft])[0]

    def create_many(self, drafts: Sequence[NewDocument]) -> List[DocumentRecord]:
        """
        Commit several records in one transaction: all of them or none.

        Raises:
            IntegrityError: If a storage pointer is already referenced by
                another record
            StorageFailure: If the catalog cannot be written
        """
        created_at = self._clock()
        records = [
            DocumentRecord(
                id=self._id_factory(),
                storage_pointer=draft.storage_pointer,
                original_name=draft.original_name,
                file_size=draft.file_size,
                metadata=draft.metadata,
                provenance=draft.provenance,
                source_ids=list(draft.source_ids),
                owner_id=draft.owner_id,
                created_at=created_at,
            )
            for draft in drafts
        ]

        with self.database.transaction() as conn:
            for record in records:
                conn.execute(
                    """
                    INSERT INTO documents (
                        id, storage_pointer, original_name, file_size, page_count,
                        title, author, subject, creator, producer,
                        creation_date, modification_date, is_encrypted,
                        provenance, source_ids, owner_id, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.storage_pointer,
                        record.original_name,
                        record.file_size,
                        record.page_count,
                        record.metadata.title,
                        record.metadata.author,
                        record.metadata.subject,
                        record.metadata.creator,
                        record.metadata.producer,
                        serialize_datetime(record.metadata.creation_date),
                        serialize_datetime(record.metadata.modification_date),
                        int(record.metadata.is_encrypted),
                        record.provenance.value,
                        json.dumps(record.source_ids),
                        record.owner_id,
                        serialize_datetime(record.created_at),
                    ),
                )
        return records

    def get(self, document_id: str, include_deleted: bool = False) -> DocumentRecord:
        with self.database.transaction() as conn:
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
        if row is None or (row["is_deleted"] and not include_deleted):
            raise NotFound(f"document {document_id} not found")
        return record_from_row(row)

    def list_for_owner(self, owner_id: str) -> List[DocumentRecord]:
        """Non-deleted documents of one owner, newest first."""
        with self.database.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM documents WHERE owner_id = ? AND is_deleted = 0 ORDER BY created_at DESC",
                (owner_id,),
            ).fetchall()
        return [record_from_row(row) for row in rows]

    def soft_delete(self, document_id: str) -> DocumentRecord:
        """Flag a record as deleted. The row and its artifact stay in place."""
        deleted_at = self._clock()
        with self.database.transaction(immediate=True) as conn:
            cursor = conn.execute(
                "UPDATE documents SET is_deleted = 1, deleted_at = ? WHERE id = ? AND is_deleted = 0",
                (serialize_datetime(deleted_at), document_id),
            )
            if cursor.rowcount == 0:
                raise NotFound(f"document {document_id} not found")
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
        return record_from_row(row)

    def hard_delete(self, document_id: str) -> DocumentRecord:
        """
        Remove a record (soft-deleted or not) and its share links.

        Returns the removed record so the caller can purge its artifact; the
        reference is gone before the bytes are.
        """
        with self.database.transaction(immediate=True) as conn:
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
            if row is None:
                raise NotFound(f"document {document_id} not found")
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return record_from_row(row)

    @staticmethod
    def check_page_count(record: DocumentRecord, observed: int) -> None:
        if observed != record.page_count:
            logger.error(
                f"Document {record.id} records {record.page_count} pages but its artifact has {observed}"
            )
            raise IntegrityError(f"document {record.id} does not match its catalog entry")
