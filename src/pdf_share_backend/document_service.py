"""
Document lifecycle coordination.

This module exposes the operations the HTTP layer wraps:
- Uploading and validating documents
- Merging, splitting and annotating documents into new documents
- Reading, inspecting and deleting documents
- Issuing, redeeming and deactivating share links

The DocumentService class sequences the validator, transform engine, artifact
store, registry and share ledger so that a record and its artifact always
exist together: artifacts are written first, records committed second, and
any artifact written by a failed operation is removed before the error
reaches the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from .configuration import Settings
from .database import Database
from .errors import DocumentValidationError, IntegrityError, InvalidRequest, NotFound, PDFShareError
from .models import Provenance
from .pdf_structure import DocumentMetadata, DocumentStructure, extract_metadata, validate_document
from .registry import DocumentRecord, DocumentRegistry, NewDocument
from .share_ledger import ShareLedger, ShareLink
from .storage import ArtifactStore, build_artifact_store
from .transforms import Color, Deadline, TransformResult
from .transforms import insert_text as draw_text
from .transforms import merge_documents as merge_structures
from .transforms import split_document as split_structure
from .utils import new_document_id, new_share_token, sanitize_filename, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ShareRedemption:
    link: ShareLink
    document: DocumentRecord
    data: bytes


@dataclass
class _Output:
    data: bytes
    metadata: DocumentMetadata
    name: str


class DocumentService:
    """
    Central coordinator for the document lifecycle.

    Thread Safety:
        Holds no mutable state of its own. Artifacts are immutable and all
        catalog and share link state lives in SQLite, so one instance can
        serve concurrent request threads.

    Attributes:
        store: Artifact store holding document bytes
        registry: Catalog of document records
        ledger: Share link state
        settings: Effective configuration
    """

    def __init__(
        self,
        store: ArtifactStore,
        database: Database,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_document_id,
        token_factory: Callable[[], str] = new_share_token,
    ) -> None:
        self.settings = settings or Settings()
        self.store = store
        self.registry = DocumentRegistry(database, clock=clock, id_factory=id_factory)
        self.ledger = ShareLedger(database, clock=clock, token_factory=token_factory)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "DocumentService":
        return cls(build_artifact_store(settings), Database(settings.database.path), settings)

    def now(self) -> datetime:
        return self._clock()

    # Internal helpers

    def _deadline(self, timeout: Optional[float]) -> Deadline:
        return Deadline.after(timeout if timeout is not None else self.settings.transforms.timeout_seconds)

    def _discard(self, pointers: Sequence[str]) -> None:
        """Remove artifacts that never became referenced by a committed record."""
        for pointer in pointers:
            try:
                self.store.delete(pointer)
            except PDFShareError as exc:
                logger.error(f"Rollback could not remove artifact {pointer}: {exc.message}")
            else:
                logger.warning(f"Rolled back unreferenced artifact {pointer}")

    def _persist(
        self,
        outputs: Sequence[_Output],
        provenance: Provenance,
        owner_id: Optional[str],
        source_ids: Sequence[str] = (),
        deadline: Optional[Deadline] = None,
    ) -> List[DocumentRecord]:
        """
        Store every output and commit their records in one transaction.

        Either all records are committed with their artifacts or none is and
        every artifact written here has been deleted again.
        """
        pointers: List[str] = []
        try:
            for output in outputs:
                pointers.append(self.store.put(output.data))
            if deadline is not None:
                deadline.check("publishing the output")
            drafts = [
                NewDocument(
                    storage_pointer=pointer,
                    original_name=output.name,
                    file_size=len(output.data),
                    metadata=output.metadata,
                    provenance=provenance,
                    owner_id=owner_id,
                    source_ids=source_ids,
                )
                for pointer, output in zip(pointers, outputs)
            ]
            return self.registry.create_many(drafts)
        except BaseException:
            self._discard(pointers)
            raise

    def _open_source(self, record: DocumentRecord) -> DocumentStructure:
        """
        Load and parse a source document's artifact.

        Raises:
            NotFound: If the artifact is missing
            IntegrityError: If the artifact is unreadable or its page count
                disagrees with the record
        """
        data = self.store.get(record.storage_pointer)
        try:
            structure = validate_document(data, max_bytes=max(len(data), 1))
        except DocumentValidationError as exc:
            logger.error(f"Stored artifact of document {record.id} no longer validates")
            raise IntegrityError(f"document {record.id} does not match its catalog entry") from exc
        try:
            self.registry.check_page_count(record, structure.page_count)
        except IntegrityError:
            structure.close()
            raise
        return structure

    @staticmethod
    def _output(result: TransformResult, name: str) -> _Output:
        return _Output(data=result.data, metadata=result.metadata, name=name)

    # Documents

    def upload_document(self, data: bytes, filename: str = "document.pdf", owner_id: Optional[str] = None) -> DocumentRecord:
        """
        Validate, extract and persist an uploaded document.

        Raises:
            DocumentValidationError: If the bytes are not a usable PDF; nothing
                is stored in that case
            StorageFailure: If the artifact or its record cannot be written
        """
        with validate_document(data, max_bytes=self.settings.uploads.max_bytes) as structure:
            metadata = extract_metadata(structure, now=self._clock())

        output = _Output(data=data, metadata=metadata, name=sanitize_filename(filename))
        [record] = self._persist([output], Provenance.ORIGINAL, owner_id)
        logger.info(f"Uploaded document {record.id} ({record.page_count} pages, {record.file_size} bytes)")
        return record

    def get_document(self, document_id: str) -> DocumentRecord:
        return self.registry.get(document_id)

    def list_documents(self, owner_id: str) -> List[DocumentRecord]:
        return self.registry.list_for_owner(owner_id)

    def read_document(self, document_id: str) -> Tuple[DocumentRecord, bytes]:
        record = self.registry.get(document_id)
        return record, self.store.get(record.storage_pointer)

    def inspect_document(self, document_id: str) -> DocumentMetadata:
        """
        Re-read metadata from the stored artifact.

        Raises:
            IntegrityError: If the artifact's page count no longer matches
                the record
        """
        record = self.registry.get(document_id)
        with self._open_source(record) as structure:
            return extract_metadata(structure, now=self._clock())

    def delete_document(self, document_id: str, purge: bool = False) -> DocumentRecord:
        """
        Delete a document.

        Args:
            document_id: The document to delete
            purge: Remove the record and its artifact for good instead of
                flagging the record as deleted

        Note:
            Derived documents hold their own copies of every page, so deleting
            a source never affects them.
        """
        if not purge:
            record = self.registry.soft_delete(document_id)
            logger.info(f"Soft-deleted document {document_id}")
            return record

        record = self.registry.hard_delete(document_id)
        try:
            self.store.delete(record.storage_pointer)
        except NotFound:
            logger.warning(f"Artifact of purged document {document_id} was already gone")
        logger.info(f"Purged document {document_id}")
        return record

    # Transforms

    def merge_documents(
        self,
        source_ids: Sequence[str],
        output_name: Optional[str] = None,
        owner_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> DocumentRecord:
        """
        Merge documents into a new one, pages in source order.

        Raises:
            InvalidRequest: If fewer than 2 sources are given
            NotFound: If a source or its artifact does not exist
            TransformTimeout: If the deadline passes; no document is created
        """
        if len(source_ids) < 2:
            raise InvalidRequest("at least 2 source documents are required to merge")

        deadline = self._deadline(timeout)
        records = [self.registry.get(source_id) for source_id in source_ids]
        structures: List[DocumentStructure] = []
        try:
            for record in records:
                structures.append(self._open_source(record))
            result = merge_structures(structures, deadline)
        finally:
            for structure in structures:
                structure.close()

        name = sanitize_filename(output_name) if output_name else f"merged_{self._clock():%Y%m%d%H%M%S}.pdf"
        [merged] = self._persist(
            [self._output(result, name)], Provenance.MERGED, owner_id, list(source_ids), deadline
        )
        logger.info(f"Merged {len(records)} documents into {merged.id} ({merged.page_count} pages)")
        return merged

    def split_document(
        self,
        document_id: str,
        ranges: Sequence[Sequence[int]],
        output_names: Optional[Sequence[str]] = None,
        owner_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> List[DocumentRecord]:
        """
        Split a document into one new document per page range.

        Raises:
            InvalidRequest: If a range is outside the document
            NotFound: If the source or its artifact does not exist
            TransformTimeout: If the deadline passes; no document is created
        """
        deadline = self._deadline(timeout)
        source = self.registry.get(document_id)
        with self._open_source(source) as structure:
            results = split_structure(structure, ranges, deadline)

        names = list(output_names or [])
        outputs = []
        for index, result in enumerate(results):
            custom = names[index] if index < len(names) else None
            name = sanitize_filename(custom) if custom else f"split_{index + 1}_{source.original_name}"
            outputs.append(self._output(result, name))

        records = self._persist(outputs, Provenance.SPLIT, owner_id, [document_id], deadline)
        logger.info(f"Split document {document_id} into {len(records)} documents")
        return records

    def insert_text(
        self,
        document_id: str,
        page: int,
        text: str,
        position: Tuple[float, float],
        font_size: float = 12.0,
        color: Color = (0.0, 0.0, 0.0),
        owner_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> DocumentRecord:
        """
        Create an edited copy of a document with text drawn on one page.

        Raises:
            InvalidRequest: If the page does not exist or a style value is
                out of range
            NotFound: If the source or its artifact does not exist
        """
        deadline = self._deadline(timeout)
        source = self.registry.get(document_id)
        with self._open_source(source) as structure:
            result = draw_text(structure, page, text, position, font_size, color, deadline)

        [edited] = self._persist(
            [self._output(result, f"edited_{source.original_name}")],
            Provenance.EDITED,
            owner_id,
            [document_id],
            deadline,
        )
        logger.info(f"Added text to page {page} of document {document_id} as {edited.id}")
        return edited

    # Share links

    def issue_share_link(
        self,
        document_id: str,
        owner_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        max_downloads: Optional[int] = None,
    ) -> ShareLink:
        return self.ledger.issue(document_id, owner_id, expires_at, max_downloads)

    def inspect_share_link(self, token: str) -> Tuple[ShareLink, DocumentRecord]:
        return self.ledger.inspect(token)

    def redeem_share_link(self, token: str) -> ShareRedemption:
        """
        Consume one download of a share link and return the document bytes.

        Note:
            The download slot is taken before the bytes are read; a storage
            error afterwards does not give the slot back.
        """
        link, document = self.ledger.redeem(token)
        return ShareRedemption(link=link, document=document, data=self.store.get(document.storage_pointer))

    def deactivate_share_link(self, token: str, requester: Optional[str]) -> ShareLink:
        return self.ledger.deactivate(
            token, requester, allow_anonymous=self.settings.shares.allow_anonymous_deactivation
        )

    def list_share_links(self, owner_id: str) -> List[ShareLink]:
        return self.ledger.list_for_owner(owner_id)
