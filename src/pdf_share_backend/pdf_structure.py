"""
Binary validation and metadata extraction for uploaded PDF documents.

``validate_document`` turns raw bytes into a ``DocumentStructure``: an open,
read-only PyMuPDF handle whose pages are known to be enumerable. The same
handle is then used by ``extract_metadata`` and by the transform engine, so a
document is parsed once per operation and never re-read from storage.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import fitz  # PyMuPDF

from .errors import DocumentValidationError
from .models import DocumentMetadataResponse
from .utils import utcnow

logger = logging.getLogger(__name__)

PDF_HEADER = b"%PDF-"
# Readers accept leading garbage before the header within the first kilobyte.
HEADER_SEARCH_WINDOW = 1024
DEFAULT_MAX_BYTES = 50 * 1024 * 1024
MALFORMED_MESSAGE = "malformed or unsupported document"

_PDF_DATE_PATTERN = re.compile(
    r"^(?:D:)?(?P<year>\d{4})(?P<month>\d{2})?(?P<day>\d{2})?"
    r"(?P<hour>\d{2})?(?P<minute>\d{2})?(?P<second>\d{2})?"
    r"(?:(?P<sign>[Zz+\-])(?P<tz_hour>\d{2})?'?(?P<tz_minute>\d{2})?'?)?"
)


@dataclass
class DocumentMetadata:
    """Structural and descriptive fields read from a validated document."""

    page_count: int
    title: str
    author: str
    subject: str
    creator: str
    producer: str
    creation_date: datetime
    modification_date: datetime
    is_encrypted: bool

    def to_response(self) -> DocumentMetadataResponse:
        return DocumentMetadataResponse(
            page_count=self.page_count,
            title=self.title,
            author=self.author,
            subject=self.subject,
            creator=self.creator,
            producer=self.producer,
            creation_date=self.creation_date,
            modification_date=self.modification_date,
            is_encrypted=self.is_encrypted,
        )


class DocumentStructure:
    """
    Read-only handle on a validated PDF.

    Exposes only what the rest of the backend needs: page enumeration, page
    content, descriptive fields and the original bytes. Use it as a context
    manager so the underlying MuPDF document is closed promptly.
    """

    def __init__(self, document: fitz.Document, data: bytes) -> None:
        self._document = document
        self.data = data

    @property
    def document(self) -> fitz.Document:
        return self._document

    @property
    def page_count(self) -> int:
        return self._document.page_count

    @property
    def raw_metadata(self) -> Dict[str, Any]:
        return dict(self._document.metadata or {})

    @property
    def is_encrypted(self) -> bool:
        return bool(self.raw_metadata.get("encryption")) or bool(self._document.is_encrypted)

    def page_contents(self, index: int) -> bytes:
        """Decompressed content stream(s) of the page at 0-based ``index``."""
        return self._document[index].read_contents()

    def close(self) -> None:
        if not self._document.is_closed:
            self._document.close()

    def __enter__(self) -> "DocumentStructure":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def validate_document(data: bytes, max_bytes: int = DEFAULT_MAX_BYTES) -> DocumentStructure:
    """
    Confirm that ``data`` is a PDF whose pages can be enumerated.

    Args:
        data: Raw document bytes
        max_bytes: Largest accepted input size

    Returns:
        An open DocumentStructure over ``data``

    Raises:
        DocumentValidationError: If the bytes are empty, too large, not a PDF,
            password protected, page-less or otherwise unreadable
    """
    if len(data) > max_bytes:
        raise DocumentValidationError(f"document exceeds the maximum size of {max_bytes} bytes")
    if not data or PDF_HEADER not in data[:HEADER_SEARCH_WINDOW]:
        raise DocumentValidationError(MALFORMED_MESSAGE)

    try:
        document = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:  # noqa: BLE001 - MuPDF raises several unrelated types
        logger.debug(f"MuPDF rejected document: {exc}")
        raise DocumentValidationError(MALFORMED_MESSAGE) from exc

    try:
        if document.needs_pass:
            raise DocumentValidationError(MALFORMED_MESSAGE)
        if document.page_count < 1:
            raise DocumentValidationError(MALFORMED_MESSAGE)
        # Loading every page proves the page tree is intact, not only its count.
        for index in range(document.page_count):
            document.load_page(index)
    except DocumentValidationError:
        document.close()
        raise
    except Exception as exc:  # noqa: BLE001
        document.close()
        logger.debug(f"Page enumeration failed: {exc}")
        raise DocumentValidationError(MALFORMED_MESSAGE) from exc

    return DocumentStructure(document, data)


def parse_pdf_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a PDF date string such as ``D:20240131120000+01'00'``.

    Returns:
        A timezone-aware datetime, or None when the value is empty or invalid.
        Dates without an offset are taken as UTC.
    """
    if not value:
        return None
    match = _PDF_DATE_PATTERN.match(value.strip())
    if not match:
        return None

    parts = match.groupdict()
    tz = timezone.utc
    if parts["sign"] in ("+", "-"):
        offset = timedelta(hours=int(parts["tz_hour"] or 0), minutes=int(parts["tz_minute"] or 0))
        tz = timezone(offset if parts["sign"] == "+" else -offset)

    try:
        return datetime(
            int(parts["year"]),
            int(parts["month"] or 1),
            int(parts["day"] or 1),
            int(parts["hour"] or 0),
            int(parts["minute"] or 0),
            int(parts["second"] or 0),
            tzinfo=tz,
        )
    except ValueError:
        return None


def extract_metadata(structure: DocumentStructure, now: Optional[datetime] = None) -> DocumentMetadata:
    """
    Read descriptive fields from a validated document.

    Missing text fields resolve to ``""`` and missing or unparseable dates to
    ``now`` (defaults to the current UTC time).
    """
    now = now or utcnow()
    raw = structure.raw_metadata

    def text(key: str) -> str:
        return (raw.get(key) or "").strip()

    return DocumentMetadata(
        page_count=structure.page_count,
        title=text("title"),
        author=text("author"),
        subject=text("subject"),
        creator=text("creator"),
        producer=text("producer"),
        creation_date=parse_pdf_date(raw.get("creationDate")) or now,
        modification_date=parse_pdf_date(raw.get("modDate")) or now,
        is_encrypted=structure.is_encrypted,
    )
