"""
Page-level document transforms: merge, range split and text insertion.

Every transform reads its sources through ``DocumentStructure`` handles and
builds a brand new document in memory. Sources are never modified and nothing
is written to storage here; the caller persists ``TransformResult.data``.
Page counts and metadata of the output are always recomputed from the
serialized bytes rather than assumed from the inputs.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

from .errors import DocumentValidationError, IntegrityError, InvalidRequest, TransformTimeout
from .pdf_structure import DocumentMetadata, DocumentStructure, extract_metadata, validate_document

logger = logging.getLogger(__name__)

# Built-in Base-14 Helvetica; needs no embedding.
TEXT_FONT = "helv"

PageRange = Tuple[int, int]
Color = Tuple[float, float, float]


class Deadline:
    """
    A point on the monotonic clock after which a transform gives up.

    Checked between units of work (one source, one range) and right before
    serialization, so a cancelled transform never produces output.
    """

    def __init__(self, expires_at: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.expires_at = expires_at
        self._clock = clock

    @classmethod
    def after(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        return cls(clock() + seconds, clock)

    def remaining(self) -> float:
        return self.expires_at - self._clock()

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, stage: str) -> None:
        if self.expired:
            raise TransformTimeout(f"transform exceeded its deadline while {stage}")


@dataclass
class TransformResult:
    data: bytes
    page_count: int
    metadata: DocumentMetadata


def _check_deadline(deadline: Optional[Deadline], stage: str) -> None:
    if deadline is not None:
        deadline.check(stage)


def _serialize(document: fitz.Document, deadline: Optional[Deadline]) -> TransformResult:
    _check_deadline(deadline, "serializing the output")
    data = document.tobytes(garbage=3, deflate=True)
    try:
        output = validate_document(data, max_bytes=max(len(data), 1))
    except DocumentValidationError as exc:
        raise IntegrityError("transform produced an unreadable document") from exc
    with output:
        metadata = extract_metadata(output)
    return TransformResult(data=data, page_count=metadata.page_count, metadata=metadata)


def validate_ranges(ranges: Sequence[Sequence[int]], page_count: int) -> List[PageRange]:
    """
    Check split ranges against a document's page count.

    Ranges are 1-indexed and inclusive; they may overlap and keep their order.

    Raises:
        InvalidRequest: If no range is given or any range violates
            ``1 <= start <= end <= page_count``
    """
    if not ranges:
        raise InvalidRequest("at least one page range is required")

    checked: List[PageRange] = []
    for item in ranges:
        if len(item) != 2:
            raise InvalidRequest(f"page range {list(item)} must have exactly a start and an end")
        start, end = int(item[0]), int(item[1])
        if not 1 <= start <= end <= page_count:
            raise InvalidRequest(f"invalid page range {start}-{end} for a {page_count}-page document")
        checked.append((start, end))
    return checked


def merge_documents(sources: Sequence[DocumentStructure], deadline: Optional[Deadline] = None) -> TransformResult:
    """
    Concatenate all pages of ``sources`` in the given order.

    Pages are copied structurally (page objects and content streams), not
    re-rendered.
    """
    if len(sources) < 2:
        raise InvalidRequest("at least 2 source documents are required to merge")

    output = fitz.open()
    try:
        for position, source in enumerate(sources, start=1):
            _check_deadline(deadline, f"copying source {position} of {len(sources)}")
            output.insert_pdf(source.document)
        result = _serialize(output, deadline)
    finally:
        output.close()

    logger.debug(f"Merged {len(sources)} sources into {result.page_count} pages")
    return result


def split_document(
    source: DocumentStructure,
    ranges: Sequence[Sequence[int]],
    deadline: Optional[Deadline] = None,
) -> List[TransformResult]:
    """Produce one document per range, in range order."""
    checked = validate_ranges(ranges, source.page_count)

    results: List[TransformResult] = []
    for start, end in checked:
        _check_deadline(deadline, f"extracting pages {start}-{end}")
        output = fitz.open()
        try:
            output.insert_pdf(source.document, from_page=start - 1, to_page=end - 1)
            results.append(_serialize(output, deadline))
        finally:
            output.close()
    return results


def _validate_text_request(
    source: DocumentStructure,
    page: int,
    text: str,
    position: Tuple[float, float],
    font_size: float,
    color: Sequence[float],
) -> None:
    if not 1 <= page <= source.page_count:
        raise InvalidRequest(f"page {page} is outside 1-{source.page_count}")
    if not text:
        raise InvalidRequest("text must not be empty")
    if len(position) != 2 or not all(math.isfinite(value) for value in position):
        raise InvalidRequest("position must be two finite coordinates")
    if not math.isfinite(font_size) or font_size <= 0:
        raise InvalidRequest("font size must be a positive number")
    if len(color) != 3 or not all(math.isfinite(c) and 0.0 <= c <= 1.0 for c in color):
        raise InvalidRequest("color must have three channels, each between 0 and 1")


def insert_text(
    source: DocumentStructure,
    page: int,
    text: str,
    position: Tuple[float, float],
    font_size: float = 12.0,
    color: Color = (0.0, 0.0, 0.0),
    deadline: Optional[Deadline] = None,
) -> TransformResult:
    """
    Copy ``source`` and draw ``text`` on one page of the copy.

    Args:
        source: Document to copy
        page: 1-indexed target page
        text: Text to draw
        position: (x, y) of the text baseline start in PDF user space, y
            growing upwards; page rotation does not change its meaning
        font_size: Size in points
        color: RGB channels in [0, 1]
        deadline: Optional cancellation deadline

    Raises:
        InvalidRequest: If the page does not exist or a style value is out of range
    """
    _validate_text_request(source, page, text, position, font_size, color)
    _check_deadline(deadline, "copying the source")

    output = fitz.open(stream=source.data, filetype="pdf")
    try:
        target = output[page - 1]
        # PDF user space -> unrotated MuPDF page space, which insert_text draws in.
        point = fitz.Point(*position) * target.transformation_matrix * target.derotation_matrix
        target.insert_text(point, text, fontsize=font_size, fontname=TEXT_FONT, color=tuple(color))
        result = _serialize(output, deadline)
    finally:
        output.close()
    return result
