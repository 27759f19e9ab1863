from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field


class Provenance(str, Enum):
    ORIGINAL = "original"
    MERGED = "merged"
    SPLIT = "split"
    EDITED = "edited"


class LinkState(str, Enum):
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    DEACTIVATED = "deactivated"


class DocumentMetadataResponse(BaseModel):
    page_count: int
    title: str
    author: str
    subject: str
    creator: str
    producer: str
    creation_date: datetime
    modification_date: datetime
    is_encrypted: bool


class DocumentResponse(BaseModel):
    id: str
    original_name: str
    file_size: int
    page_count: int
    provenance: Provenance
    source_ids: List[str]
    owner_id: Optional[str] = None
    created_at: datetime
    metadata: DocumentMetadataResponse


class MergeRequest(BaseModel):
    source_ids: List[str]
    output_name: Optional[str] = None


class SplitRequest(BaseModel):
    ranges: List[Tuple[int, int]]
    output_names: Optional[List[str]] = None


class InsertTextRequest(BaseModel):
    page: int = 1
    text: str
    x: float = 50.0
    y: float = 50.0
    font_size: float = 12.0
    color: Tuple[float, float, float] = (0.0, 0.0, 0.0)


class SplitResponse(BaseModel):
    source_id: str
    documents: List[DocumentResponse]


class ShareLinkCreate(BaseModel):
    document_id: str
    expires_at: Optional[datetime] = None
    max_downloads: Optional[int] = None


class ShareLinkResponse(BaseModel):
    token: str
    document_id: str
    owner_id: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None
    max_downloads: Optional[int] = None
    download_count: int = 0
    is_active: bool = True
    state: LinkState
    share_path: str = Field(description="Path a recipient downloads the document from.")


class ShareInspection(BaseModel):
    link: ShareLinkResponse
    document: DocumentResponse


class UploadError(BaseModel):
    filename: str
    kind: str
    message: str


class BatchUploadResponse(BaseModel):
    uploaded: List[DocumentResponse]
    errors: List[UploadError] = []
