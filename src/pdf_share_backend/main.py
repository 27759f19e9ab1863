from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .configuration import configure_logging, load_settings
from .document_service import DocumentService
from .errors import DocumentValidationError, InvalidRequest, PDFShareError
from .models import (
    BatchUploadResponse,
    DocumentMetadataResponse,
    DocumentResponse,
    InsertTextRequest,
    MergeRequest,
    ShareInspection,
    ShareLinkCreate,
    ShareLinkResponse,
    SplitRequest,
    SplitResponse,
    UploadError,
)

logger = logging.getLogger(__name__)

settings = load_settings()
configure_logging(settings)

app = FastAPI(title="PDF Share API", version="0.1.0")

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

document_service = DocumentService.from_settings(settings)

UPLOAD_CHUNK_BYTES = 8 * 1024 * 1024


def get_document_service() -> DocumentService:
    return document_service


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Opaque id of the caller as forwarded by the authentication layer."""
    return x_user_id or None


def require_user_id(user_id: Optional[str] = Depends(get_user_id)) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return user_id


@app.exception_handler(PDFShareError)
async def handle_pdf_share_error(request: Request, exc: PDFShareError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


def _pdf_response(data: bytes, filename: str, inline: bool = False) -> Response:
    disposition = "inline" if inline else "attachment"
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'{disposition}; filename="{filename}"'},
    )


async def _read_upload(file: UploadFile, max_bytes: int) -> bytes:
    buffer = bytearray()
    while chunk := await file.read(UPLOAD_CHUNK_BYTES):
        buffer.extend(chunk)
        if len(buffer) > max_bytes:
            await file.close()
            raise DocumentValidationError(f"document exceeds the maximum size of {max_bytes} bytes")
    await file.close()
    return bytes(buffer)


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/documents", response_model=DocumentResponse, status_code=201)
async def upload_document(
    pdf: UploadFile = File(...),
    user_id: Optional[str] = Depends(get_user_id),
    service: DocumentService = Depends(get_document_service),
) -> DocumentResponse:
    if not pdf.filename:
        raise HTTPException(status_code=400, detail="PDF file must have a filename")

    data = await _read_upload(pdf, service.settings.uploads.max_bytes)
    # Parsing, fsync and the catalog write all block.
    record = await run_in_threadpool(service.upload_document, data, filename=pdf.filename, owner_id=user_id)
    return record.to_response()


@app.post("/documents/batch", response_model=BatchUploadResponse, status_code=201)
async def upload_documents(
    pdfs: List[UploadFile] = File(...),
    user_id: Optional[str] = Depends(get_user_id),
    service: DocumentService = Depends(get_document_service),
) -> BatchUploadResponse:
    """
    Upload several PDFs at once.

    Every file is validated and stored on its own; a rejected file is
    reported in ``errors`` and does not affect the others.
    """
    max_files = service.settings.uploads.max_files
    if len(pdfs) > max_files:
        raise InvalidRequest(f"at most {max_files} files can be uploaded at once")

    uploaded: List[DocumentResponse] = []
    errors: List[UploadError] = []
    for pdf in pdfs:
        filename = pdf.filename or "document.pdf"
        try:
            data = await _read_upload(pdf, service.settings.uploads.max_bytes)
            record = await run_in_threadpool(service.upload_document, data, filename=filename, owner_id=user_id)
        except DocumentValidationError as exc:
            errors.append(UploadError(filename=filename, kind=exc.kind, message=exc.message))
            continue
        uploaded.append(record.to_response())

    logger.info(f"Batch upload stored {len(uploaded)} of {len(pdfs)} files")
    return BatchUploadResponse(uploaded=uploaded, errors=errors)


@app.get("/documents", response_model=List[DocumentResponse])
def list_documents(
    user_id: str = Depends(require_user_id),
    service: DocumentService = Depends(get_document_service),
) -> List[DocumentResponse]:
    return [record.to_response() for record in service.list_documents(user_id)]


@app.post("/documents/merge", response_model=DocumentResponse, status_code=201)
def merge_documents(
    payload: MergeRequest,
    user_id: Optional[str] = Depends(get_user_id),
    service: DocumentService = Depends(get_document_service),
) -> DocumentResponse:
    record = service.merge_documents(payload.source_ids, output_name=payload.output_name, owner_id=user_id)
    return record.to_response()


@app.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document(document_id: str, service: DocumentService = Depends(get_document_service)) -> DocumentResponse:
    return service.get_document(document_id).to_response()


@app.get("/documents/{document_id}/metadata", response_model=DocumentMetadataResponse)
def get_document_metadata(
    document_id: str, service: DocumentService = Depends(get_document_service)
) -> DocumentMetadataResponse:
    return service.inspect_document(document_id).to_response()


@app.get("/documents/{document_id}/download")
def download_document(
    document_id: str, inline: bool = False, service: DocumentService = Depends(get_document_service)
) -> Response:
    record, data = service.read_document(document_id)
    return _pdf_response(data, record.original_name, inline=inline)


@app.delete("/documents/{document_id}")
def delete_document(
    document_id: str, purge: bool = False, service: DocumentService = Depends(get_document_service)
) -> Dict[str, str]:
    service.delete_document(document_id, purge=purge)
    return {"status": "purged" if purge else "deleted"}


@app.post("/documents/{document_id}/split", response_model=SplitResponse, status_code=201)
def split_document(
    document_id: str,
    payload: SplitRequest,
    user_id: Optional[str] = Depends(get_user_id),
    service: DocumentService = Depends(get_document_service),
) -> SplitResponse:
    records = service.split_document(
        document_id, payload.ranges, output_names=payload.output_names, owner_id=user_id
    )
    return SplitResponse(source_id=document_id, documents=[record.to_response() for record in records])


@app.post("/documents/{document_id}/text", response_model=DocumentResponse, status_code=201)
def insert_text(
    document_id: str,
    payload: InsertTextRequest,
    user_id: Optional[str] = Depends(get_user_id),
    service: DocumentService = Depends(get_document_service),
) -> DocumentResponse:
    record = service.insert_text(
        document_id,
        page=payload.page,
        text=payload.text,
        position=(payload.x, payload.y),
        font_size=payload.font_size,
        color=payload.color,
        owner_id=user_id,
    )
    return record.to_response()


@app.post("/shares", response_model=ShareLinkResponse, status_code=201)
def create_share_link(
    payload: ShareLinkCreate,
    user_id: Optional[str] = Depends(get_user_id),
    service: DocumentService = Depends(get_document_service),
) -> ShareLinkResponse:
    link = service.issue_share_link(
        payload.document_id,
        owner_id=user_id,
        expires_at=payload.expires_at,
        max_downloads=payload.max_downloads,
    )
    return link.to_response(service.now())


@app.get("/shares", response_model=List[ShareLinkResponse])
def list_share_links(
    user_id: str = Depends(require_user_id),
    service: DocumentService = Depends(get_document_service),
) -> List[ShareLinkResponse]:
    now = service.now()
    return [link.to_response(now) for link in service.list_share_links(user_id)]


@app.get("/shares/{token}", response_model=ShareInspection)
def inspect_share_link(token: str, service: DocumentService = Depends(get_document_service)) -> ShareInspection:
    link, document = service.inspect_share_link(token)
    return ShareInspection(link=link.to_response(service.now()), document=document.to_response())


@app.get("/shares/{token}/download")
def download_shared_document(token: str, service: DocumentService = Depends(get_document_service)) -> Response:
    redemption = service.redeem_share_link(token)
    return _pdf_response(redemption.data, redemption.document.original_name)


@app.delete("/shares/{token}", response_model=ShareLinkResponse)
def deactivate_share_link(
    token: str,
    user_id: Optional[str] = Depends(get_user_id),
    service: DocumentService = Depends(get_document_service),
) -> ShareLinkResponse:
    link = service.deactivate_share_link(token, requester=user_id)
    return link.to_response(service.now())
