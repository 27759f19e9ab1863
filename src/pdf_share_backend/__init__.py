"""
PDF Share Backend - REST API for PDF upload, transformation and sharing

This package provides a FastAPI-based web service around a small document
lifecycle engine. It enables:

- PDF uploads with structural validation and metadata extraction
- Page-accurate merge, range split and text insertion, each producing a new
  immutable document
- Time- and download-bounded share links with atomic download counters
- Soft and hard deletion of documents and their backing artifacts

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - document_service: Operation facade coordinating the components below
    - pdf_structure: Binary validation and metadata extraction
    - transforms: Merge, split and text insertion
    - storage: Artifact stores (local filesystem, S3)
    - registry: SQLite catalog of document records
    - share_ledger: Share link issuance, redemption and deactivation
    - configuration: Config loading and merging logic

Usage:
    Run the API server with:
        uvicorn pdf_share_backend.main:app --reload --host 0.0.0.0 --port 8000

    Or use the development script:
        uv run uvicorn pdf_share_backend.main:app --reload

Architecture Principles:
    - Artifacts are never mutated after they are written
    - A record and its artifact are created and removed together
    - Share link counters change only inside one serialized transaction
    - Authentication stays outside; owners are opaque ids
"""

__version__ = "0.1.0"
