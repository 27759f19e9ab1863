"""
Pytest configuration and fixtures for PDF Share Backend tests.
"""

import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import fitz
import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["PDF_SHARE_STORAGE_BACKEND"] = "local"
os.environ["PDF_SHARE_STORAGE_ROOT"] = tempfile.mkdtemp(prefix="pdf_share_test_artifacts_")
os.environ["PDF_SHARE_DB_PATH"] = str(Path(tempfile.mkdtemp(prefix="pdf_share_test_db_")) / "test.db")

from pdf_share_backend.configuration import Settings
from pdf_share_backend.database import Database
from pdf_share_backend.document_service import DocumentService
from pdf_share_backend.main import app
from pdf_share_backend.storage import LocalArtifactStore


class FakeClock:
    """Deterministic wall clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def build_pdf(page_count: int, label: str = "doc", metadata: dict = None) -> bytes:
    """Build an in-memory PDF whose pages read '<label> page <n>'."""
    document = fitz.open()
    for number in range(1, page_count + 1):
        page = document.new_page(width=612, height=792)
        page.insert_text((72, 72), f"{label} page {number}", fontsize=14)
    if metadata:
        document.set_metadata(metadata)
    data = document.tobytes()
    document.close()
    return data


def artifact_files(root: Path) -> list:
    """Every file under an artifact root, including leftover temp files."""
    return [path for path in Path(root).rglob("*") if path.is_file()]


@pytest.fixture(scope="session")
def test_dirs():
    """Create and cleanup test directories."""
    artifact_dir = os.environ["PDF_SHARE_STORAGE_ROOT"]
    db_dir = str(Path(os.environ["PDF_SHARE_DB_PATH"]).parent)

    yield {
        "artifacts": artifact_dir,
        "database": db_dir,
    }

    # Cleanup after all tests
    shutil.rmtree(artifact_dir, ignore_errors=True)
    shutil.rmtree(db_dir, ignore_errors=True)


@pytest.fixture
def client(test_dirs):
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def artifact_root(tmp_path):
    return tmp_path / "artifacts"


@pytest.fixture
def service(tmp_path, artifact_root, clock):
    """A DocumentService on private storage with a controllable clock."""
    return DocumentService(
        LocalArtifactStore(artifact_root),
        Database(tmp_path / "catalog.db"),
        Settings(),
        clock=clock,
    )


@pytest.fixture
def list_artifacts(artifact_root):
    return lambda: artifact_files(artifact_root)


@pytest.fixture
def pdf_factory():
    return build_pdf


@pytest.fixture
def three_page_pdf():
    return build_pdf(3, label="three")
