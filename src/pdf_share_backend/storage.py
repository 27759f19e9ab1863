"""
Artifact stores holding the bytes behind document records.

An artifact is an opaque, immutable blob addressed by a storage pointer.
``put`` publishes a pointer only once its bytes are fully durable, so a reader
can never observe a half-written artifact. Two backends are provided:

- LocalArtifactStore: files under a root directory, written to a temporary
  file, fsynced and then renamed into place
- S3ArtifactStore: objects in an S3 bucket (``put_object`` is atomic)

The backend is chosen by ``storage.backend`` in the configuration.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import Settings
from .errors import NotFound, StorageFailure
from .utils import ensure_directory, new_document_id

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".pdf"


class ArtifactStore(Protocol):
    def put(self, data: bytes) -> str: ...

    def get(self, pointer: str) -> bytes: ...

    def delete(self, pointer: str) -> None: ...

    def exists(self, pointer: str) -> bool: ...


class LocalArtifactStore:
    """
    Filesystem artifact store.

    Artifacts live at ``<root>/<shard>/<id>.pdf`` where ``shard`` is the first
    two characters of the id. Pointers are the path relative to ``root``.
    """

    def __init__(self, root: Path) -> None:
        self.root = ensure_directory(Path(root)).resolve()

    def _resolve(self, pointer: str) -> Path:
        path = (self.root / pointer).resolve()
        if path == self.root or self.root not in path.parents:
            raise NotFound(f"artifact {pointer} not found")
        return path

    def put(self, data: bytes) -> str:
        artifact_id = new_document_id()
        pointer = f"{artifact_id[:2]}/{artifact_id}{ARTIFACT_SUFFIX}"
        destination = self.root / pointer

        tmp_name: Optional[str] = None
        try:
            ensure_directory(destination.parent)
            fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=".tmp-", suffix=ARTIFACT_SUFFIX)
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, destination)
            tmp_name = None
        except OSError as exc:
            logger.error(f"Failed to write artifact {pointer}: {exc}")
            raise StorageFailure("failed to store document bytes") from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.debug(f"Stored artifact {pointer} ({len(data)} bytes)")
        return pointer

    def get(self, pointer: str) -> bytes:
        path = self._resolve(pointer)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(f"artifact {pointer} not found") from exc
        except OSError as exc:
            logger.error(f"Failed to read artifact {pointer}: {exc}")
            raise StorageFailure("failed to read document bytes") from exc

    def delete(self, pointer: str) -> None:
        path = self._resolve(pointer)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise NotFound(f"artifact {pointer} not found") from exc
        except OSError as exc:
            logger.error(f"Failed to delete artifact {pointer}: {exc}")
            raise StorageFailure("failed to delete document bytes") from exc
        logger.debug(f"Deleted artifact {pointer}")

    def exists(self, pointer: str) -> bool:
        try:
            return self._resolve(pointer).is_file()
        except NotFound:
            return False


def _is_missing(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    return code in {"NoSuchKey", "404", "NotFound"}


class S3ArtifactStore:
    """
    S3 artifact store. Pointers are object keys below ``prefix``.

    Note:
        The client is created lazily from the default boto3 credential chain
        unless one is injected (tests pass a stubbed client).
    """

    def __init__(self, bucket: str, prefix: str = "", client=None) -> None:
        if not bucket:
            raise ValueError("S3 artifact store requires a bucket name")
        self.bucket = bucket
        self.prefix = prefix
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def put(self, data: bytes) -> str:
        key = f"{self.prefix}{new_document_id()}{ARTIFACT_SUFFIX}"
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType="application/pdf")
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"S3 upload failed for s3://{self.bucket}/{key}: {exc}")
            raise StorageFailure("failed to store document bytes") from exc
        logger.info(f"Upload successful: s3://{self.bucket}/{key}")
        return key

    def get(self, pointer: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=pointer)
            return response["Body"].read()
        except ClientError as exc:
            if _is_missing(exc):
                raise NotFound(f"artifact {pointer} not found") from exc
            logger.error(f"S3 download failed for s3://{self.bucket}/{pointer}: {exc}")
            raise StorageFailure("failed to read document bytes") from exc
        except BotoCoreError as exc:
            logger.error(f"S3 download failed for s3://{self.bucket}/{pointer}: {exc}")
            raise StorageFailure("failed to read document bytes") from exc

    def delete(self, pointer: str) -> None:
        if not self.exists(pointer):
            raise NotFound(f"artifact {pointer} not found")
        try:
            self.client.delete_object(Bucket=self.bucket, Key=pointer)
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"S3 delete failed for s3://{self.bucket}/{pointer}: {exc}")
            raise StorageFailure("failed to delete document bytes") from exc

    def exists(self, pointer: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=pointer)
        except ClientError as exc:
            if _is_missing(exc):
                return False
            raise StorageFailure("failed to look up document bytes") from exc
        except BotoCoreError as exc:
            raise StorageFailure("failed to look up document bytes") from exc
        return True


def build_artifact_store(settings: Settings) -> ArtifactStore:
    if settings.storage.backend == "s3":
        return S3ArtifactStore(settings.storage.s3_bucket, settings.storage.s3_prefix)
    return LocalArtifactStore(settings.storage.root)
