"""
Tests for the local and S3 artifact stores.
"""

import io
import os

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from pdf_share_backend.configuration import Settings, StorageSettings
from pdf_share_backend.errors import NotFound, StorageFailure
from pdf_share_backend.storage import LocalArtifactStore, S3ArtifactStore, build_artifact_store


class TestLocalArtifactStore:
    def test_put_then_get(self, artifact_root):
        store = LocalArtifactStore(artifact_root)
        pointer = store.put(b"%PDF-1.7 payload")

        assert store.exists(pointer)
        assert store.get(pointer) == b"%PDF-1.7 payload"

    def test_each_put_gets_a_new_pointer(self, artifact_root):
        store = LocalArtifactStore(artifact_root)
        assert store.put(b"same") != store.put(b"same")

    def test_delete(self, artifact_root, list_artifacts):
        store = LocalArtifactStore(artifact_root)
        pointer = store.put(b"bytes")
        store.delete(pointer)

        assert not store.exists(pointer)
        assert list_artifacts() == []
        with pytest.raises(NotFound):
            store.get(pointer)

    def test_delete_missing_pointer(self, artifact_root):
        store = LocalArtifactStore(artifact_root)
        with pytest.raises(NotFound):
            store.delete("ab/missing.pdf")

    @pytest.mark.parametrize("pointer", ["../outside.pdf", "/etc/passwd", ""])
    def test_pointer_cannot_escape_root(self, artifact_root, pointer):
        store = LocalArtifactStore(artifact_root)
        with pytest.raises(NotFound):
            store.get(pointer)
        assert not store.exists(pointer)

    def test_failed_write_leaves_nothing_behind(self, artifact_root, list_artifacts, monkeypatch):
        store = LocalArtifactStore(artifact_root)

        def broken_fsync(fd):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(os, "fsync", broken_fsync)
        with pytest.raises(StorageFailure):
            store.put(b"never durable")
        assert list_artifacts() == []


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


class TestS3ArtifactStore:
    def test_put_uses_prefix(self, s3_client):
        store = S3ArtifactStore("bucket", prefix="docs/", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_response(
                "put_object",
                {},
                {"Bucket": "bucket", "Key": ANY, "Body": b"data", "ContentType": "application/pdf"},
            )
            pointer = store.put(b"data")

        assert pointer.startswith("docs/")
        assert pointer.endswith(".pdf")

    def test_get(self, s3_client):
        store = S3ArtifactStore("bucket", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_response(
                "get_object",
                {"Body": StreamingBody(io.BytesIO(b"pdf bytes"), len(b"pdf bytes"))},
                {"Bucket": "bucket", "Key": "k.pdf"},
            )
            assert store.get("k.pdf") == b"pdf bytes"

    def test_get_missing_key(self, s3_client):
        store = S3ArtifactStore("bucket", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
            with pytest.raises(NotFound):
                store.get("missing.pdf")

    def test_put_failure(self, s3_client):
        store = S3ArtifactStore("bucket", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
            with pytest.raises(StorageFailure):
                store.put(b"data")

    def test_delete_existing(self, s3_client):
        store = S3ArtifactStore("bucket", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_response("head_object", {}, {"Bucket": "bucket", "Key": "k.pdf"})
            stub.add_response("delete_object", {}, {"Bucket": "bucket", "Key": "k.pdf"})
            store.delete("k.pdf")
            stub.assert_no_pending_responses()

    def test_delete_missing(self, s3_client):
        store = S3ArtifactStore("bucket", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_client_error("head_object", service_error_code="404", http_status_code=404)
            with pytest.raises(NotFound):
                store.delete("gone.pdf")

    def test_requires_bucket(self):
        with pytest.raises(ValueError):
            S3ArtifactStore("")


class TestBuildArtifactStore:
    def test_local_backend(self, artifact_root):
        settings = Settings(storage=StorageSettings(backend="local", root=artifact_root))
        assert isinstance(build_artifact_store(settings), LocalArtifactStore)

    def test_s3_backend(self):
        settings = Settings(storage=StorageSettings(backend="s3", s3_bucket="bucket"))
        store = build_artifact_store(settings)
        assert isinstance(store, S3ArtifactStore)
        assert store.bucket == "bucket"
