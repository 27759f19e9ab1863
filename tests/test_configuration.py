"""
Tests for layered configuration and small utilities.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from pdf_share_backend.configuration import load_settings, make_runtime_config
from pdf_share_backend.utils import deserialize_datetime, sanitize_filename, serialize_datetime


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "PDF_SHARE_CONFIG",
        "PDF_SHARE_STORAGE_BACKEND",
        "PDF_SHARE_STORAGE_ROOT",
        "PDF_SHARE_DB_PATH",
        "PDF_SHARE_MAX_UPLOAD_BYTES",
        "PDF_SHARE_TRANSFORM_TIMEOUT",
        "PDF_SHARE_S3_BUCKET",
        "S3_BUCKET_NAME",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:
    def test_packaged_defaults(self, clean_env):
        settings = load_settings()

        assert settings.storage.backend == "local"
        assert settings.uploads.max_bytes == 50 * 1024 * 1024
        assert settings.transforms.timeout_seconds == 120.0
        assert settings.shares.allow_anonymous_deactivation is False

    def test_environment_overrides_defaults(self, clean_env):
        clean_env.setenv("PDF_SHARE_MAX_UPLOAD_BYTES", "1024")
        clean_env.setenv("PDF_SHARE_STORAGE_ROOT", "/srv/pdfs")
        clean_env.setenv("PDF_SHARE_ALLOW_ANONYMOUS_DEACTIVATION", "true")

        settings = load_settings()

        assert settings.uploads.max_bytes == 1024
        assert settings.storage.root == Path("/srv/pdfs")
        assert settings.shares.allow_anonymous_deactivation is True

    def test_yaml_file_layer(self, clean_env, tmp_path):
        config_file = tmp_path / "override.yaml"
        config_file.write_text("transforms:\n  timeout_seconds: 5\nstorage:\n  backend: s3\n  s3_bucket: docs\n")
        clean_env.setenv("PDF_SHARE_CONFIG", str(config_file))
        clean_env.setenv("PDF_SHARE_TRANSFORM_TIMEOUT", "7.5")

        settings = load_settings()

        assert settings.storage.backend == "s3"
        assert settings.storage.s3_bucket == "docs"
        assert settings.transforms.timeout_seconds == 7.5

    def test_explicit_overrides_win(self, clean_env):
        clean_env.setenv("PDF_SHARE_MAX_UPLOAD_BYTES", "1024")
        settings = load_settings({"uploads": {"max_bytes": 2048}})
        assert settings.uploads.max_bytes == 2048

    def test_runtime_config_keeps_unrelated_keys(self, clean_env):
        config = make_runtime_config({"database": {"path": "catalog.db"}})
        assert config.database.path == "catalog.db"
        assert config.storage.s3_prefix == "documents/"

    def test_invalid_values_rejected(self, clean_env):
        with pytest.raises(ValidationError):
            load_settings({"uploads": {"max_bytes": 0}})
        with pytest.raises(ValidationError):
            load_settings({"storage": {"backend": "ftp"}})


class TestSanitizeFilename:
    @pytest.mark.parametrize(
        "filename,expected",
        [
            ("report.pdf", "report.pdf"),
            ("My Report (final).PDF", "My-Report-final.pdf"),
            ("../../etc/passwd", "passwd.pdf"),
            ("C:\\Users\\me\\scan.pdf", "scan.pdf"),
            ("???.pdf", "document.pdf"),
            ("notes", "notes.pdf"),
        ],
    )
    def test_sanitize(self, filename, expected):
        assert sanitize_filename(filename) == expected


class TestDatetimeSerialization:
    def test_naive_values_are_utc(self):
        value = serialize_datetime(datetime(2026, 1, 1, 12, 0))
        assert deserialize_datetime(value) == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_offsets_normalized(self):
        local = datetime(2026, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert serialize_datetime(local) == "2026-01-01T12:00:00+00:00"

    def test_none(self):
        assert serialize_datetime(None) is None
        assert deserialize_datetime(None) is None
