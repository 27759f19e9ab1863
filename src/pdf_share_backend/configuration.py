from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field

DEFAULTS_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"

# Environment variable -> dotted config key.
ENV_OVERRIDES: Dict[str, str] = {
    "PDF_SHARE_STORAGE_BACKEND": "storage.backend",
    "PDF_SHARE_STORAGE_ROOT": "storage.root",
    "PDF_SHARE_S3_BUCKET": "storage.s3_bucket",
    "S3_BUCKET_NAME": "storage.s3_bucket",
    "PDF_SHARE_S3_PREFIX": "storage.s3_prefix",
    "PDF_SHARE_DB_PATH": "database.path",
    "PDF_SHARE_MAX_UPLOAD_BYTES": "uploads.max_bytes",
    "PDF_SHARE_MAX_UPLOAD_FILES": "uploads.max_files",
    "PDF_SHARE_TRANSFORM_TIMEOUT": "transforms.timeout_seconds",
    "PDF_SHARE_ALLOW_ANONYMOUS_DEACTIVATION": "shares.allow_anonymous_deactivation",
    "PDF_SHARE_LOG_LEVEL": "logging.level",
}


class StorageSettings(BaseModel):
    backend: Literal["local", "s3"] = "local"
    root: Path = Path("data/artifacts")
    s3_bucket: str = ""
    s3_prefix: str = "documents/"


class DatabaseSettings(BaseModel):
    path: Path = Path("data/pdf_share.db")


class UploadSettings(BaseModel):
    max_bytes: int = Field(default=50 * 1024 * 1024, gt=0)
    max_files: int = Field(default=10, gt=0)


class TransformSettings(BaseModel):
    timeout_seconds: float = Field(default=120.0, gt=0)


class ShareSettings(BaseModel):
    allow_anonymous_deactivation: bool = False


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseModel):
    storage: StorageSettings = Field(default_factory=StorageSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    uploads: UploadSettings = Field(default_factory=UploadSettings)
    transforms: TransformSettings = Field(default_factory=TransformSettings)
    shares: ShareSettings = Field(default_factory=ShareSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not DEFAULTS_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {DEFAULTS_PATH}")
    return OmegaConf.load(DEFAULTS_PATH)


def _env_config() -> DictConfig:
    config = OmegaConf.create({})
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            OmegaConf.update(config, key, value, force_add=True)
    return config


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Merge, in increasing priority: packaged defaults, the YAML file named by
    ``PDF_SHARE_CONFIG``, ``PDF_SHARE_*`` environment variables and explicit
    overrides.
    """
    load_dotenv()
    base = OmegaConf.create(OmegaConf.to_container(_load_default_config(), resolve=False))
    layers = [base]

    user_config_path = os.environ.get("PDF_SHARE_CONFIG")
    if user_config_path:
        layers.append(OmegaConf.load(user_config_path))

    layers.append(_env_config())
    layers.append(OmegaConf.create(overrides or {}))
    return DictConfig(OmegaConf.merge(*layers))


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    container = OmegaConf.to_container(make_runtime_config(overrides), resolve=True)
    return Settings.model_validate(container)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(level=settings.logging.level.upper(), format=settings.logging.format)
