"""Typed view over config.yaml plus environment overrides."""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field

from fluxpense.logger import get_logger
from fluxpense.utils.load_config import load_config_file

logger = get_logger(__name__)

MB = 1024 * 1024


class UploadLimits(BaseModel):
    receipt: int = 10 * MB
    profile_image: int = 5 * MB

    def ceiling_for(self, purpose: str) -> int:
        if purpose not in ("receipt", "profile_image"):
            raise ValueError(f"Unknown upload purpose: {purpose}")
        return getattr(self, purpose)


class ExtractionSettings(BaseModel):
    backend: str = "http"
    endpoint_url: Optional[str] = None
    api_key: Optional[str] = None
    min_confidence: float = 0.3
    timeout_seconds: float = 30.0
    ocr_backend: str = "rapidocr"


class StorageSettings(BaseModel):
    bucket_name: str = "fluxpense-receipts"
    prefix: str = ""


class CameraSettings(BaseModel):
    facing_mode: str = "environment"
    devices: Dict[str, int] = Field(default_factory=lambda: {"environment": 0, "user": 0})
    width: int = 1920
    height: int = 1080
    jpeg_quality: int = 80


class LLMSettings(BaseModel):
    extraction_model: str = "gpt-4o-mini"
    temperature: float = 0.0
    base_url: Optional[str] = None


class Settings(BaseModel):
    upload_limits: UploadLimits = Field(default_factory=UploadLimits)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    camera: CameraSettings = Field(default_factory=CameraSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    database_url: Optional[str] = None


def load_settings(file_path: Optional[str] = None) -> Settings:
    """
    Builds Settings from config.yaml (missing file -> defaults) and applies
    environment overrides for secrets and deployment-specific values.
    """
    try:
        config = load_config_file(file_path)
    except FileNotFoundError:
        logger.warning("Config file not found, using defaults.")
        config = {}

    settings = Settings.model_validate(config)

    env_overrides = {
        "FLUXPENSE_EXTRACTION_URL": ("extraction", "endpoint_url"),
        "FLUXPENSE_EXTRACTION_KEY": ("extraction", "api_key"),
        "GCS_BUCKET_NAME": ("storage", "bucket_name"),
    }
    for env_name, (section, field) in env_overrides.items():
        value = os.getenv(env_name)
        if value:
            setattr(getattr(settings, section), field, value)

    settings.database_url = os.getenv("FLUXPENSE_DB_URL") or settings.database_url
    return settings
