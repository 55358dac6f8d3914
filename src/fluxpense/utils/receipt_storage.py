"""Receipt image storage in Google Cloud Storage."""

from __future__ import annotations

import os
import sys
from functools import lru_cache
from typing import Optional, cast

from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage
import google.auth
from google.auth.credentials import Credentials

from fluxpense.exception import CustomException
from fluxpense.logger import get_logger
from fluxpense.settings import StorageSettings

logger = get_logger(__name__)

PUBLIC_URL_ROOT = "https://storage.googleapis.com"


def _get_credentials() -> tuple[Optional[Credentials], Optional[str]]:
    scopes = ["https://www.googleapis.com/auth/devstorage.read_write"]
    try:
        creds, project = google.auth.default(scopes=scopes)
        creds = cast(Credentials, creds)
        project = cast(Optional[str], project)
        return creds, project
    except Exception as exc:
        logger.warning("Falling back to implicit storage credentials: %s", exc)
        return None, None


@lru_cache(maxsize=1)
def _get_storage_client() -> storage.Client:
    credentials, _ = _get_credentials()
    project = os.getenv("GCP_PROJECT_ID")
    if credentials:
        if project:
            return storage.Client(credentials=credentials, project=project)
        return storage.Client(credentials=credentials)
    if project:
        return storage.Client(project=project)
    return storage.Client()


class ReceiptStorage:
    """
    Object storage contract used by the persistence coordinator:
    upload(path, data) -> path and get_public_url(path) -> url.
    """

    def __init__(self, settings: Optional[StorageSettings] = None, client: Optional[storage.Client] = None):
        settings = settings or StorageSettings()
        if not settings.bucket_name:
            raise CustomException("GCS bucket is not configured")
        self.bucket_name = settings.bucket_name
        self.prefix = settings.prefix.strip("/")
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = _get_storage_client()
        return self._client

    def _blob_name(self, path: str) -> str:
        path = path.lstrip("/")
        return f"{self.prefix}/{path}" if self.prefix else path

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Uploads raw bytes and returns the stored object path (blob name)."""
        blob_name = self._blob_name(path)
        try:
            blob = self.client.bucket(self.bucket_name).blob(blob_name)
            upload_kwargs = {}
            if content_type:
                upload_kwargs["content_type"] = content_type
            blob.upload_from_string(data, **upload_kwargs)
            logger.info("Uploaded receipt image to gs://%s/%s", self.bucket_name, blob_name)
            return blob_name
        except (GoogleAPIError, OSError) as exc:
            logger.error("Failed to upload receipt image %s: %s", path, exc)
            raise CustomException(exc, sys)

    def get_public_url(self, path: str) -> str:
        """Public HTTPS URL of a stored object."""
        return f"{PUBLIC_URL_ROOT}/{self.bucket_name}/{path.lstrip('/')}"
