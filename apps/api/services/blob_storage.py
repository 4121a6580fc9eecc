"""
Storage for submission evidence files.

Callers only see put(content, filename, content_type) -> url; the backend is
chosen by UPLOAD_BACKEND (local disk served under /uploads, or S3).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import re
import time
from pathlib import Path
from typing import Optional
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from core.config import settings
from core.exceptions import APIException, ValidationError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: Optional[str]) -> str:
    name = Path(filename or "upload").name
    name = _UNSAFE_CHARS.sub("_", name.replace(" ", "_")).strip("._")
    return name or "upload"


def object_key(filename: Optional[str], folder: str = "submissions") -> str:
    return f"{folder}/{int(time.time() * 1000)}-{uuid4().hex[:8]}-{safe_filename(filename)}"


class BlobStorage(ABC):
    @abstractmethod
    def put(self, content: bytes, *, filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
        """Store bytes and return a URL the client can fetch."""


class LocalBlobStorage(BlobStorage):
    def __init__(self, root: str | Path, url_prefix: str = "/uploads") -> None:
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def put(self, content: bytes, *, filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
        key = object_key(filename)
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return f"{self.url_prefix}/{key}"


class S3BlobStorage(BlobStorage):
    def __init__(self, bucket: str, region: Optional[str] = None, client=None) -> None:
        self.bucket = bucket
        self.region = region
        self.client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.AWS_ACCESS_KEY,
            aws_secret_access_key=settings.AWS_SECRET_KEY,
            region_name=region,
        )

    def url_for(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def put(self, content: bytes, *, filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
        key = object_key(filename)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 upload failed for %s: %s", key, str(e))
            raise APIException(status_code=502, detail="Failed to store uploaded file", error_code="UPLOAD_FAILED")
        return self.url_for(key)


def check_upload_size(content: bytes) -> None:
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"File too large (max {settings.MAX_UPLOAD_BYTES} bytes)",
            field="file",
        )


def get_blob_storage() -> BlobStorage:
    """FastAPI dependency."""
    if settings.UPLOAD_BACKEND == "s3":
        if not settings.S3_BUCKET_NAME:
            raise APIException(status_code=503, detail="S3 upload backend not configured", error_code="UPLOAD_UNAVAILABLE")
        return S3BlobStorage(settings.S3_BUCKET_NAME, settings.S3_REGION)
    return LocalBlobStorage(settings.UPLOAD_DIR, settings.UPLOAD_URL_PREFIX)
