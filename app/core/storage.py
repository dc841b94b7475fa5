import os
import tempfile
from pathlib import Path
from typing import Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from app.core.config import settings


class StorageError(OSError):
    """Raised when a storage backend cannot read or write an object."""


class StorageBackend(Protocol):
    def upload(
        self, file_content: bytes, folder: str, filename: str, content_type: str | None = None
    ) -> str:
        """Upload file and return the stored path/key."""
        ...

    def read(self, path: str) -> bytes:
        """Return the raw bytes stored under path/key."""
        ...

    def exists(self, path: str) -> bool:
        """Check if a file exists."""
        ...


class LocalStorage:
    """Local filesystem storage for development.

    Uploads are written to a temporary file in the target folder and then
    renamed over the final name, so readers never observe a partial file.
    """

    def __init__(self, base_dir: str) -> None:
        self._base_dir = Path(base_dir)

    def upload(
        self, file_content: bytes, folder: str, filename: str, content_type: str | None = None
    ) -> str:
        upload_dir = self._base_dir / folder
        upload_dir.mkdir(parents=True, exist_ok=True)
        file_path = upload_dir / filename
        fd, tmp_name = tempfile.mkstemp(dir=upload_dir, prefix=f".{filename}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(file_content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, file_path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return f"{folder}/{filename}"

    def _resolve_safe_path(self, path: str) -> Path:
        """Resolve path and validate it stays within base directory."""
        base_resolved = self._base_dir.resolve()
        full_path = (self._base_dir / path).resolve()
        if (
            not str(full_path).startswith(str(base_resolved) + os.sep)
            and full_path != base_resolved
        ):
            raise ValueError(f"Path traversal attempt detected: {path}")
        return full_path

    def read(self, path: str) -> bytes:
        full_path = self._resolve_safe_path(path)
        try:
            return full_path.read_bytes()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {path}") from e

    def exists(self, path: str) -> bool:
        full_path = self._resolve_safe_path(path)
        return full_path.is_file()


class R2Storage:
    """Cloudflare R2 storage (S3-compatible) for production."""

    def __init__(self) -> None:
        self._client = boto3.client(
            "s3",
            endpoint_url=settings.r2_endpoint_url,
            aws_access_key_id=settings.R2_ACCESS_KEY_ID,
            aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
            config=BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "standard"},
            ),
            region_name="auto",
        )
        self._bucket = settings.R2_BUCKET_NAME

    def upload(
        self, file_content: bytes, folder: str, filename: str, content_type: str | None = None
    ) -> str:
        key = f"{folder}/{filename}"
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=file_content, **extra)
        except ClientError as e:
            raise StorageError(f"Upload failed for {key}: {e}") from e
        return key

    def read(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=path)
        except ClientError as e:
            raise StorageError(f"Object not found: {path}") from e
        body: bytes = response["Body"].read()
        return body

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=path)
            return True
        except ClientError:
            return False


def get_storage() -> StorageBackend:
    if settings.STORAGE_BACKEND == "r2":
        return R2Storage()
    return LocalStorage(settings.UPLOAD_DIR)
