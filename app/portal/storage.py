from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from werkzeug.utils import secure_filename

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_UPLOAD_TYPES = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def signed_url(self, key: str, *, expires_in: int = 3600) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Storage key escapes root: {key}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> None:
        p = self._path(key)
        if p.exists():
            p.unlink()

    def signed_url(self, key: str, *, expires_in: int = 3600) -> str:
        # Served through the authenticated /api/files route in local mode.
        return f"/api/files/{key.lstrip('/')}"


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        import boto3

        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    def delete(self, key: str) -> None:
        self._client().delete_object(Bucket=self.bucket, Key=key)

    def signed_url(self, key: str, *, expires_in: int = 3600) -> str:
        return self._client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    # default local
    root = Path(config.get("STORAGE_LOCAL_ROOT") or (Path(os.getcwd()) / "storage"))
    return LocalStorage(root=root)


def validate_upload(filename: str | None, content_type: str | None, data: bytes) -> str:
    """
    Check an uploaded document against the size and type limits. Returns the sanitized filename.
    Raises ValueError with a user-facing message.
    """
    if not data:
        raise ValueError("No file provided.")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValueError("File size exceeds 10MB limit.")
    if (content_type or "").lower() not in ALLOWED_UPLOAD_TYPES:
        raise ValueError("Invalid file type. Please upload a PDF, image, or Word document.")
    fn = secure_filename(filename or "")
    if not fn:
        raise ValueError("Invalid filename.")
    return fn


def build_key(prefix: str, filename: str) -> str:
    """Unique storage key under prefix, e.g. 'medical-history/20260101-ab12cd34-report.pdf'."""
    stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
    return f"{prefix.strip('/')}/{stamp}-{uuid.uuid4().hex[:8]}-{filename}"


def store_upload(
    storage: Storage, *, prefix: str, filename: str | None, content_type: str | None, data: bytes
) -> dict[str, str]:
    """Validate and store an uploaded document; returns its key, sanitized name and a URL to fetch it."""
    name = validate_upload(filename, content_type, data)
    key = build_key(prefix, name)
    storage.put_bytes(key, data, content_type=content_type)
    return {"key": key, "name": name, "url": storage.signed_url(key)}
