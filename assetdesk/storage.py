from __future__ import annotations

import logging
import secrets
import time
from pathlib import Path
from typing import Iterable, Mapping

from flask import Flask, current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)


class StorageError(ValueError):
    pass


class ObjectStorage:
    """Named buckets on the local filesystem with stable public URLs."""

    def __init__(
        self,
        root: str | Path,
        public_url: str,
        buckets: Iterable[str],
        allowed_extensions: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self.root = Path(root)
        self.public_base = public_url.rstrip("/")
        self.buckets = tuple(buckets)
        self.allowed_extensions = {
            bucket: {ext.lower() for ext in exts} for bucket, exts in (allowed_extensions or {}).items()
        }

    @classmethod
    def from_app(cls, app: Flask) -> "ObjectStorage":
        return cls(
            root=app.config["STORAGE_ROOT"],
            public_url=app.config["STORAGE_PUBLIC_URL"],
            buckets=app.config["STORAGE_BUCKETS"],
            allowed_extensions=app.config.get("UPLOAD_ALLOWED_EXTENSIONS"),
        )

    def bucket_path(self, bucket: str) -> Path:
        if bucket not in self.buckets:
            raise StorageError(f"Unknown storage bucket: {bucket}")
        path = self.root / bucket
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _extension(self, bucket: str, filename: str) -> str:
        safe_name = secure_filename(filename or "")
        ext = safe_name.rsplit(".", 1)[-1].lower() if "." in safe_name else ""
        allowed = self.allowed_extensions.get(bucket)
        if allowed is not None and ext not in allowed:
            raise StorageError(f"File type .{ext or '?'} is not accepted in {bucket}.")
        return ext

    def upload(self, bucket: str, file: FileStorage | None, prefix: str = "") -> str:
        """Store the file under a unique name and return its path inside the bucket."""
        if file is None or not file.filename:
            raise StorageError("No file was uploaded.")
        ext = self._extension(bucket, file.filename)
        stamp = int(time.time() * 1000)
        name = f"{stamp}-{secrets.token_hex(4)}"
        if prefix:
            name = f"{prefix}-{name}"
        object_path = f"{name}.{ext}" if ext else name
        if bucket == "company_assets":
            object_path = f"public/{object_path}"
        target = self.bucket_path(bucket) / object_path
        target.parent.mkdir(parents=True, exist_ok=True)
        file.save(target)
        logger.info("Stored %s in bucket %s", object_path, bucket)
        return object_path

    def public_url(self, bucket: str, object_path: str) -> str:
        return f"{self.public_base}/{bucket}/{object_path}"

    def resolve(self, bucket: str, object_path: str) -> Path:
        base = self.bucket_path(bucket).resolve()
        candidate = (base / object_path).resolve()
        if base not in candidate.parents:
            raise StorageError("Invalid object path.")
        return candidate


def get_storage() -> ObjectStorage:
    return current_app.extensions["object_storage"]
