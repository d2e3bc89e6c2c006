"""Attachment storage – content-addressed blobs on disk or in MinIO/S3."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import Protocol
from urllib.parse import urlsplit

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import ArchiverConfig, S3Config
from .errors import StoreReadError, StoreWriteError

logger = logging.getLogger("archiver.storage")

# Map file extension → MIME type
MIME_MAP: dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webm": "video/webm",
    "mp4": "video/mp4",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
}


# ── helpers ──────────────────────────────────────────────────────


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def content_id(data: bytes, extension: str) -> str:
    """``<sha256 hex>.<extension>``; an empty extension leaves the trailing dot."""
    digest = sha256(data)
    return f"{digest}.{extension}"


def extension_from_path(path: str) -> str:
    """File extension of a server path or URL, without the dot ("" if none)."""
    return PurePosixPath(urlsplit(path).path).suffix.lstrip(".")


def guess_mime(cid: str) -> str:
    return MIME_MAP.get(extension_from_path(cid).lower(), "application/octet-stream")


class ContentStore(Protocol):
    def put(self, data: bytes, extension: str) -> str: ...

    def get(self, cid: str) -> bytes | None: ...

    def exists(self, cid: str) -> bool: ...


# ── disk ─────────────────────────────────────────────────────────


class DiskContentStore:
    """Flat ``attachments/`` directory of blobs named by content id."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.dir = Path(root) / "attachments"
        self.dir.mkdir(parents=True, exist_ok=True)

    def _path(self, cid: str) -> Path:
        if not cid or "/" in cid or "\\" in cid or cid.startswith("."):
            raise ValueError(f"invalid content id: {cid!r}")
        return self.dir / cid

    def exists(self, cid: str) -> bool:
        return self._path(cid).is_file()

    def put(self, data: bytes, extension: str) -> str:
        cid = content_id(data, extension)
        target = self._path(cid)
        if target.exists():
            logger.debug("Attachment %s already stored", cid)
            return cid
        # Two writers of the same blob may both get here; both rename identical bytes.
        try:
            fd, tmp = tempfile.mkstemp(prefix=f".{cid}.", suffix=".tmp", dir=self.dir)
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp, target)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.error("Failed to write attachment %s: %s", cid, exc)
            raise StoreWriteError(f"cannot write attachment {cid}: {exc}") from exc
        logger.debug("Stored attachment %s (%d bytes)", cid, len(data))
        return cid

    def get(self, cid: str) -> bytes | None:
        path = self._path(cid)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            logger.debug("Attachment %s not in store", cid)
            return None
        except OSError as exc:
            raise StoreReadError(f"cannot read attachment {cid}: {exc}") from exc


# ── MinIO / S3 ───────────────────────────────────────────────────


class S3ContentStore:
    """Blobs as flat ``<prefix><content id>`` keys in a MinIO / S3 bucket."""

    def __init__(self, cfg: S3Config | None = None, *, client: object | None = None) -> None:
        self.cfg = cfg or S3Config.from_env()
        self._s3 = client or boto3.client(
            "s3",
            endpoint_url=self.cfg.endpoint,
            aws_access_key_id=self.cfg.access_key,
            aws_secret_access_key=self.cfg.secret_key,
            config=BotoConfig(signature_version="s3v4"),
            use_ssl=self.cfg.use_ssl,
        )
        self._ensure_bucket()

    def _ensure_bucket(self) -> None:
        try:
            self._s3.head_bucket(Bucket=self.cfg.bucket)
        except (ClientError, BotoCoreError):
            try:
                self._s3.create_bucket(Bucket=self.cfg.bucket)
                logger.info("Created bucket: %s", self.cfg.bucket)
            except (ClientError, BotoCoreError) as exc:
                logger.warning("Could not ensure bucket %s exists: %s", self.cfg.bucket, exc)

    def _key(self, cid: str) -> str:
        return f"{self.cfg.prefix}{cid}"

    def exists(self, cid: str) -> bool:
        try:
            self._s3.head_object(Bucket=self.cfg.bucket, Key=self._key(cid))
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StoreReadError(f"cannot stat attachment {cid}: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreReadError(f"cannot stat attachment {cid}: {exc}") from exc
        return True

    def put(self, data: bytes, extension: str) -> str:
        cid = content_id(data, extension)
        try:
            stored = self.exists(cid)
        except StoreReadError as exc:
            logger.error("Failed to check attachment %s: %s", cid, exc)
            raise StoreWriteError(f"cannot upload attachment {cid}: {exc}") from exc
        if stored:
            logger.debug("Attachment %s already stored", cid)
            return cid
        try:
            self._s3.put_object(
                Bucket=self.cfg.bucket,
                Key=self._key(cid),
                Body=data,
                ContentType=guess_mime(cid),
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to upload attachment %s: %s", cid, exc)
            raise StoreWriteError(f"cannot upload attachment {cid}: {exc}") from exc
        logger.debug("Uploaded attachment %s (%d bytes)", cid, len(data))
        return cid

    def get(self, cid: str) -> bytes | None:
        try:
            obj = self._s3.get_object(Bucket=self.cfg.bucket, Key=self._key(cid))
            return obj["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                logger.debug("Attachment %s not in bucket", cid)
                return None
            raise StoreReadError(f"cannot download attachment {cid}: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreReadError(f"cannot download attachment {cid}: {exc}") from exc


def make_content_store(cfg: ArchiverConfig) -> ContentStore:
    if cfg.storage_driver == "disk":
        return DiskContentStore(cfg.disk.root)
    if cfg.storage_driver == "s3":
        return S3ContentStore(cfg.s3)
    raise ValueError(f"unknown storage driver: {cfg.storage_driver!r}")
