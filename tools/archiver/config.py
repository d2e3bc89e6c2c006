"""Configuration and environment settings for the archiver."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class DvachConfig:
    """2ch API configuration.  ``max_retries=1`` means a single attempt."""
    api_base: str = "https://2ch.hk"
    timeout: float = 30.0
    max_retries: int = 1
    user_agent: str = "archiver/1.0"

    @classmethod
    def from_env(cls) -> DvachConfig:
        return cls(
            api_base=os.getenv("DVACH_API_BASE", "https://2ch.hk"),
            timeout=float(os.getenv("DVACH_TIMEOUT", "30")),
            max_retries=int(os.getenv("DVACH_MAX_RETRIES", "1")),
        )


@dataclass(frozen=True)
class DiskConfig:
    root: str = "."

    @classmethod
    def from_env(cls) -> DiskConfig:
        return cls(root=os.getenv("ARCHIVE_ROOT", "."))


@dataclass(frozen=True)
class S3Config:
    endpoint: str = "http://localhost:9000"
    access_key: str = "minioadmin"
    secret_key: str = "minioadmin"
    bucket: str = "archiver"
    prefix: str = "attachments/"
    use_ssl: bool = False

    @classmethod
    def from_env(cls) -> S3Config:
        return cls(
            endpoint=os.getenv("S3_ENDPOINT", "http://localhost:9000"),
            access_key=os.getenv("S3_ACCESS_KEY", "minioadmin"),
            secret_key=os.getenv("S3_SECRET_KEY", "minioadmin"),
            bucket=os.getenv("S3_BUCKET", "archiver"),
            prefix=os.getenv("S3_PREFIX", "attachments/"),
            use_ssl=os.getenv("S3_USE_SSL", "false").lower() == "true",
        )


@dataclass
class ArchiverConfig:
    api: DvachConfig = field(default_factory=DvachConfig.from_env)
    disk: DiskConfig = field(default_factory=DiskConfig.from_env)
    s3: S3Config = field(default_factory=S3Config.from_env)
    storage_driver: str = "disk"  # "disk" or "s3", attachments only
    max_concurrency: int = 8
