"""Shared pytest fixtures and an in-memory fetcher."""
from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from botocore.exceptions import EndpointConnectionError

from archiver.db import ThreadStore
from archiver.errors import AttachmentFetchError, FetchError
from archiver.models import RemoteFile, RemotePost, RemoteThread
from archiver.storage import DiskContentStore
from archiver.sync import SyncEngine


def remote_post(num: int, *, op: int = 0, files: list[tuple[str, str]] | None = None, **fields: object) -> RemotePost:
    return RemotePost(
        num=num,
        timestamp=fields.pop("timestamp", 1_700_000_000 + num),
        name=fields.pop("name", "Аноним"),
        comment=fields.pop("comment", f"post {num}"),
        op=op,
        files=[RemoteFile(path=p, name=n) for p, n in files] if files is not None else None,
        **fields,
    )


class FakeFetcher:
    """Serves boards, threads and files from dicts; missing entries fail like a 404."""

    def __init__(self) -> None:
        self.boards: dict[str, list[int]] = {}
        self.threads: dict[tuple[str, int], list[RemotePost]] = {}
        self.files: dict[str, bytes] = {}
        self.byte_requests: list[str] = []
        self.active = 0
        self.peak = 0

    def put_thread(self, board: str, thread_id: int, posts: list[RemotePost]) -> None:
        self.threads[(board, thread_id)] = posts

    async def list_thread_ids(self, board: str) -> list[int]:
        if board not in self.boards:
            raise FetchError(f"HTTP 404 for /{board}/catalog.json", status=404)
        return list(self.boards[board])

    async def fetch_thread(self, board: str, thread_id: int) -> RemoteThread:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0)
            posts = self.threads.get((board, thread_id))
            if posts is None:
                raise FetchError(f"HTTP 404 for /{board}/res/{thread_id}.json", status=404)
            return RemoteThread(posts=posts)
        finally:
            self.active -= 1

    async def fetch_bytes(self, path: str) -> bytes:
        self.byte_requests.append(path)
        if path not in self.files:
            raise AttachmentFetchError(f"HTTP 404 for /{path}", status=404)
        return self.files[path]


class UnreachableS3:
    """boto3 S3 client stand-in for a MinIO endpoint that refuses connections."""

    endpoint_url = "http://localhost:9000"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def _refuse(self, operation: str) -> None:
        self.calls.append(operation)
        raise EndpointConnectionError(endpoint_url=self.endpoint_url)

    def head_bucket(self, **kwargs: object) -> None:
        self._refuse("head_bucket")

    def create_bucket(self, **kwargs: object) -> None:
        self._refuse("create_bucket")

    def head_object(self, **kwargs: object) -> None:
        self._refuse("head_object")

    def put_object(self, **kwargs: object) -> None:
        self._refuse("put_object")

    def get_object(self, **kwargs: object) -> None:
        self._refuse("get_object")


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def thread_store(tmp_path: Path) -> ThreadStore:
    return ThreadStore(tmp_path)


@pytest.fixture
def content_store(tmp_path: Path) -> DiskContentStore:
    return DiskContentStore(tmp_path)


@pytest.fixture
def engine(fetcher: FakeFetcher, thread_store: ThreadStore, content_store: DiskContentStore) -> SyncEngine:
    return SyncEngine(fetcher, thread_store, content_store)
