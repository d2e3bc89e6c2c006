"""Per-thread reconciliation – merge a fetched thread into its stored snapshot."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from operator import attrgetter

from .api import Fetcher
from .db import ThreadStore
from .errors import FetchError, ProtocolInvariantViolation
from .models import Attachment, Post, RemotePost, ThreadSnapshot
from .storage import ContentStore, extension_from_path

logger = logging.getLogger("archiver.sync")


@dataclass(frozen=True)
class SyncResult:
    board: str
    thread_id: int
    discovered: bool
    added: int
    removed_flagged: int
    attachments: int = 0
    attachment_failures: int = 0

    @property
    def changed(self) -> bool:
        return self.discovered or bool(self.added or self.removed_flagged)


def diff_post_ids(old: Iterable[int], new: Iterable[int]) -> tuple[set[int], set[int]]:
    """Return ``(removed, added)``: ids only in *old*, ids only in *new*."""
    o, n = set(old), set(new)
    return o - n, n - o


def origin_flag(value: int, *, board: str, thread_id: int, post_id: int) -> bool:
    if value == 0:
        return False
    if value == 1:
        return True
    raise ProtocolInvariantViolation(
        f"post /{board}/{thread_id}#{post_id}: unknown op marker {value!r} (expected 0 or 1)"
    )


class SyncEngine:
    """Reconciles the stored snapshot of one thread with the live thread."""

    def __init__(self, fetcher: Fetcher, threads: ThreadStore, content: ContentStore) -> None:
        self.fetcher = fetcher
        self.threads = threads
        self.content = content

    # ── attachments ──────────────────────────────────────────────

    async def _dump_files(self, board: str, thread_id: int, post: RemotePost) -> tuple[list[Attachment], int]:
        """Fetch and store a post's files.  A file that cannot be fetched is skipped."""
        attachments: list[Attachment] = []
        failures = 0
        for file in post.files or []:
            try:
                data = await self.fetcher.fetch_bytes(file.path)
            except FetchError as exc:
                logger.error(
                    "Failed to dump file %s of post /%s/%d#%d: %s",
                    file.path, board, thread_id, post.num, exc,
                )
                failures += 1
                continue
            cid = self.content.put(data, extension_from_path(file.path))
            attachments.append(Attachment(content_id=cid, name=file.name))
        return attachments, failures

    # ── post mapping ─────────────────────────────────────────────

    async def _map_post(self, board: str, thread_id: int, post: RemotePost) -> tuple[Post, int]:
        is_op = origin_flag(post.op, board=board, thread_id=thread_id, post_id=post.num)
        attachments, failures = await self._dump_files(board, thread_id, post)
        return (
            Post(
                id=post.num,
                timestamp=post.timestamp,
                name=post.name,
                email=post.email,
                subject=post.subject,
                message=post.comment,
                is_op=is_op,
                attachments=attachments,
                deleted=False,
            ),
            failures,
        )

    # ── thread sync ──────────────────────────────────────────────

    async def sync_thread(self, board: str, thread_id: int) -> SyncResult:
        """Fetch a thread, flag vanished posts, append new ones and persist.

        Raises FetchError if the thread cannot be fetched (nothing is written),
        ProtocolInvariantViolation on an unexpected payload and StoreError when
        the archive cannot be read or written.
        """
        fetched = await self.fetcher.fetch_thread(board, thread_id)

        loaded = self.threads.read(board, thread_id)
        discovered = loaded is None
        snapshot = loaded if loaded is not None else ThreadSnapshot(id=thread_id)
        if discovered:
            logger.info("Discovered new thread /%s/%d with %d posts", board, thread_id, len(fetched.posts))

        removed, added = diff_post_ids(snapshot.post_ids(), (p.num for p in fetched.posts))
        # Posts flagged on an earlier poll stay absent; they need no rewrite.
        to_flag = [p for p in snapshot.posts if p.id in removed and not p.deleted]

        if not discovered and not to_flag and not added:
            logger.info("Nothing new in thread /%s/%d", board, thread_id)
            return SyncResult(board, thread_id, discovered=False, added=0, removed_flagged=0)

        if not discovered and added:
            logger.info("Thread /%s/%d - %d new posts", board, thread_id, len(added))
        if to_flag:
            logger.warning("Thread /%s/%d - %d deleted posts", board, thread_id, len(to_flag))

        for post in to_flag:
            post.deleted = True

        new_posts: list[Post] = []
        failures = 0
        seen: set[int] = set()
        for remote in sorted(fetched.posts, key=attrgetter("num")):
            if remote.num not in added or remote.num in seen:
                continue
            seen.add(remote.num)
            post, failed = await self._map_post(board, thread_id, remote)
            new_posts.append(post)
            failures += failed

        snapshot.posts.extend(new_posts)
        # New ids normally exceed every stored id, so this is a no-op reorder.
        snapshot.posts.sort(key=attrgetter("id"))

        self.threads.write(board, snapshot)
        logger.info("Dumped thread /%s/%d", board, thread_id)
        return SyncResult(
            board,
            thread_id,
            discovered=discovered,
            added=len(new_posts),
            removed_flagged=len(to_flag),
            attachments=sum(len(p.attachments) for p in new_posts),
            attachment_failures=failures,
        )
