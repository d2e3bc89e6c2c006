"""Copy archived threads and their attachments from one archive to another."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .db import ThreadStore
from .errors import StoreReadError
from .storage import ContentStore, extension_from_path

logger = logging.getLogger("archiver.replicate")


@dataclass(frozen=True)
class Archive:
    threads: ThreadStore
    content: ContentStore


@dataclass
class CopyReport:
    threads: int = 0
    attachments: int = 0
    missing: list[str] = field(default_factory=list)

    def merge(self, other: CopyReport) -> None:
        self.threads += other.threads
        self.attachments += other.attachments
        self.missing.extend(other.missing)


def copy_thread(src: Archive, dst: Archive, board: str, thread_id: int) -> CopyReport:
    """Copy one thread.  Blobs go first so the copied snapshot never dangles."""
    snapshot = src.threads.read(board, thread_id)
    if snapshot is None:
        raise StoreReadError(f"thread /{board}/{thread_id} is not in the source archive")

    report = CopyReport()
    for cid in snapshot.content_ids():
        if dst.content.exists(cid):
            report.attachments += 1
            continue
        data = src.content.get(cid)
        if data is None:
            logger.warning("Attachment %s of /%s/%d missing from source", cid, board, thread_id)
            report.missing.append(cid)
            continue
        copied = dst.content.put(data, extension_from_path(cid))
        if copied != cid:
            logger.warning("Attachment %s does not match its content (stored as %s)", cid, copied)
        report.attachments += 1

    dst.threads.write(board, snapshot)
    report.threads = 1
    logger.info("Copied thread /%s/%d (%d attachments)", board, thread_id, report.attachments)
    return report


def copy_board(src: Archive, dst: Archive, board: str) -> CopyReport:
    thread_ids = src.threads.list_thread_ids(board)
    if thread_ids is None:
        raise StoreReadError(f"board /{board}/ is not in the source archive")

    report = CopyReport()
    for thread_id in sorted(thread_ids):
        report.merge(copy_thread(src, dst, board, thread_id))
    logger.info("Copied board /%s/: %d threads, %d attachments", board, report.threads, report.attachments)
    return report
