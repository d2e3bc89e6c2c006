"""Polling scheduler – one-shot and repeating syncs of threads and boards."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .api import Fetcher
from .errors import ArchiverError, FetchError, ProtocolInvariantViolation
from .sync import SyncEngine, SyncResult

logger = logging.getLogger("archiver.scheduler")


@dataclass
class BoardSyncReport:
    board: str
    results: dict[int, SyncResult] = field(default_factory=dict)
    failures: dict[int, BaseException] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.results) + len(self.failures)

    def stats(self) -> dict[str, int]:
        return {
            "threads": len(self.results),
            "discovered": sum(r.discovered for r in self.results.values()),
            "posts": sum(r.added for r in self.results.values()),
            "deleted": sum(r.removed_flagged for r in self.results.values()),
            "attachments": sum(r.attachments for r in self.results.values()),
            "errors": len(self.failures) + sum(r.attachment_failures for r in self.results.values()),
        }


class Scheduler:
    """Fans thread syncs out over a board and repeats them on an interval."""

    def __init__(
        self,
        engine: SyncEngine,
        fetcher: Fetcher,
        *,
        max_concurrency: int = 8,
        show_progress: bool = False,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.engine = engine
        self.fetcher = fetcher
        self.max_concurrency = max_concurrency
        self.show_progress = show_progress

    # ── one-shot ─────────────────────────────────────────────────

    async def sync_thread_once(self, board: str, thread_id: int) -> SyncResult:
        return await self.engine.sync_thread(board, thread_id)

    async def sync_board_once(self, board: str) -> BoardSyncReport:
        """Sync every live thread of a board concurrently.

        A failing thread is logged and recorded in the report; it never cancels
        the others.  Raises FetchError only if the thread list itself fails.
        """
        thread_ids = list(dict.fromkeys(await self.fetcher.list_thread_ids(board)))
        logger.info("Fetched /%s/ catalogue with %d threads", board, len(thread_ids))

        report = BoardSyncReport(board)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            disable=not self.show_progress,
        ) as progress:
            task = progress.add_task(f"/{board}/ threads", total=len(thread_ids))

            async def unit(thread_id: int) -> SyncResult:
                async with semaphore:
                    try:
                        return await self.sync_thread_once(board, thread_id)
                    except ProtocolInvariantViolation:
                        logger.exception("Refusing to archive thread /%s/%d", board, thread_id)
                        raise
                    except ArchiverError as exc:
                        logger.error("Failed to dump thread /%s/%d: %s", board, thread_id, exc)
                        raise
                    except Exception:
                        logger.exception("Unexpected error dumping thread /%s/%d", board, thread_id)
                        raise
                    finally:
                        progress.advance(task)

            outcomes = await asyncio.gather(*(unit(t) for t in thread_ids), return_exceptions=True)

        for thread_id, outcome in zip(thread_ids, outcomes):
            if isinstance(outcome, BaseException):
                report.failures[thread_id] = outcome
            else:
                report.results[thread_id] = outcome

        logger.info(
            "Board /%s/ dump complete: %d/%d threads, %d failed",
            board, len(report.results), report.total, len(report.failures),
        )
        return report

    # ── monitoring ───────────────────────────────────────────────

    @staticmethod
    async def _sleep(stop: asyncio.Event, interval: float) -> bool:
        """Wait out the poll interval; True if *stop* was set meanwhile."""
        if stop.is_set():
            return True
        try:
            await asyncio.wait_for(stop.wait(), timeout=max(interval, 0))
        except asyncio.TimeoutError:
            return False
        return True

    async def monitor_board(self, board: str, interval: float, stop: asyncio.Event | None = None) -> int:
        """Re-sync a board until *stop* is set.  Returns the number of polls."""
        stop = stop or asyncio.Event()
        polls = 0
        while not stop.is_set():
            try:
                await self.sync_board_once(board)
                logger.info("Dumped board /%s/", board)
            except FetchError as exc:
                logger.error("Failed to fetch catalogue /%s/: %s", board, exc)
            polls += 1
            if await self._sleep(stop, interval):
                break
        logger.info("Finished monitoring board /%s/", board)
        return polls

    async def monitor_thread(
        self,
        board: str,
        thread_id: int,
        interval: float,
        stop: asyncio.Event | None = None,
    ) -> int:
        """Re-sync one thread until it fails or *stop* is set.

        The first failure ends monitoring: it usually means the thread is gone.
        Returns the number of successful polls.
        """
        stop = stop or asyncio.Event()
        polls = 0
        while not stop.is_set():
            try:
                await self.sync_thread_once(board, thread_id)
            except ProtocolInvariantViolation:
                logger.exception("Refusing to archive thread /%s/%d", board, thread_id)
                break
            except ArchiverError as exc:
                logger.info("Failed to dump thread /%s/%d: %s", board, thread_id, exc)
                break
            polls += 1
            if await self._sleep(stop, interval):
                break
        logger.info("Finished monitoring thread /%s/%d", board, thread_id)
        return polls
