"""Core archiving wiring – API → SyncEngine → stores, driven by the Scheduler."""

from __future__ import annotations

import logging

from .api import DvachAPI
from .config import ArchiverConfig
from .db import ThreadStore
from .scheduler import Scheduler
from .storage import make_content_store
from .sync import SyncEngine

logger = logging.getLogger("archiver.core")


class Archiver:
    """Owns the API client and both stores for one archive root."""

    def __init__(self, cfg: ArchiverConfig | None = None, *, api: DvachAPI | None = None, show_progress: bool = False) -> None:
        self.cfg = cfg or ArchiverConfig()
        self.api = api or DvachAPI(self.cfg.api)
        self.threads = ThreadStore(self.cfg.disk.root)
        self.content = make_content_store(self.cfg)
        self.engine = SyncEngine(self.api, self.threads, self.content)
        self.scheduler = Scheduler(
            self.engine,
            self.api,
            max_concurrency=self.cfg.max_concurrency,
            show_progress=show_progress,
        )
        logger.debug("Archive root %s, attachments on %s", self.cfg.disk.root, self.cfg.storage_driver)

    async def aclose(self) -> None:
        await self.api.aclose()

    async def __aenter__(self) -> Archiver:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
