"""2ch API client – async HTTP fetcher for catalogues, threads and attachments."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from .config import DvachConfig
from .errors import AttachmentFetchError, FetchError
from .models import Catalogue, RemoteThread, ThreadPage

logger = logging.getLogger("archiver.api")


class Fetcher(Protocol):
    """What the sync engine and scheduler need from the remote service."""

    async def list_thread_ids(self, board: str) -> list[int]: ...

    async def fetch_thread(self, board: str, thread_id: int) -> RemoteThread: ...

    async def fetch_bytes(self, path: str) -> bytes: ...


class DvachAPI:
    """Thin wrapper around the 2ch JSON API."""

    def __init__(
        self,
        cfg: DvachConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cfg = cfg or DvachConfig()
        self._client = httpx.AsyncClient(
            base_url=self.cfg.api_base,
            timeout=self.cfg.timeout,
            headers={"User-Agent": self.cfg.user_agent, "Connection": "keep-alive"},
            follow_redirects=True,
            transport=transport,
        )

    async def _get(self, url: str, error: type[FetchError] = FetchError) -> httpx.Response:
        attempts = max(1, self.cfg.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                resp = await self._client.get(url)
                resp.raise_for_status()
                return resp
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                logger.warning("Attempt %d/%d failed for %s: HTTP %d", attempt, attempts, url, status)
                if attempt == attempts or status == 404:
                    raise error(f"HTTP {status} for {url}", url=url, status=status) from exc
            except httpx.TransportError as exc:
                logger.warning("Attempt %d/%d failed for %s: %s", attempt, attempts, url, exc)
                if attempt == attempts:
                    raise error(f"{type(exc).__name__} for {url}: {exc}", url=url) from exc
        raise error(f"no attempts made for {url}", url=url)  # unreachable

    async def _get_json(self, url: str) -> Any:
        resp = await self._get(url)
        try:
            return resp.json()
        except ValueError as exc:
            raise FetchError(f"Malformed JSON from {url}", url=url, status=resp.status_code) from exc

    # ── public API ───────────────────────────────────────────────

    async def list_thread_ids(self, board: str) -> list[int]:
        """Fetch the live thread numbers of a board from its catalogue."""
        url = f"/{board}/catalog.json"
        data = await self._get_json(url)
        try:
            catalogue = Catalogue.model_validate(data)
        except ValidationError as exc:
            raise FetchError(f"Malformed catalogue for /{board}/: {exc}", url=url) from exc
        logger.debug("Fetched catalogue /%s/ (%d threads)", board, len(catalogue.threads))
        return [t.num for t in catalogue.threads]

    async def fetch_thread(self, board: str, thread_id: int) -> RemoteThread:
        """Fetch a full thread (OP + all replies)."""
        url = f"/{board}/res/{thread_id}.json"
        data = await self._get_json(url)
        try:
            page = ThreadPage.model_validate(data)
        except ValidationError as exc:
            raise FetchError(f"Malformed thread /{board}/{thread_id}: {exc}", url=url) from exc
        logger.debug("Fetched thread /%s/%d", board, thread_id)
        return page.threads[0]

    async def fetch_bytes(self, path: str) -> bytes:
        """Download an attachment by its server-relative path."""
        url = "/" + path.lstrip("/")
        resp = await self._get(url, AttachmentFetchError)
        logger.debug("Fetched attachment %s (%d bytes)", path, len(resp.content))
        return resp.content

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> DvachAPI:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
