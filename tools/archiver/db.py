"""Thread store – one JSON snapshot per (board, thread) under ``boards/``."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .errors import InvalidBoardError, StoreReadError, StoreWriteError
from .models import ThreadSnapshot

logger = logging.getLogger("archiver.db")

_SNAPSHOT_NAME = re.compile(r"^(\d+)\.json$")


class ThreadStore:
    """Filesystem-backed snapshot storage for archived threads."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.dir = Path(root) / "boards"
        self.dir.mkdir(parents=True, exist_ok=True)

    def _board_dir(self, board: str) -> Path:
        if not board or board in (".", "..") or "/" in board or "\\" in board:
            raise InvalidBoardError(f"invalid board id: {board!r}")
        return self.dir / board

    def _path(self, board: str, thread_id: int) -> Path:
        return self._board_dir(board) / f"{thread_id}.json"

    # ── board operations ─────────────────────────────────────────

    def list_boards(self) -> list[str]:
        return sorted(p.name for p in self.dir.iterdir() if p.is_dir())

    def list_thread_ids(self, board: str) -> set[int] | None:
        """Every thread ever archived for the board, or None for an unknown board."""
        board_dir = self._board_dir(board)
        if not board_dir.is_dir():
            logger.debug("Board /%s/ does not exist in db", board)
            return None
        ids: set[int] = set()
        for entry in board_dir.iterdir():
            match = _SNAPSHOT_NAME.match(entry.name)
            if match:
                ids.add(int(match.group(1)))
        return ids

    # ── thread operations ────────────────────────────────────────

    def read(self, board: str, thread_id: int) -> ThreadSnapshot | None:
        path = self._path(board, thread_id)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            logger.debug("Thread /%s/%d does not exist in db", board, thread_id)
            return None
        except OSError as exc:
            raise StoreReadError(f"cannot read thread /{board}/{thread_id}: {exc}") from exc
        try:
            snapshot = ThreadSnapshot.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreReadError(f"corrupt snapshot {path}: {exc}") from exc
        logger.debug("Read thread /%s/%d from db", board, thread_id)
        return snapshot

    def write(self, board: str, snapshot: ThreadSnapshot) -> None:
        """Replace the stored snapshot; readers see either the old or the new file."""
        path = self._path(board, snapshot.id)
        payload = snapshot.model_dump_json(indent=2).encode("utf-8")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=f".{snapshot.id}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.error("Failed to write thread /%s/%d: %s", board, snapshot.id, exc)
            raise StoreWriteError(f"cannot write thread /{board}/{snapshot.id}: {exc}") from exc
        logger.debug("Wrote thread /%s/%d to db", board, snapshot.id)
