"""Record types – the 2ch JSON payloads and the persisted archive format."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


# ── remote payloads ─────────────────────────────────────────────


class _Remote(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CatalogueThread(_Remote):
    num: int


class Catalogue(_Remote):
    """``/<board>/catalog.json`` – only the thread numbers are used."""
    threads: list[CatalogueThread]


class RemoteFile(_Remote):
    path: str
    name: str = ""


class RemotePost(_Remote):
    num: int
    timestamp: int = 0
    name: str = ""
    email: str = ""
    subject: str = ""
    comment: str = ""
    op: int = 0  # 0/1, validated by the sync engine
    files: list[RemoteFile] | None = None


class RemoteThread(_Remote):
    posts: list[RemotePost]


class ThreadPage(_Remote):
    """``/<board>/res/<id>.json`` – the thread sits at ``threads[0]``."""
    threads: list[RemoteThread] = Field(min_length=1)


# ── persisted archive ───────────────────────────────────────────


class Attachment(BaseModel):
    content_id: str
    name: str


class Post(BaseModel):
    id: int
    timestamp: int
    name: str
    email: str
    subject: str
    message: str
    is_op: bool
    attachments: list[Attachment] = Field(default_factory=list)
    deleted: bool = False


class ThreadSnapshot(BaseModel):
    id: int
    posts: list[Post] = Field(default_factory=list)

    def post_ids(self) -> set[int]:
        return {post.id for post in self.posts}

    def content_ids(self) -> list[str]:
        """Every attachment referenced by the thread, in post order, without repeats."""
        seen: dict[str, None] = {}
        for post in self.posts:
            for attachment in post.attachments:
                seen.setdefault(attachment.content_id)
        return list(seen)
