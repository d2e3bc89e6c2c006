import hashlib
from pathlib import Path

import pytest

from archiver.db import ThreadStore
from archiver.errors import FetchError, ProtocolInvariantViolation
from archiver.storage import DiskContentStore
from archiver.sync import SyncEngine, diff_post_ids, origin_flag

from conftest import FakeFetcher, remote_post


def test_diff_post_ids() -> None:
    removed, added = diff_post_ids([1, 2, 3], [2, 3, 4])
    assert removed == {1}
    assert added == {4}


def test_origin_flag() -> None:
    assert origin_flag(1, board="b", thread_id=1, post_id=1) is True
    assert origin_flag(0, board="b", thread_id=1, post_id=2) is False
    with pytest.raises(ProtocolInvariantViolation):
        origin_flag(2, board="b", thread_id=1, post_id=3)


@pytest.mark.asyncio
async def test_first_sync_of_new_thread(engine: SyncEngine, fetcher: FakeFetcher, thread_store: ThreadStore) -> None:
    fetcher.put_thread("b", 100, [remote_post(100, op=1)])

    result = await engine.sync_thread("b", 100)

    assert result.discovered
    assert result.added == 1
    assert result.removed_flagged == 0
    snapshot = thread_store.read("b", 100)
    assert snapshot.id == 100
    [post] = snapshot.posts
    assert post.id == 100
    assert post.is_op is True
    assert post.deleted is False
    assert post.attachments == []


@pytest.mark.asyncio
async def test_deleted_posts_flagged_and_new_posts_appended(
    engine: SyncEngine, fetcher: FakeFetcher, thread_store: ThreadStore
) -> None:
    fetcher.put_thread("b", 1, [remote_post(1, op=1), remote_post(2), remote_post(3)])
    await engine.sync_thread("b", 1)
    before = {p.id: p for p in thread_store.read("b", 1).posts}

    fetcher.put_thread("b", 1, [remote_post(2, comment="edited"), remote_post(3), remote_post(4)])
    result = await engine.sync_thread("b", 1)

    assert not result.discovered
    assert (result.added, result.removed_flagged) == (1, 1)
    posts = {p.id: p for p in thread_store.read("b", 1).posts}
    assert list(posts) == [1, 2, 3, 4]
    assert posts[1].deleted is True
    assert posts[2] == before[2]
    assert posts[2].message == "post 2"
    assert posts[3] == before[3]
    assert posts[4].deleted is False


@pytest.mark.asyncio
async def test_second_sync_without_changes_is_a_noop(
    engine: SyncEngine, fetcher: FakeFetcher, tmp_path: Path
) -> None:
    fetcher.files["/b/src/1/a.png"] = b"png-a"
    fetcher.put_thread("b", 1, [remote_post(1, op=1, files=[("/b/src/1/a.png", "a.png")]), remote_post(2)])
    await engine.sync_thread("b", 1)
    snapshot_file = tmp_path / "boards" / "b" / "1.json"
    first = snapshot_file.read_bytes()
    requests = len(fetcher.byte_requests)

    result = await engine.sync_thread("b", 1)

    assert (result.added, result.removed_flagged, result.attachments) == (0, 0, 0)
    assert not result.changed
    assert len(fetcher.byte_requests) == requests
    assert snapshot_file.read_bytes() == first


@pytest.mark.asyncio
async def test_already_flagged_posts_do_not_count_again(engine: SyncEngine, fetcher: FakeFetcher) -> None:
    fetcher.put_thread("b", 1, [remote_post(1, op=1), remote_post(2)])
    await engine.sync_thread("b", 1)
    fetcher.put_thread("b", 1, [remote_post(1, op=1)])

    assert (await engine.sync_thread("b", 1)).removed_flagged == 1
    assert (await engine.sync_thread("b", 1)).removed_flagged == 0


@pytest.mark.asyncio
async def test_archive_never_shrinks(engine: SyncEngine, fetcher: FakeFetcher, thread_store: ThreadStore) -> None:
    seen: set[int] = set()
    for ids in ([1, 2, 3], [1, 3], [], [1, 5], [6]):
        fetcher.put_thread("b", 1, [remote_post(i, op=int(i == 1)) for i in ids])
        await engine.sync_thread("b", 1)
        stored = [p.id for p in thread_store.read("b", 1).posts]
        assert set(stored) >= seen
        assert stored == sorted(stored)
        seen = set(stored)
    assert seen == {1, 2, 3, 5, 6}


@pytest.mark.asyncio
async def test_partial_attachment_failure_keeps_post(
    engine: SyncEngine, fetcher: FakeFetcher, thread_store: ThreadStore, content_store: DiskContentStore
) -> None:
    fetcher.files["/b/src/1/ok.jpg"] = b"jpeg bytes"
    fetcher.put_thread(
        "b", 1,
        [remote_post(1, op=1, files=[("/b/src/1/ok.jpg", "ok.jpg"), ("/b/src/1/gone.jpg", "gone.jpg")])],
    )

    result = await engine.sync_thread("b", 1)

    assert result.attachments == 1
    assert result.attachment_failures == 1
    [post] = thread_store.read("b", 1).posts
    [attachment] = post.attachments
    assert attachment.name == "ok.jpg"
    assert attachment.content_id == hashlib.sha256(b"jpeg bytes").hexdigest() + ".jpg"
    assert content_store.get(attachment.content_id) == b"jpeg bytes"


@pytest.mark.asyncio
async def test_identical_attachments_stored_once(
    engine: SyncEngine, fetcher: FakeFetcher, thread_store: ThreadStore, tmp_path: Path
) -> None:
    fetcher.files["/b/src/1/x.webm"] = b"same"
    fetcher.files["/b/src/1/y.webm"] = b"same"
    fetcher.put_thread(
        "b", 1,
        [
            remote_post(1, op=1, files=[("/b/src/1/x.webm", "x.webm")]),
            remote_post(2, files=[("/b/src/1/y.webm", "y.webm")]),
        ],
    )

    await engine.sync_thread("b", 1)

    ids = [a.content_id for p in thread_store.read("b", 1).posts for a in p.attachments]
    assert ids[0] == ids[1]
    assert [p.name for p in (tmp_path / "attachments").iterdir()] == [ids[0]]


@pytest.mark.asyncio
async def test_fetch_failure_persists_nothing(engine: SyncEngine, thread_store: ThreadStore) -> None:
    with pytest.raises(FetchError):
        await engine.sync_thread("b", 404)
    assert thread_store.read("b", 404) is None


@pytest.mark.asyncio
async def test_unknown_op_marker_aborts_without_writing(
    engine: SyncEngine, fetcher: FakeFetcher, thread_store: ThreadStore
) -> None:
    fetcher.put_thread("b", 1, [remote_post(1, op=1)])
    await engine.sync_thread("b", 1)
    fetcher.put_thread("b", 1, [remote_post(1, op=1), remote_post(2, op=7)])

    with pytest.raises(ProtocolInvariantViolation):
        await engine.sync_thread("b", 1)
    assert [p.id for p in thread_store.read("b", 1).posts] == [1]


@pytest.mark.asyncio
async def test_attachment_without_extension_keeps_trailing_dot(
    engine: SyncEngine, fetcher: FakeFetcher, thread_store: ThreadStore, content_store: DiskContentStore
) -> None:
    fetcher.files["/b/src/1/README"] = b"plain text"
    fetcher.put_thread("b", 1, [remote_post(1, op=1, files=[("/b/src/1/README", "README")])])

    result = await engine.sync_thread("b", 1)

    assert result.attachments == 1
    [attachment] = thread_store.read("b", 1).posts[0].attachments
    assert attachment.content_id == hashlib.sha256(b"plain text").hexdigest() + "."
    assert content_store.get(attachment.content_id) == b"plain text"
