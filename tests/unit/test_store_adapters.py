"""
Tests for the store adapters (in-memory and local filesystem).

Both must behave the same through StoreClientPort: document CRUD with
NotFound, equality filters, sorting and cursor paging, and binary transfers
with progress, cancellation and immutable object paths.
"""

from __future__ import annotations

import asyncio

import pytest

from src.adapters.local_store import LocalFileStore, create_local_store
from src.adapters.memory_store import InMemoryStore
from src.core.ports.store import (
    NotFoundError,
    SortSpec,
    StoreError,
    TransferCancelled,
    TransferFailed,
)


@pytest.fixture(params=["memory", "local"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStore(chunk_size=4)
    return LocalFileStore(tmp_path / "data", chunk_size=4)


# --- Documents ---


class TestDocuments:
    @pytest.mark.asyncio
    async def test_create_get_update_delete(self, any_store) -> None:
        doc_id = await any_store.create_document("videos", {"title": "A", "n": 1})
        assert await any_store.get_document("videos", doc_id) == {"title": "A", "n": 1}

        await any_store.update_document("videos", doc_id, {"n": 2})
        assert await any_store.get_document("videos", doc_id) == {"title": "A", "n": 2}

        await any_store.delete_document("videos", doc_id)
        assert await any_store.get_document("videos", doc_id) is None

    @pytest.mark.asyncio
    async def test_missing_document(self, any_store) -> None:
        assert await any_store.get_document("videos", "nope") is None
        with pytest.raises(NotFoundError) as exc_info:
            await any_store.update_document("videos", "nope", {"n": 1})
        assert exc_info.value.doc_id == "nope"
        with pytest.raises(NotFoundError):
            await any_store.delete_document("videos", "nope")

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, any_store) -> None:
        doc_id = await any_store.create_document("videos", {"tags": ["a"]})
        doc = await any_store.get_document("videos", doc_id)
        doc["tags"].append("b")
        assert await any_store.get_document("videos", doc_id) == {"tags": ["a"]}

    @pytest.mark.asyncio
    async def test_filter_sort_and_paging(self, any_store) -> None:
        for n in range(5):
            await any_store.create_document("videos", {"n": n, "kind": "even" if n % 2 == 0 else "odd"})

        page = await any_store.list_documents(
            "videos", filters={"kind": "even"}, sort=SortSpec("n", "desc"), page_size=2
        )
        assert [doc["n"] for _, doc in page.items] == [4, 2]
        assert page.has_more
        assert page.next_cursor is not None

        rest = await any_store.list_documents(
            "videos",
            filters={"kind": "even"},
            sort=SortSpec("n", "desc"),
            page_size=2,
            cursor=page.next_cursor,
        )
        assert [doc["n"] for _, doc in rest.items] == [0]
        assert not rest.has_more
        assert rest.next_cursor is None

    @pytest.mark.asyncio
    async def test_missing_sort_field_sorts_last(self, any_store) -> None:
        await any_store.create_document("videos", {"name": "none"})
        await any_store.create_document("videos", {"name": "two", "n": 2})
        await any_store.create_document("videos", {"name": "one", "n": 1})

        page = await any_store.list_documents("videos", sort=SortSpec("n", "asc"))
        assert [doc["name"] for _, doc in page.items] == ["one", "two", "none"]

    @pytest.mark.asyncio
    async def test_empty_collection(self, any_store) -> None:
        page = await any_store.list_documents("videos")
        assert page.items == []
        assert not page.has_more

    @pytest.mark.asyncio
    async def test_page_size_must_be_positive(self, any_store) -> None:
        with pytest.raises(ValueError):
            await any_store.list_documents("videos", page_size=0)


# --- Binary transfers ---


class TestTransfers:
    @pytest.mark.asyncio
    async def test_upload_reports_progress_and_stores_object(self, any_store) -> None:
        seen: list[tuple[int, int]] = []
        ref = await any_store.upload_binary(
            "videos/1_a.mp4", b"0123456789", lambda sent, total: seen.append((sent, total))
        )

        assert seen == [(4, 10), (8, 10), (10, 10)]
        assert await any_store.get_download_reference("videos/1_a.mp4") == ref

    @pytest.mark.asyncio
    async def test_existing_path_is_immutable(self, any_store) -> None:
        await any_store.upload_binary("videos/1_a.mp4", b"abc")
        with pytest.raises(TransferFailed) as exc_info:
            await any_store.upload_binary("videos/1_a.mp4", b"xyz")
        assert exc_info.value.path == "videos/1_a.mp4"

    @pytest.mark.asyncio
    async def test_concurrent_uploads_to_one_path_keep_the_first(self, any_store) -> None:
        first = any_store.upload_binary("videos/1_a.mp4", b"first-bytes")
        second = any_store.upload_binary("videos/1_a.mp4", b"other-bytes")

        results = await asyncio.gather(first.wait(), second.wait(), return_exceptions=True)

        assert isinstance(results[0], str)
        assert isinstance(results[1], TransferFailed)
        assert await any_store.get_download_reference("videos/1_a.mp4") == results[0]

    @pytest.mark.asyncio
    async def test_path_is_free_again_after_cancel(self, any_store) -> None:
        handle = any_store.upload_binary("videos/1_a.mp4", b"x" * 64)
        handle.cancel()
        with pytest.raises(TransferCancelled):
            await handle

        assert await any_store.upload_binary("videos/1_a.mp4", b"abc")

    @pytest.mark.asyncio
    async def test_unknown_object(self, any_store) -> None:
        with pytest.raises(NotFoundError):
            await any_store.get_download_reference("videos/missing.mp4")

    @pytest.mark.asyncio
    async def test_cancel_is_not_a_failure(self, any_store) -> None:
        handle = any_store.upload_binary("videos/1_a.mp4", b"x" * 64)
        assert not handle.cancel_requested
        assert handle.cancel()
        assert handle.cancel_requested

        with pytest.raises(TransferCancelled) as exc_info:
            await handle
        assert not isinstance(exc_info.value, TransferFailed)
        assert handle.done()
        with pytest.raises(NotFoundError):
            await any_store.get_download_reference("videos/1_a.mp4")

    @pytest.mark.asyncio
    async def test_cancel_after_completion_returns_false(self, any_store) -> None:
        handle = any_store.upload_binary("videos/1_a.mp4", b"abc")
        await handle
        assert not handle.cancel()

    @pytest.mark.asyncio
    async def test_awaiter_cancellation_propagates(self) -> None:
        store = InMemoryStore(chunk_size=1, chunk_delay=0.01)
        handle = store.upload_binary("videos/1_a.mp4", b"x" * 32)

        waiter = asyncio.create_task(handle.wait())
        await asyncio.sleep(0.02)
        waiter.cancel()

        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert not handle.cancel_requested


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_object_metadata(self) -> None:
        store = InMemoryStore()
        ref = await store.upload_binary("videos/a.mp4", b"abc", content_type="video/mp4")

        assert ref == "memory://videos/a.mp4"
        data, meta = store.get_object("videos/a.mp4")
        assert data == b"abc"
        assert meta.size_bytes == 3
        assert meta.content_type == "video/mp4"

    @pytest.mark.asyncio
    async def test_losing_concurrent_upload_does_not_overwrite(self) -> None:
        store = InMemoryStore(chunk_size=2, chunk_delay=0.001)
        first = store.upload_binary("videos/a.mp4", b"first-bytes")
        second = store.upload_binary("videos/a.mp4", b"other-bytes")

        await first
        with pytest.raises(TransferFailed):
            await second
        assert store.get_object("videos/a.mp4")[0] == b"first-bytes"

    def test_chunk_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            InMemoryStore(chunk_size=0)


class TestLocalFileStore:
    @pytest.mark.asyncio
    async def test_layout_and_metadata(self, tmp_path) -> None:
        store = LocalFileStore(tmp_path)
        doc_id = await store.create_document("videos", {"title": "A"})
        ref = await store.upload_binary("videos/a.mp4", b"abc", content_type="video/mp4")

        assert (tmp_path / "documents" / "videos" / f"{doc_id}.json").exists()
        assert (tmp_path / "objects" / "videos" / "a.mp4").read_bytes() == b"abc"
        assert ref == (tmp_path / "objects" / "videos" / "a.mp4").resolve().as_uri()
        meta = store.get_metadata("videos/a.mp4")
        assert meta.size_bytes == 3
        assert meta.content_type == "video/mp4"
        assert len(meta.sha256) == 64

    @pytest.mark.asyncio
    async def test_cancel_leaves_no_partial_file(self, tmp_path) -> None:
        store = LocalFileStore(tmp_path, chunk_size=1)
        seen: list[int] = []
        handle = store.upload_binary("videos/a.mp4", b"x" * 200, lambda s, t: seen.append(s))
        while not seen:
            await asyncio.sleep(0.001)
        handle.cancel()

        with pytest.raises(TransferCancelled):
            await handle
        leftovers = [p.name for p in (tmp_path / "objects" / "videos").iterdir()]
        assert leftovers == []

    @pytest.mark.asyncio
    async def test_path_traversal_rejected(self, tmp_path) -> None:
        store = LocalFileStore(tmp_path / "data")
        with pytest.raises(TransferFailed):
            await store.upload_binary("../../escape.mp4", b"abc")
        with pytest.raises(StoreError):
            await store.create_document("../outside", {"a": 1})

    @pytest.mark.asyncio
    async def test_sibling_with_root_name_prefix_rejected(self, tmp_path) -> None:
        store = LocalFileStore(tmp_path / "data")

        with pytest.raises(TransferFailed):
            await store.upload_binary("../objects-evil/x.bin", b"abc")
        with pytest.raises(StoreError):
            await store.create_document("../documents-x", {"a": 1})

        assert not (tmp_path / "data" / "objects-evil").exists()
        assert not (tmp_path / "data" / "documents-x").exists()

    def test_factory_reads_environment(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("VIDEO_PIPELINE_DATA_DIR", str(tmp_path / "env"))
        store = create_local_store()
        assert store.base_path == (tmp_path / "env").resolve()
        assert (tmp_path / "env" / "documents").is_dir()
