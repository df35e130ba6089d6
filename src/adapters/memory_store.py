"""
In-Memory Store Adapter.

Implements StoreClientPort with plain dicts. Used for development and as the
simulated store in tests.

Binary transfers are chunked and yield to the event loop between chunks
(optionally sleeping `chunk_delay` seconds), so progress callbacks fire
incrementally and a transfer can be cancelled mid-flight.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import logging
from typing import Any
from uuid import uuid4

from src.adapters.transfer import TransferTask
from src.core.ports.store import (
    DocumentPage,
    NotFoundError,
    ProgressCallback,
    SortSpec,
    StoredBinary,
    TransferFailed,
)

logger = logging.getLogger(__name__)

OBJECTS = "objects"


def _sort_key(value: Any) -> tuple[bool, Any]:
    # Missing values sort last in ascending order
    return (value is None, value if value is not None else "")


class InMemoryStore:
    """
    In-memory implementation of StoreClientPort.

    Documents are deep-copied on the way in and out, so callers never share
    mutable state with the store.
    """

    def __init__(
        self,
        *,
        chunk_size: int = 64 * 1024,
        chunk_delay: float = 0.0,
        reference_scheme: str = "memory",
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.reference_scheme = reference_scheme
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._objects: dict[str, tuple[bytes, StoredBinary]] = {}
        self._reserved: set[str] = set()

    # --- Documents ---

    async def create_document(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid4().hex
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
        return doc_id

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def update_document(
        self, collection: str, doc_id: str, partial: dict[str, Any]
    ) -> None:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise NotFoundError(collection, doc_id)
        docs[doc_id].update(copy.deepcopy(partial))

    async def delete_document(self, collection: str, doc_id: str) -> None:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise NotFoundError(collection, doc_id)
        del docs[doc_id]

    async def list_documents(
        self,
        collection: str,
        *,
        filters: dict[str, Any] | None = None,
        sort: SortSpec | None = None,
        page_size: int = 20,
        cursor: str | None = None,
    ) -> DocumentPage:
        if page_size <= 0:
            raise ValueError("page_size must be positive")

        items = [
            (doc_id, doc)
            for doc_id, doc in self._collections.get(collection, {}).items()
            if all(doc.get(key) == value for key, value in (filters or {}).items())
        ]

        if sort is not None:
            items.sort(
                key=lambda item: _sort_key(item[1].get(sort.field)),
                reverse=sort.direction == "desc",
            )

        offset = int(cursor) if cursor else 0
        window = items[offset : offset + page_size]
        has_more = offset + page_size < len(items)

        return DocumentPage(
            items=[(doc_id, copy.deepcopy(doc)) for doc_id, doc in window],
            next_cursor=str(offset + page_size) if has_more else None,
            has_more=has_more,
        )

    # --- Objects ---

    def upload_binary(
        self,
        path: str,
        data: bytes,
        on_progress: ProgressCallback | None = None,
        *,
        content_type: str = "application/octet-stream",
    ) -> TransferTask:
        logger.info("Transfer started: %s (%d bytes)", path, len(data))
        return TransferTask(path, self._transfer(path, data, on_progress, content_type))

    async def _transfer(
        self,
        path: str,
        data: bytes,
        on_progress: ProgressCallback | None,
        content_type: str,
    ) -> str:
        if path in self._objects or path in self._reserved:
            raise TransferFailed(path, "object already exists")
        # Held until the transfer ends so a concurrent upload cannot claim it
        self._reserved.add(path)

        total = len(data)
        sent = 0
        try:
            for start in range(0, max(total, 1), self.chunk_size):
                await asyncio.sleep(self.chunk_delay)
                sent += len(data[start : start + self.chunk_size])
                if on_progress is not None:
                    on_progress(sent, total)
        finally:
            self._reserved.discard(path)

        self._objects[path] = (
            bytes(data),
            StoredBinary(
                path=path,
                size_bytes=total,
                content_type=content_type,
                sha256=hashlib.sha256(data).hexdigest(),
            ),
        )
        logger.info("Transfer finished: %s", path)
        return self._reference(path)

    def _reference(self, path: str) -> str:
        return f"{self.reference_scheme}://{path}"

    async def get_download_reference(self, path: str) -> str:
        if path not in self._objects:
            raise NotFoundError(OBJECTS, path)
        return self._reference(path)

    # --- Inspection helpers (dev/test) ---

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._collections.get(collection, {}))

    def get_object(self, path: str) -> tuple[bytes, StoredBinary] | None:
        return self._objects.get(path)
