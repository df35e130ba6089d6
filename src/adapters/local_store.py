"""
Local Filesystem Store Adapter.

Implements StoreClientPort on a local directory, for development and
single-server deployments.

Layout:
    {base_path}/documents/{collection}/{id}.json
    {base_path}/objects/{path}            (binary)
    {base_path}/objects/{path}.meta.json  (size, content type, sha256)

Invariants:
- Object paths are immutable: writing an existing path fails
- A cancelled or failed transfer leaves no partial object behind
- Document writes are atomic (temp file + rename)
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any
from uuid import uuid4

from src.adapters.transfer import TransferTask
from src.core.ports.store import (
    DocumentPage,
    NotFoundError,
    ProgressCallback,
    SortSpec,
    StoredBinary,
    StoreError,
    TransferFailed,
)

logger = logging.getLogger(__name__)

OBJECTS = "objects"


def _sort_key(value: Any) -> tuple[bool, Any]:
    return (value is None, value if value is not None else "")


class LocalFileStore:
    """
    Local filesystem implementation of StoreClientPort.

    Document I/O runs in worker threads via asyncio.to_thread. Transfers
    write one chunk at a time and yield between chunks so the event loop
    keeps servicing progress callbacks and cancellation.
    """

    def __init__(
        self,
        base_path: str | Path,
        *,
        chunk_size: int = 1024 * 1024,
        create_dirs: bool = True,
    ) -> None:
        """
        Initialize local store.

        Args:
            base_path: Root directory for documents and objects
            chunk_size: Bytes written per transfer step (one progress callback each)
            create_dirs: Whether to create the root directories if missing
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.base_path = Path(base_path).resolve()
        self.chunk_size = chunk_size
        self._reserved: set[Path] = set()

        if create_dirs:
            (self.base_path / "documents").mkdir(parents=True, exist_ok=True)
            (self.base_path / OBJECTS).mkdir(parents=True, exist_ok=True)

    # --- Paths ---

    def _safe_join(self, root: Path, relative: str) -> Path:
        # Prevent traversal
        target = (root / relative.lstrip("/")).resolve()
        if not target.is_relative_to(root.resolve()):
            raise StoreError(f"Path traversal attempt detected: {relative}")
        return target

    def _collection_dir(self, collection: str) -> Path:
        return self._safe_join(self.base_path / "documents", collection)

    def _doc_path(self, collection: str, doc_id: str) -> Path:
        return self._safe_join(self._collection_dir(collection), f"{doc_id}.json")

    def _object_paths(self, path: str) -> tuple[Path, Path]:
        data_path = self._safe_join(self.base_path / OBJECTS, path)
        meta_path = data_path.with_name(data_path.name + ".meta.json")
        return data_path, meta_path

    # --- Blocking helpers (run in threads) ---

    @staticmethod
    def _write_json_atomic(target: Path, payload: dict[str, Any]) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        with open(tmp, "w") as f:
            json.dump(payload, f, sort_keys=True)
        os.replace(tmp, target)

    @staticmethod
    def _read_json(target: Path) -> dict[str, Any] | None:
        if not target.exists():
            return None
        with open(target) as f:
            data: dict[str, Any] = json.load(f)
        return data

    @staticmethod
    def _append_chunk(target: Path, chunk: bytes) -> None:
        with open(target, "ab") as f:
            f.write(chunk)

    def _scan_collection(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        directory = self._collection_dir(collection)
        if not directory.exists():
            return []
        files = sorted(
            directory.glob("*.json"),
            key=lambda p: (p.stat().st_mtime_ns, p.name),
        )
        items: list[tuple[str, dict[str, Any]]] = []
        for file in files:
            with open(file) as f:
                items.append((file.stem, json.load(f)))
        return items

    # --- Documents ---

    async def create_document(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid4().hex
        await asyncio.to_thread(self._write_json_atomic, self._doc_path(collection, doc_id), data)
        return doc_id

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read_json, self._doc_path(collection, doc_id))

    async def update_document(
        self, collection: str, doc_id: str, partial: dict[str, Any]
    ) -> None:
        target = self._doc_path(collection, doc_id)
        current = await asyncio.to_thread(self._read_json, target)
        if current is None:
            raise NotFoundError(collection, doc_id)
        current.update(partial)
        await asyncio.to_thread(self._write_json_atomic, target, current)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        target = self._doc_path(collection, doc_id)
        if not target.exists():
            raise NotFoundError(collection, doc_id)
        await asyncio.to_thread(target.unlink)

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

        items = await asyncio.to_thread(self._scan_collection, collection)
        items = [
            (doc_id, doc)
            for doc_id, doc in items
            if all(doc.get(key) == value for key, value in (filters or {}).items())
        ]
        if sort is not None:
            items.sort(
                key=lambda item: _sort_key(item[1].get(sort.field)),
                reverse=sort.direction == "desc",
            )

        offset = int(cursor) if cursor else 0
        has_more = offset + page_size < len(items)
        return DocumentPage(
            items=items[offset : offset + page_size],
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
        try:
            data_path, meta_path = self._object_paths(path)
        except StoreError as e:
            raise TransferFailed(path, str(e)) from e

        # Immutability check: path must not exist or be mid-transfer
        if data_path.exists() or data_path in self._reserved:
            raise TransferFailed(path, "object already exists")
        self._reserved.add(data_path)
        try:
            return await self._write_object(
                path, data_path, meta_path, data, on_progress, content_type
            )
        finally:
            self._reserved.discard(data_path)

    async def _write_object(
        self,
        path: str,
        data_path: Path,
        meta_path: Path,
        data: bytes,
        on_progress: ProgressCallback | None,
        content_type: str,
    ) -> str:
        partial = data_path.with_name(data_path.name + ".part")
        total = len(data)
        sent = 0
        hasher = hashlib.sha256()

        try:
            partial.parent.mkdir(parents=True, exist_ok=True)
            partial.unlink(missing_ok=True)
            partial.touch()
            for start in range(0, total, self.chunk_size):
                chunk = data[start : start + self.chunk_size]
                # Written inline so cancellation can only land between chunks
                self._append_chunk(partial, chunk)
                await asyncio.sleep(0)
                hasher.update(chunk)
                sent += len(chunk)
                if on_progress is not None:
                    on_progress(sent, total)
            if total == 0 and on_progress is not None:
                on_progress(0, 0)

            os.replace(partial, data_path)
            metadata = StoredBinary(
                path=path,
                size_bytes=total,
                content_type=content_type,
                sha256=hasher.hexdigest(),
            )
            self._write_json_atomic(
                meta_path,
                {
                    "path": metadata.path,
                    "size_bytes": metadata.size_bytes,
                    "content_type": metadata.content_type,
                    "sha256": metadata.sha256,
                },
            )
        except asyncio.CancelledError:
            partial.unlink(missing_ok=True)
            logger.info("Transfer aborted, partial object removed: %s", path)
            raise
        except OSError as e:
            partial.unlink(missing_ok=True)
            logger.warning("Transfer failed: %s (%s)", path, e)
            raise TransferFailed(path, str(e)) from e

        logger.info("Transfer finished: %s", path)
        return data_path.as_uri()

    async def get_download_reference(self, path: str) -> str:
        data_path, _ = self._object_paths(path)
        if not data_path.exists():
            raise NotFoundError(OBJECTS, path)
        return data_path.as_uri()

    def get_metadata(self, path: str) -> StoredBinary | None:
        """Get object metadata without reading the bytes."""
        _, meta_path = self._object_paths(path)
        meta = self._read_json(meta_path)
        if meta is None:
            return None
        return StoredBinary(
            path=meta["path"],
            size_bytes=meta["size_bytes"],
            content_type=meta["content_type"],
            sha256=meta["sha256"],
        )


def create_local_store(
    base_path: str | Path | None = None,
    *,
    env_var: str = "VIDEO_PIPELINE_DATA_DIR",
    default_path: str = "./data",
) -> LocalFileStore:
    """
    Factory function to create LocalFileStore from config.

    Args:
        base_path: Explicit base path (overrides env var)
        env_var: Environment variable name for the data directory
        default_path: Default path if not configured

    Returns:
        Configured LocalFileStore instance
    """
    if base_path is None:
        base_path = os.environ.get(env_var, default_path)

    return LocalFileStore(base_path)
