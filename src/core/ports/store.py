"""
Document/Object Store Client Interface.

Protocol-based interface for the remote store the asset pipeline talks to.
Implementations: in-memory (dev/test), local filesystem (single server).

The pipeline only needs this narrow surface:
- Document CRUD keyed by (collection, id); the store assigns ids
- Windowed listing with equality filters, one sort field and a cursor
- Resumable binary transfers with progress callbacks and cancellation

Individual operations are atomic. Timeouts are the store's concern and
surface as StoreTimeout, an ordinary operation failure.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from dataclasses import dataclass
from typing import Any, Literal, Protocol

# (bytes_transferred, total_bytes)
ProgressCallback = Callable[[int, int], None]

SortDirection = Literal["asc", "desc"]


@dataclass(frozen=True)
class SortSpec:
    """Single-field sort."""

    field: str
    direction: SortDirection = "desc"


@dataclass
class DocumentPage:
    """One window of a listing."""

    items: list[tuple[str, dict[str, Any]]]
    next_cursor: str | None = None
    has_more: bool = False


@dataclass
class StoredBinary:
    """Metadata for a durably stored binary."""

    path: str
    size_bytes: int
    content_type: str
    sha256: str


class TransferHandle(Protocol):
    """
    Handle on an in-flight binary transfer.

    Awaiting it yields the durable reference of the stored object.

    Raises (when awaited):
        TransferFailed: The transfer could not complete
        TransferCancelled: cancel() was called before completion
    """

    def cancel(self) -> bool:
        """Request cancellation. Returns False if the transfer already finished."""
        ...

    def done(self) -> bool:
        ...

    def __await__(self) -> Generator[Any, None, str]:
        ...


class StoreClientPort(Protocol):
    """Document and object store client."""

    async def create_document(self, collection: str, data: dict[str, Any]) -> str:
        """Create a document and return its store-assigned id."""
        ...

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Fetch a document body, or None if absent."""
        ...

    async def update_document(
        self, collection: str, doc_id: str, partial: dict[str, Any]
    ) -> None:
        """
        Merge `partial` into an existing document.

        Raises:
            NotFoundError: If doc_id is absent
        """
        ...

    async def delete_document(self, collection: str, doc_id: str) -> None:
        """
        Delete a document.

        Raises:
            NotFoundError: If doc_id is absent
        """
        ...

    async def list_documents(
        self,
        collection: str,
        *,
        filters: dict[str, Any] | None = None,
        sort: SortSpec | None = None,
        page_size: int = 20,
        cursor: str | None = None,
    ) -> DocumentPage:
        """List one window of documents matching all equality filters."""
        ...

    def upload_binary(
        self,
        path: str,
        data: bytes,
        on_progress: ProgressCallback | None = None,
        *,
        content_type: str = "application/octet-stream",
    ) -> TransferHandle:
        """Start a transfer. Returns immediately; await the handle for the reference."""
        ...

    async def get_download_reference(self, path: str) -> str:
        """
        Resolve a stored object path to a download reference.

        Raises:
            NotFoundError: If nothing is stored at path
        """
        ...


class StoreError(Exception):
    """Base class for store errors."""


class NotFoundError(StoreError):
    """Raised when a referenced document or object does not exist."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Not found: {collection}/{doc_id}")


class TransferFailed(StoreError):
    """Raised when a binary transfer could not complete."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        self.reason = reason
        message = f"Transfer failed: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class TransferCancelled(StoreError):
    """Raised when a transfer was cancelled through its handle. Not a failure."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Transfer cancelled: {path}")


class StoreTimeout(StoreError):
    """Raised when the store gave up waiting on an operation."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Store operation timed out: {operation}")
