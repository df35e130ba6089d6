# Ports (Protocol Interfaces)
# Abstract interfaces for adapters; no implementations here

from src.core.ports.clock import ClockPort
from src.core.ports.store import (
    DocumentPage,
    NotFoundError,
    ProgressCallback,
    SortSpec,
    StoreClientPort,
    StoredBinary,
    StoreError,
    StoreTimeout,
    TransferCancelled,
    TransferFailed,
    TransferHandle,
)

__all__ = [
    "ClockPort",
    "DocumentPage",
    "NotFoundError",
    "ProgressCallback",
    "SortSpec",
    "StoreClientPort",
    "StoredBinary",
    "StoreError",
    "StoreTimeout",
    "TransferCancelled",
    "TransferFailed",
    "TransferHandle",
]
