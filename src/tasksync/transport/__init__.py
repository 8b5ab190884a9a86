"""Batch transport package."""

from .wire import (
    BatchItem,
    BatchSyncRequest,
    BatchSyncResponse,
    Disposition,
    DispositionStatus,
    TaskSnapshot,
    PayloadValidationError,
    validate_payload,
    parse_batch_item,
    task_snapshot
)
from .base import BaseBatchTransport, TransportError, ConnectivityError
from .http import HttpBatchTransport

__all__ = [
    "BatchItem",
    "BatchSyncRequest",
    "BatchSyncResponse",
    "Disposition",
    "DispositionStatus",
    "TaskSnapshot",
    "PayloadValidationError",
    "validate_payload",
    "parse_batch_item",
    "task_snapshot",
    "BaseBatchTransport",
    "TransportError",
    "ConnectivityError",
    "HttpBatchTransport"
]
