"""Base batch transport interface and common functionality."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

from .wire import (
    BatchItem,
    BatchSyncResponse,
    Disposition,
    DispositionStatus,
    PayloadValidationError,
    build_batch_item,
)
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..database.models import QueueItem


class BaseBatchTransport(ABC):
    """Abstract base class for batch transports."""

    def __init__(self, **kwargs):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def send(self, batch: Sequence["QueueItem"]) -> BatchSyncResponse:
        """Exchange one batch of queued mutations.

        Args:
            batch: Queue items, oldest first

        Returns:
            BatchSyncResponse with dispositions correlated by ``client_id``

        Raises:
            TransportError: if the exchange failed for the batch as a whole
        """
        pass

    @abstractmethod
    async def check_connectivity(self) -> bool:
        """Check that the remote answers. Never raises.

        Returns:
            True if the remote answered, False otherwise
        """
        pass

    async def close(self) -> None:
        pass

    def prepare_batch(self, batch: Sequence["QueueItem"]) -> Tuple[List[BatchItem], List[Disposition]]:
        """Split a batch into sendable wire items and local rejections.

        Items whose stored payload does not match their operation are not
        sent; each receives an ``error`` disposition instead.
        """
        wire_items: List[BatchItem] = []
        rejected: List[Disposition] = []

        for item in batch:
            try:
                wire_items.append(build_batch_item(item))
            except PayloadValidationError as e:
                self.logger.warning(
                    "Queue item payload rejected",
                    queue_id=item.id,
                    task_id=item.task_id,
                    operation=item.operation,
                    error=str(e)
                )
                rejected.append(Disposition(
                    client_id=item.id,
                    status=DispositionStatus.ERROR,
                    error=str(e)
                ))

        return wire_items, rejected


class TransportError(Exception):
    """Raised when a batch exchange fails as a whole."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def retryable(self) -> bool:
        """Client errors (4xx) are not worth repeating."""
        return self.status is None or not (400 <= self.status < 500)


class ConnectivityError(TransportError):
    """Raised when the remote cannot be reached at all."""
    pass
