"""Core sync engine for reconciling the local mutation queue with the remote."""

import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Counter as CounterType, Dict, List, Optional, Sequence, Set

from .interfaces import RecordStore, MutationQueue
from .resolver import resolve_conflict, apply_snapshot
from ..config.schema import SyncConfig
from ..database.models import QueueItem, SyncState
from ..transport.base import BaseBatchTransport, TransportError
from ..transport.wire import Disposition, DispositionStatus
from ..utils.logging import get_logger, log_async_execution_time
from ..utils.timestamps import utcnow


@dataclass
class SyncError:
    """One failed item (or the aborted pass) within a sync result."""

    task_id: str
    operation: str
    error: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "operation": self.operation,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class SyncResult:
    """Result of a sync pass."""

    success: bool
    synced_items: int = 0
    failed_items: int = 0
    errors: List[SyncError] = field(default_factory=list)
    duration: Optional[float] = None

    @property
    def processed_items(self) -> int:
        return self.synced_items + self.failed_items

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "synced_items": self.synced_items,
            "failed_items": self.failed_items,
            "errors": [e.to_dict() for e in self.errors],
        }


class SyncEngineError(Exception):
    """Raised when the engine is used outside its preconditions."""
    pass


class SyncEngine:
    """Runs sync passes: drain the queue, exchange batches, apply dispositions."""

    def __init__(
        self,
        store: RecordStore,
        queue: MutationQueue,
        transport: BaseBatchTransport,
        config: Optional[SyncConfig] = None
    ):
        """Initialize sync engine.

        Args:
            store: Local record store
            queue: Durable mutation queue
            transport: Batch transport to the remote
            config: Batch size, retry ceiling and network settings
        """
        self.store = store
        self.queue = queue
        self.transport = transport
        self.config = config or SyncConfig()
        self.logger = get_logger(self.__class__.__name__)

        if self.config.batch_size < 1 or self.config.max_retries < 1:
            raise SyncEngineError("batch_size and max_retries must be at least 1")

        self._running = False
        self._outstanding: CounterType[str] = Counter()
        self._errored: Set[str] = set()

        self.logger.info(
            "Sync engine initialized",
            batch_size=self.config.batch_size,
            max_retries=self.config.max_retries
        )

    @log_async_execution_time
    async def sync(self) -> SyncResult:
        """Run one sync pass.

        Returns:
            SyncResult with counts and per-item errors

        Raises:
            SyncEngineError: if a pass is already running on this engine
            StorageError: if the local database fails
        """
        if self._running:
            raise SyncEngineError("A sync pass is already in progress")

        self._running = True
        start_time = time.monotonic()
        try:
            result = await self._run_pass()
        finally:
            self._running = False

        result.duration = time.monotonic() - start_time

        self.logger.info(
            "Sync pass completed",
            success=result.success,
            synced_items=result.synced_items,
            failed_items=result.failed_items,
            duration=f"{result.duration:.2f}s"
        )

        return result

    async def _run_pass(self) -> SyncResult:
        if not await self.transport.check_connectivity():
            self.logger.warning("Sync aborted, remote unreachable")
            return SyncResult(
                success=False,
                errors=[SyncError(task_id="", operation="sync", error="remote unreachable")]
            )

        items = await self.queue.all()
        if not items:
            self.logger.info("Sync queue empty")
            return SyncResult(success=True)

        # Items per task still queued in this pass; a task is only marked
        # synced once none of its items remain.
        self._outstanding = Counter(item.task_id for item in items)
        self._errored = set()

        result = SyncResult(success=False)
        batch_size = self.config.batch_size
        batches = [items[i:i + batch_size] for i in range(0, len(items), batch_size)]

        self.logger.info("Starting sync pass", queued_items=len(items), batches=len(batches))

        for index, batch in enumerate(batches):
            self.logger.debug("Dispatching batch", batch_index=index, size=len(batch))
            await self._process_batch(batch, result)

        result.success = result.failed_items == 0
        return result

    async def _process_batch(self, batch: Sequence[QueueItem], result: SyncResult) -> None:
        try:
            response = await self.transport.send(batch)
        except TransportError as e:
            self.logger.error("Batch failed in transport", size=len(batch), error=str(e))
            for item in batch:
                await self._handle_failure(item, f"transport failure: {e}", result)
            return

        submitted = {item.id for item in batch}
        dispositions: Dict[str, Disposition] = {}

        for disposition in response.processed_items:
            if disposition.client_id not in submitted:
                self.logger.warning("Disposition for unknown item ignored", client_id=disposition.client_id)
            elif disposition.client_id in dispositions:
                self.logger.warning("Duplicate disposition ignored", client_id=disposition.client_id)
            else:
                dispositions[disposition.client_id] = disposition

        for item in batch:
            disposition = dispositions.get(item.id)
            if disposition is None:
                await self._handle_failure(item, "no disposition returned", result)
            elif disposition.status == DispositionStatus.SUCCESS:
                await self._apply_success(item, disposition, result)
            elif disposition.status == DispositionStatus.CONFLICT:
                await self._apply_conflict(item, disposition, result)
            else:
                await self._handle_failure(item, disposition.error or "rejected by remote", result)

    async def _apply_success(self, item: QueueItem, disposition: Disposition, result: SyncResult) -> None:
        if disposition.resolved_data is not None:
            try:
                await self._commit(item, disposition)
            except ValueError as e:
                await self._handle_failure(item, f"unusable resolved data: {e}", result)
                return
        else:
            self._settle(item, succeeded=True)
            await self.store.mark_sync_state(
                item.task_id,
                self._settled_state(item.task_id),
                server_id=disposition.server_id,
                synced_at=utcnow()
            )

        await self.queue.remove(item.id)
        result.synced_items += 1

        self.logger.debug(
            "Item synced",
            queue_id=item.id,
            task_id=item.task_id,
            operation=item.operation.value,
            server_id=disposition.server_id
        )

    async def _apply_conflict(self, item: QueueItem, disposition: Disposition, result: SyncResult) -> None:
        if disposition.resolved_data is None:
            await self._handle_failure(item, "conflict reported without resolved data", result)
            return

        try:
            winner = await self._commit(item, disposition)
        except ValueError as e:
            await self._handle_failure(item, f"unusable resolved data: {e}", result)
            return

        await self.queue.remove(item.id)
        result.synced_items += 1

        self.logger.info("Conflict resolved", queue_id=item.id, task_id=item.task_id, winner=winner)

    async def _commit(self, item: QueueItem, disposition: Disposition) -> str:
        """Persist the winner between local and the remote snapshot.

        Returns which side won. Raises ValueError when the snapshot cannot
        be turned into a task.
        """
        local = await self.store.get(item.task_id)
        if local is None:
            task = apply_snapshot(None, disposition.resolved_data, item.task_id)
        else:
            task = resolve_conflict(local, disposition.resolved_data)

        self._settle(item, succeeded=True)
        await self.store.upsert(task.model_copy(update={
            "sync_status": self._settled_state(item.task_id),
            "last_synced_at": utcnow(),
            "server_id": disposition.server_id or task.server_id,
        }))

        return "local" if task is local else "remote"

    async def _handle_failure(self, item: QueueItem, message: str, result: SyncResult) -> None:
        retry_count = await self.queue.record_failure(item.id, message)

        if retry_count >= self.config.max_retries:
            self._settle(item)
            self._errored.add(item.task_id)
            await self.store.mark_sync_state(item.task_id, SyncState.ERROR)
            await self.queue.remove(item.id)
            self.logger.error(
                "Item failed permanently",
                queue_id=item.id,
                task_id=item.task_id,
                retry_count=retry_count,
                error=message
            )
        else:
            state = SyncState.ERROR if item.task_id in self._errored else SyncState.PENDING
            await self.store.mark_sync_state(item.task_id, state)
            self.logger.warning(
                "Item failed, will retry",
                queue_id=item.id,
                task_id=item.task_id,
                retry_count=retry_count,
                error=message
            )

        result.failed_items += 1
        result.errors.append(SyncError(
            task_id=item.task_id,
            operation=item.operation.value,
            error=message
        ))

    def _settle(self, item: QueueItem, succeeded: bool = False) -> None:
        self._outstanding[item.task_id] -= 1
        if succeeded:
            # Latest outcome for the task wins over an earlier permanent failure
            self._errored.discard(item.task_id)

    def _settled_state(self, task_id: str) -> SyncState:
        """State for a task after one of its items left the queue."""
        if task_id in self._errored:
            return SyncState.ERROR
        if self._outstanding[task_id] > 0:
            return SyncState.PENDING
        return SyncState.SYNCED
