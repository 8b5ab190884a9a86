"""Sync connector: wires storage, transport and engine, and serializes passes."""

import asyncio
from typing import Any, Dict, Optional

from .sync_engine import SyncEngine, SyncResult
from ..config.schema import SyncConfig
from ..database import DatabaseManager, SqlRecordStore, SqlMutationQueue, SyncState
from ..transport import BaseBatchTransport, HttpBatchTransport
from ..utils.logging import get_logger, log_async_execution_time
from ..utils.timestamps import ensure_utc, utcnow


class SyncConnector:
    """Entry point for callers that trigger sync passes.

    At most one pass runs at a time; concurrent callers wait for the lock.
    """

    def __init__(
        self,
        store: SqlRecordStore,
        queue: SqlMutationQueue,
        transport: BaseBatchTransport,
        config: Optional[SyncConfig] = None
    ):
        self.store = store
        self.queue = queue
        self.transport = transport
        self.config = config or SyncConfig()
        self.sync_engine = SyncEngine(store, queue, transport, self.config)
        self.logger = get_logger(self.__class__.__name__)

        self._lock = asyncio.Lock()
        self.last_result: Optional[SyncResult] = None

        self.logger.info("Sync connector initialized", api_base_url=self.config.api_base_url)

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        db_manager: Optional[DatabaseManager] = None,
        transport: Optional[BaseBatchTransport] = None
    ) -> "SyncConnector":
        """Build a connector over the SQL store and the HTTP transport."""
        return cls(
            SqlRecordStore(db_manager),
            SqlMutationQueue(db_manager),
            transport or HttpBatchTransport(config),
            config
        )

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    @log_async_execution_time
    async def sync(self) -> SyncResult:
        """Run one sync pass, waiting for any pass already in flight."""
        if self._lock.locked():
            self.logger.info("Sync already running, waiting for it to finish")

        async with self._lock:
            self.last_result = await self.sync_engine.sync()
            return self.last_result

    async def check_connectivity(self) -> bool:
        return await self.transport.check_connectivity()

    async def get_status(self) -> Dict[str, Any]:
        """Summary of outstanding work and remote reachability."""
        pending = await self.store.count_by_state(SyncState.PENDING)
        queue_size = await self.queue.count()
        last_synced = await self.store.last_synced_at()
        is_online = await self.check_connectivity()

        return {
            "pending_sync_count": pending,
            "last_sync_timestamp": ensure_utc(last_synced).isoformat() if last_synced else None,
            "is_online": is_online,
            "sync_queue_size": queue_size
        }

    async def health_check(self) -> Dict[str, Any]:
        """Check the local database and the remote.

        Returns:
            Dictionary with health check results
        """
        health = {
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "database": False,
            "remote": False,
            "issues": []
        }

        health["database"] = self.store.db_manager.test_connection()
        if not health["database"]:
            health["issues"].append("Database connection failed")
            health["status"] = "unhealthy"

        health["remote"] = await self.check_connectivity()
        if not health["remote"]:
            health["issues"].append("Remote unreachable")
            if health["status"] == "healthy":
                health["status"] = "degraded"

        return health

    async def close(self) -> None:
        await self.transport.close()
        self.logger.info("Sync connector closed")
