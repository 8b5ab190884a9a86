"""HTTP batch transport built on aiohttp."""

import asyncio
from typing import Optional, Sequence, TYPE_CHECKING

import aiohttp
from pydantic import ValidationError

from .base import BaseBatchTransport, TransportError, ConnectivityError
from .wire import BatchSyncRequest, BatchSyncResponse
from ..config.schema import SyncConfig
from ..utils.logging import log_async_execution_time
from ..utils.timestamps import utcnow

if TYPE_CHECKING:
    from ..database.models import QueueItem


class HttpBatchTransport(BaseBatchTransport):
    """Posts batches to ``{api_base_url}/sync/batch``."""

    def __init__(self, config: SyncConfig, session: Optional[aiohttp.ClientSession] = None, **kwargs):
        super().__init__(**kwargs)
        self.config = config
        self.session = session
        self._owns_session = session is None

        self.logger.info(
            "HTTP batch transport initialized",
            batch_url=config.batch_url,
            request_timeout=config.request_timeout,
            max_attempts=config.transport_max_attempts
        )

    async def __aenter__(self):
        """Async context manager entry."""
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self.session

    async def close(self) -> None:
        if self.session and self._owns_session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def check_connectivity(self) -> bool:
        session = self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self.config.connectivity_timeout)

        try:
            async with session.get(self.config.health_url, timeout=timeout) as response:
                reachable = response.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning("Remote unreachable", url=self.config.health_url, error=str(e))
            return False

        if not reachable:
            self.logger.warning("Remote health check failed", url=self.config.health_url, status=response.status)
        return reachable

    @log_async_execution_time
    async def send(self, batch: Sequence["QueueItem"]) -> BatchSyncResponse:
        wire_items, rejected = self.prepare_batch(batch)
        if not wire_items:
            return BatchSyncResponse(processed_items=rejected)

        request = BatchSyncRequest(items=wire_items, client_timestamp=utcnow())
        body = request.model_dump(mode='json')

        response = await self._post_with_retries(body)
        response.processed_items.extend(rejected)
        return response

    async def _post_with_retries(self, body: dict) -> BatchSyncResponse:
        """POST the batch, retrying transport failures up to the attempt limit."""
        attempts = self.config.transport_max_attempts
        last_error: Optional[TransportError] = None

        for attempt in range(1, attempts + 1):
            try:
                return await self._post(body)
            except TransportError as e:
                last_error = e
                self.logger.warning(
                    "Batch exchange failed",
                    attempt=attempt,
                    max_attempts=attempts,
                    status=e.status,
                    error=str(e)
                )
                if not e.retryable or attempt == attempts:
                    break
                await asyncio.sleep(self.config.transport_retry_delay)

        raise last_error

    async def _post(self, body: dict) -> BatchSyncResponse:
        session = self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)

        try:
            async with session.post(self.config.batch_url, json=body, timeout=timeout) as response:
                if response.status < 200 or response.status >= 300:
                    error_text = await response.text()
                    raise TransportError(
                        f"Batch request failed: {response.status} - {error_text}",
                        status=response.status
                    )
                payload = await response.json(content_type=None)

        except asyncio.TimeoutError:
            raise ConnectivityError(f"Batch request timed out after {self.config.request_timeout}s")
        except aiohttp.ClientConnectionError as e:
            raise ConnectivityError(f"Network error: {e}")
        except aiohttp.ClientError as e:
            raise TransportError(f"Network error: {e}")
        except ValueError as e:
            raise TransportError(f"Malformed response body: {e}")

        try:
            return BatchSyncResponse.model_validate(payload)
        except ValidationError as e:
            raise TransportError(f"Malformed batch response: {e.error_count()} error(s)")
