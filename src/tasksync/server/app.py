"""aiohttp application exposing the remote batch sync API."""

from typing import Optional

from aiohttp import web
from pydantic import ValidationError

from .applier import BatchApplier
from ..database.database import DatabaseManager
from ..transport.wire import RawBatchSyncRequest, BatchSyncResponse
from ..utils.logging import get_logger
from ..utils.timestamps import utcnow


logger = get_logger("server")

APPLIER_KEY = web.AppKey("applier", BatchApplier)
DB_MANAGER_KEY = web.AppKey("db_manager", DatabaseManager)


async def health_handler(request: web.Request) -> web.Response:
    """Liveness check used by clients before syncing."""
    return web.json_response({"status": "ok", "timestamp": utcnow().isoformat()})


async def batch_handler(request: web.Request) -> web.Response:
    """Apply a batch of client mutations and report one disposition per item."""
    try:
        body = await request.json()
    except ValueError:
        return web.json_response({"error": "Request body must be JSON"}, status=400)

    try:
        batch = RawBatchSyncRequest.model_validate(body)
    except ValidationError as e:
        logger.warning("Malformed batch request", errors=e.error_count())
        return web.json_response(
            {"error": "Malformed batch request", "details": e.errors(include_url=False, include_context=False)},
            status=400
        )

    applier = request.app[APPLIER_KEY]
    dispositions = applier.apply_batch(batch.items)

    response = BatchSyncResponse(processed_items=dispositions)
    return web.json_response(response.model_dump(mode='json'))


def create_app(db_manager: Optional[DatabaseManager] = None, database_url: Optional[str] = None) -> web.Application:
    """Create the remote application.

    Args:
        db_manager: Database manager holding the remote task table
        database_url: Used to build a manager when none is given

    Returns:
        Configured aiohttp application with routes under ``/api``
    """
    if db_manager is None:
        db_manager = DatabaseManager(database_url)
        db_manager.create_tables()

    app = web.Application()
    app[DB_MANAGER_KEY] = db_manager
    app[APPLIER_KEY] = BatchApplier(db_manager)

    app.router.add_get('/api/health', health_handler)
    app.router.add_post('/api/sync/batch', batch_handler)

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the remote server until interrupted."""
    from ..config.settings import get_settings
    from ..utils.logging import setup_logging

    setup_logging()
    settings = get_settings()

    app = create_app(database_url=settings.server.database_url)
    host = host or settings.server.host
    port = port or settings.server.port

    logger.info("Starting batch sync server", host=host, port=port)
    web.run_app(app, host=host, port=port, print=None)


if __name__ == "__main__":
    run_server()
