"""Main application entry point."""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from aiohttp import web, web_runner
from pydantic import ValidationError

from .config.schema import ClientConfig
from .config.settings import AppSettings, get_settings
from .config.loader import load_config_from_env
from .utils.logging import setup_logging, get_logger
from .utils.timestamps import utcnow
from .database import init_database, close_database, TaskService, TaskCreate, TaskUpdate, StorageError, TaskExistsError
from .core.connector import SyncConnector
from .core.sync_engine import SyncEngineError
from .scheduler import SyncScheduler


class TaskSyncApp:
    """Offline-first task client: local CRUD, sync trigger and status."""

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        connector: Optional[SyncConnector] = None,
        task_service: Optional[TaskService] = None,
        config: Optional[ClientConfig] = None
    ):
        """Initialize the application.

        Args:
            settings: Environment settings, used for anything ``config`` leaves unset
            connector: Prebuilt connector; built from configuration when omitted
            task_service: Prebuilt task service
            config: File configuration; loaded with ``load_config_from_env`` when omitted
        """
        self.settings = settings or get_settings()
        self.config = config
        self.logger = get_logger("TaskSync")
        self.running = False
        self.started_at = utcnow()
        self.web_app: Optional[web.Application] = None
        self.web_runner: Optional[web_runner.AppRunner] = None
        self.connector = connector
        self.task_service = task_service
        self.scheduler: Optional[SyncScheduler] = None

    async def startup(self):
        """Application startup."""
        self.logger.info(
            "Starting TaskSync client",
            version=self.settings.version,
            environment=self.settings.environment
        )

        Path("./data").mkdir(exist_ok=True)
        Path("./logs").mkdir(exist_ok=True)

        if self.config is None:
            self.config = load_config_from_env()

        sync_config = self.config.sync_config(self.settings.sync.to_config())
        schedule = self.config.schedule_config(self.settings.scheduling.to_config())
        database_url = self.config.database_url or self.settings.database.url

        db_manager = init_database(database_url, create_tables=True)

        if self.connector is None:
            self.connector = SyncConnector.from_config(sync_config, db_manager)
        if self.task_service is None:
            self.task_service = TaskService(db_manager)

        if schedule.enabled:
            self.scheduler = SyncScheduler(self.connector, interval_minutes=schedule.interval_minutes)
            await self.scheduler.start()

        await self._setup_web_server()

        self.running = True
        self.logger.info("TaskSync client started successfully")

    async def shutdown(self):
        """Application shutdown."""
        self.logger.info("Shutting down TaskSync client")
        self.running = False

        if self.scheduler and self.scheduler.is_running:
            await self.scheduler.stop()

        await self._stop_web_server()

        if self.connector:
            await self.connector.close()

        close_database()

        self.logger.info("TaskSync client stopped")

    async def run(self):
        """Run the main application loop."""
        await self.startup()

        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            await self.shutdown()

    def create_web_app(self) -> web.Application:
        """Build the HTTP surface."""
        app = web.Application()

        app.router.add_get('/health', self._health_handler)
        app.router.add_get('/status', self._status_handler)
        app.router.add_post('/sync', self._sync_handler)

        app.router.add_get('/tasks', self._list_tasks_handler)
        app.router.add_get('/tasks/need-sync', self._need_sync_handler)
        app.router.add_get('/tasks/{task_id}', self._get_task_handler)
        app.router.add_post('/tasks', self._create_task_handler)
        app.router.add_put('/tasks/{task_id}', self._update_task_handler)
        app.router.add_delete('/tasks/{task_id}', self._delete_task_handler)

        return app

    async def _setup_web_server(self):
        """Set up web server for sync control and status."""
        self.web_app = self.create_web_app()

        self.web_runner = web_runner.AppRunner(self.web_app)
        await self.web_runner.setup()

        host, port = self.settings.http_host, self.settings.http_port
        site = web_runner.TCPSite(self.web_runner, host, port)
        await site.start()

        self.logger.info("Web server started", host=host, port=port)

    async def _stop_web_server(self):
        """Stop web server."""
        if self.web_runner:
            await self.web_runner.cleanup()
            self.web_runner = None
            self.logger.info("Web server stopped")

    # Sync routes

    async def _health_handler(self, request):
        """Local database and remote reachability; 503 when the database is down."""
        health_data = await self.connector.health_check()
        health_data.update(
            version=self.settings.version,
            environment=self.settings.environment,
            uptime_seconds=int((utcnow() - self.started_at).total_seconds())
        )
        status = 503 if health_data["status"] == "unhealthy" else 200
        return web.json_response(health_data, status=status)

    async def _status_handler(self, request):
        """Pending work, last sync time and remote reachability."""
        try:
            status_data = await self.connector.get_status()
        except StorageError as e:
            self.logger.error("Status lookup failed", error=str(e))
            return web.json_response({"error": "Failed to read sync status"}, status=500)

        return web.json_response(status_data)

    async def _sync_handler(self, request):
        """Run a sync pass now."""
        if not await self.connector.check_connectivity():
            return web.json_response(
                {"success": False, "message": "Remote server unreachable. Try again later."},
                status=503
            )

        try:
            result = await self.connector.sync()
        except (StorageError, SyncEngineError) as e:
            self.logger.error("Sync request failed", error=str(e))
            return web.json_response({"success": False, "message": str(e)}, status=500)

        return web.json_response(result.to_dict())

    # Task routes

    async def _list_tasks_handler(self, request):
        tasks = self.task_service.get_all_tasks()
        return web.json_response([t.model_dump(mode='json') for t in tasks])

    async def _need_sync_handler(self, request):
        tasks = self.task_service.get_tasks_needing_sync()
        return web.json_response([t.model_dump(mode='json') for t in tasks])

    async def _get_task_handler(self, request):
        task = self.task_service.get_task(request.match_info['task_id'])
        if task is None:
            return web.json_response({"error": "Task not found"}, status=404)
        return web.json_response(task.model_dump(mode='json'))

    async def _create_task_handler(self, request):
        try:
            data = TaskCreate.model_validate(await request.json())
        except (ValueError, ValidationError) as e:
            return web.json_response({"error": f"Invalid task: {e}"}, status=400)

        try:
            task = self.task_service.create_task(data)
        except TaskExistsError as e:
            return web.json_response({"error": str(e)}, status=409)
        return web.json_response(task.model_dump(mode='json'), status=201)

    async def _update_task_handler(self, request):
        try:
            updates = TaskUpdate.model_validate(await request.json())
        except (ValueError, ValidationError) as e:
            return web.json_response({"error": f"Invalid update: {e}"}, status=400)

        if not updates.model_dump(exclude_none=True):
            return web.json_response({"error": "No valid fields provided to update"}, status=400)

        task = self.task_service.update_task(request.match_info['task_id'], updates)
        if task is None:
            return web.json_response({"error": "Task not found"}, status=404)
        return web.json_response(task.model_dump(mode='json'))

    async def _delete_task_handler(self, request):
        if not self.task_service.delete_task(request.match_info['task_id']):
            return web.json_response({"error": "Task not found"}, status=404)
        return web.Response(status=204)


def setup_signal_handlers(app: TaskSyncApp):
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(signum, frame):
        app.logger.info("Received signal", signum=signum)
        app.running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main():
    """Main entry point."""
    setup_logging()

    config = load_config_from_env()
    if {"log_level", "log_format"} & config.model_fields_set:
        setup_logging(
            log_level=config.log_level if "log_level" in config.model_fields_set else None,
            log_format=config.log_format if "log_format" in config.model_fields_set else None
        )

    logger = get_logger("main")
    logger.info("Initializing TaskSync client")

    app = TaskSyncApp(config=config)
    setup_signal_handlers(app)

    await app.run()


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except Exception as e:
        print(f"Application failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
