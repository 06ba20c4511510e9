"""BabelDesk translation service - FastAPI application."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from babeldesk.api.deps import Services
from babeldesk.api.v1.router import v1_router
from babeldesk.config import Settings, settings
from babeldesk.environment.provisioner import (
    EnvironmentProvisioner,
    LocalEnvironmentProvisioner,
    StaticEnvironmentProvisioner,
)
from babeldesk.errors import register_error_handlers
from babeldesk.jobs.events import BroadcastEventSink
from babeldesk.jobs.in_process_queue import TranslationQueue
from babeldesk.storage.history import JsonHistoryStore
from babeldesk.storage.output_dirs import OutputDirectoryStore

logger = logging.getLogger(__name__)


def build_services(
    app_settings: Settings,
    provisioner: Optional[EnvironmentProvisioner] = None,
) -> Services:
    """Wire the queue to its history store, event sink and environment."""
    events = BroadcastEventSink()
    if provisioner is None:
        if app_settings.tool_executable:
            provisioner = StaticEnvironmentProvisioner.for_executable(app_settings.tool_executable)
        else:
            provisioner = LocalEnvironmentProvisioner(
                on_status=lambda status: events.publish({"event": "environment", **status.model_dump()})
            )
    history = JsonHistoryStore(app_settings.resolved_history_path(), limit=app_settings.history_limit)
    output_dirs = OutputDirectoryStore(os.path.join(app_settings.runtime_dir, "translations"))
    queue = TranslationQueue(
        provisioner=provisioner,
        history=history,
        output_dirs=output_dirs,
        events=events,
        options_provider=app_settings.tool_options,
        log_capacity=app_settings.log_capacity,
        timeout_seconds=app_settings.job_timeout_seconds,
        kill_grace_seconds=app_settings.kill_grace_seconds,
    )
    return Services(queue=queue, history=history, provisioner=provisioner, events=events)


def create_app(
    app_settings: Optional[Settings] = None,
    provisioner: Optional[EnvironmentProvisioner] = None,
) -> FastAPI:
    app_settings = app_settings or settings
    services = build_services(app_settings, provisioner)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        logging.basicConfig(
            level=app_settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        logger.info("Starting BabelDesk on %s:%s", app_settings.api_host, app_settings.api_port)
        logger.info("Runtime dir: %s", app_settings.runtime_dir)
        logger.info("History file: %s", app_settings.resolved_history_path())

        yield

        logger.info("Shutting down BabelDesk")
        await services.queue.stop()

    app = FastAPI(
        title="BabelDesk",
        description="Local translation queue for BabelDOC",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.settings = app_settings

    # The desktop shell loads the front-end from a local dev server or file://
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000", "null"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.include_router(v1_router)
    return app


def run() -> None:
    import uvicorn

    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
