# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
cmdflow API - command registry, run history and workflow engine over HTTP
"""
# Load environment variables from .env file (local development)
from dotenv import load_dotenv
from pathlib import Path as _PathForEnv
_env_path = _PathForEnv(__file__).parent.parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cmdflow.api import commands, events, runs, workflows
from cmdflow.commands import CommandRegistry, CommandRunTracker, register_builtin_commands
from cmdflow.core.config import Config, get_config
from cmdflow.core.errors import CmdflowError
from cmdflow.core.logging import configure_package_logging, get_service_logger
from cmdflow.event_bus import EventBus
from cmdflow.workflow import InMemoryWorkflowStore, WorkflowEngine

logger = get_service_logger("api")


def create_app(config: Optional[Config] = None) -> FastAPI:
    """
    Build the API application.

    Services are created in the lifespan and stored in app.state for
    dependency injection.
    """
    config = config or get_config()
    configure_package_logging(config.log_level, config.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        event_bus = EventBus()
        tracker = CommandRunTracker(event_bus=event_bus, history_limit=config.run_history_limit)
        registry = CommandRegistry(tracker, event_bus=event_bus)
        store = InMemoryWorkflowStore(event_bus=event_bus, log_limit=config.workflow_log_limit)
        engine = WorkflowEngine(store, registry, event_bus=event_bus, config=config)
        register_builtin_commands(registry, tracker, engine=engine, store=store)

        if Path(config.workflows_path).is_dir():
            loaded = store.load_directory(config.workflows_path)
            logger.info(f"Loaded {len(loaded)} workflows from {config.workflows_path}")
        listeners = engine.init_listeners()
        engine.watch_store()
        logger.info(f"cmdflow started: {len(registry.list_commands())} commands, {listeners} event listeners")

        app.state.config = config
        app.state.event_bus = event_bus
        app.state.tracker = tracker
        app.state.registry = registry
        app.state.workflow_store = store
        app.state.workflow_engine = engine
        try:
            yield
        finally:
            await engine.aclose()
            event_bus.clear()
            logger.info("cmdflow stopped")

    app = FastAPI(
        title="cmdflow",
        description="Command registry with tracked runs and a graph workflow engine",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CmdflowError)
    async def cmdflow_error_handler(request: Request, exc: CmdflowError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(commands.router)
    app.include_router(runs.router)
    app.include_router(events.router)
    app.include_router(workflows.router)

    @app.get("/health")
    async def health():
        """Health check"""
        return {"status": "healthy", "service": "cmdflow"}

    return app


def main() -> None:
    import uvicorn

    config = get_config()
    uvicorn.run(create_app(config), host=config.api_host, port=config.api_port)


if __name__ == "__main__":
    main()
