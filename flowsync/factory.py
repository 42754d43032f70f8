"""Application factory for creating FastAPI instances."""

from datetime import datetime, timezone
from typing import Optional
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
import httpx

from .config import AppConfig, get_config, validate_config
from .core.logging import setup_logging, get_logger
from .core.engine_client import EngineClient
from .core.execution_coordinator import ExecutionCoordinator
from .core.execution_store import ExecutionStore
from .core.health import health_checker
from .core.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from .core.poller import ExecutionPoller
from .core.sync_coordinator import SyncCoordinator
from .core.workflow_store import WorkflowStore
from .storage.database import configure_database, create_tables, get_db
from .api.endpoints import router, init_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.engine_client: Optional[EngineClient] = None
        self.workflow_store: Optional[WorkflowStore] = None
        self.execution_store: Optional[ExecutionStore] = None
        self.poller: Optional[ExecutionPoller] = None
        self.sync_coordinator: Optional[SyncCoordinator] = None
        self.execution_coordinator: Optional[ExecutionCoordinator] = None
        self.logger = None


# Global application state
app_state = ApplicationState()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def setup_health_checks(engine_client: EngineClient, poller: ExecutionPoller, logger) -> None:
    """Register the database and engine health checks."""
    health_checker.clear()

    def check_database():
        db = next(get_db())
        try:
            db.execute(text("SELECT 1"))
            return {"status": "healthy", "message": "Database connection successful"}
        finally:
            db.close()

    async def check_engine():
        if not await engine_client.test_connectivity():
            return False
        return {
            "status": "healthy",
            "message": "Workflow engine reachable",
            "base_url": engine_client.base_url,
            "active_polls": poller.active_count,
        }

    health_checker.register_check("database", check_database, timeout=5.0)
    health_checker.register_check("engine", check_engine, timeout=engine_client.credentials.timeout)
    logger.info("Health checks registered")


def initialize_database(config: AppConfig, logger) -> None:
    """Bind the database, create tables and run migrations."""
    try:
        configure_database(config.database_url, echo=config.database_echo)
        create_tables()
        logger.info("Database tables created")

        try:
            from .storage.migrations import run_migrations
            run_migrations()
        except Exception as e:
            # Indexes only speed up queries
            logger.warning(f"Database migrations failed: {str(e)}")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(
    config: AppConfig,
    logger,
    engine_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ApplicationState:
    """Build and wire the engine client, stores, poller and coordinators."""
    try:
        engine_client = EngineClient(config.get_engine_credentials(), transport=engine_transport)
        workflow_store = WorkflowStore()
        execution_store = ExecutionStore()
        poller = ExecutionPoller(
            engine_client,
            execution_store,
            interval=config.poll_interval,
            max_attempts=config.poll_max_attempts,
            tolerated_errors=config.poll_tolerated_errors,
        )

        app_state.config = config
        app_state.engine_client = engine_client
        app_state.workflow_store = workflow_store
        app_state.execution_store = execution_store
        app_state.poller = poller
        app_state.sync_coordinator = SyncCoordinator(workflow_store, engine_client)
        app_state.execution_coordinator = ExecutionCoordinator(
            workflow_store,
            execution_store,
            engine_client,
            poller,
            max_retries=config.execution_max_retries,
        )
        app_state.logger = logger

        logger.info("Core components initialized")
        return app_state

    except Exception as e:
        logger.error(f"Core components initialization failed: {e}")
        raise


async def graceful_shutdown(state: ApplicationState, logger) -> None:
    """Stop poll tasks and close the engine connection pool."""
    logger.info(f"Shutting down {state.config.app_name if state.config else 'FlowSync'}")

    if state.execution_coordinator:
        try:
            await state.execution_coordinator.shutdown()
            logger.info("Poll tasks stopped")
        except Exception as e:
            logger.error(f"Error stopping poll tasks: {str(e)}")

    if state.engine_client:
        try:
            await state.engine_client.aclose()
            logger.info("Engine client closed")
        except Exception as e:
            logger.error(f"Error closing engine client: {str(e)}")


def create_lifespan_handler(
    config: AppConfig,
    engine_transport: Optional[httpx.AsyncBaseTransport] = None,
):
    """Create application lifespan handler."""
    from contextlib import asynccontextmanager

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        try:
            initialize_database(config, logger)
            state = initialize_core_components(config, logger, engine_transport)

            init_dependencies(
                workflow_store=state.workflow_store,
                sync_coordinator=state.sync_coordinator,
                execution_coordinator=state.execution_coordinator,
                engine_client=state.engine_client,
            )
            setup_health_checks(state.engine_client, state.poller, logger)

            await state.execution_coordinator.resume_running()
            logger.info("Application startup completed successfully")

        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        try:
            yield
        finally:
            await graceful_shutdown(app_state, logger)

    return lifespan


def create_app(
    config: Optional[AppConfig] = None,
    engine_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create and configure FastAPI application instance."""
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Translate editor graphs into engine workflows and track their executions",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, engine_transport)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    app.add_middleware(RequestLoggingMiddleware, slow_request_threshold=config.slow_request_threshold)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)
    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""
    service = config.app_name.lower().replace(" ", "-")

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy", "service": service, "version": config.app_version}

    @app.get("/health/detailed")
    async def detailed_health_check():
        """Detailed health check endpoint with component status."""
        results = await health_checker.run_all_checks()
        status_code = 200 if results["overall_status"] == "healthy" else 503
        return JSONResponse(
            status_code=status_code,
            content={"service": service, "version": config.app_version, **results}
        )

    @app.get("/health/ready")
    async def readiness_check():
        """Readiness check endpoint for container orchestration."""
        results = {}
        for check_name in ("database", "engine"):
            if check_name in health_checker.checks:
                results[check_name] = await health_checker.run_check(check_name)

        ready = bool(results) and all(r.get("status") == "healthy" for r in results.values())
        return JSONResponse(
            status_code=200 if ready else 503,
            content={"ready": ready, "checks": results, "timestamp": _now()}
        )

    @app.get("/health/live")
    async def liveness_check():
        """Liveness check endpoint for container orchestration."""
        return {"alive": True, "timestamp": _now()}


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
