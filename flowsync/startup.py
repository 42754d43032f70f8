"""Application startup script and CLI interface."""

import sys
import json
import asyncio
import argparse

from .config import (
    AppConfig,
    load_config,
    get_development_config,
    get_production_config,
    get_testing_config,
    validate_config
)
from .core.exceptions import FlowSyncError
from .core.logging import get_logger, setup_logging


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="FlowSync - translate editor graphs into engine workflows and track their runs"
    )

    # Server configuration
    parser.add_argument("--host", help="Host to bind the server to")
    parser.add_argument("--port", type=int, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    # Environment configuration
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a .env configuration file")

    parser.add_argument("--database-url", help="Database connection URL")
    parser.add_argument("--engine-url", help="Workflow engine base URL")

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    # Commands
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the FlowSync server")
    run_parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (default: 1)"
    )

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Initialize database tables")
    db_subparsers.add_parser("migrate", help="Run database migrations")
    db_subparsers.add_parser("reset", help="Reset database (drop and recreate tables)")

    health_parser = subparsers.add_parser("health", help="Check database and engine connectivity")
    health_parser.add_argument("--detailed", action="store_true", help="Print every check")

    preview_parser = subparsers.add_parser("preview", help="Print the engine document for a graph file")
    preview_parser.add_argument("graph_file", help="JSON file with name, nodes and edges")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "production":
        config = get_production_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.reload:
        overrides["reload"] = True
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.engine_url:
        overrides["engine_base_url"] = args.engine_url
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_file:
        overrides["log_file"] = args.log_file
    if args.debug:
        overrides["debug"] = True

    if overrides:
        # Re-validate so overrides go through the field validators
        config = AppConfig(**{**config.model_dump(), **overrides})
    return config


def run_server(config: AppConfig, workers: int = 1):
    """Run the FlowSync server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server with {workers} worker(s)")

    uvicorn_config = config.get_uvicorn_config()

    if workers > 1 or config.reload:
        uvicorn.run(
            "flowsync.factory:create_app",
            factory=True,
            workers=workers,
            **uvicorn_config
        )
    else:
        uvicorn.run(create_app(config), **uvicorn_config)


def run_database_command(command: str, config: AppConfig):
    """Run database management commands."""
    from .storage.database import configure_database, create_tables, drop_tables
    from .storage.migrations import run_migrations

    logger = get_logger(__name__)
    configure_database(config.database_url, echo=config.database_echo)

    if command == "init":
        logger.info("Initializing database tables...")
        create_tables()
        logger.info("Database tables created successfully")

    elif command == "migrate":
        logger.info("Running database migrations...")
        run_migrations()
        logger.info("Database migrations completed successfully")

    elif command == "reset":
        logger.info("Resetting database...")
        drop_tables()
        create_tables()
        run_migrations()
        logger.info("Database reset completed successfully")


async def run_health_check(config: AppConfig, detailed: bool = False) -> bool:
    """Check database and engine connectivity; returns overall health."""
    from sqlalchemy import text
    from .core.engine_client import EngineClient
    from .core.health import HealthChecker
    from .storage.database import configure_database, get_db

    configure_database(config.database_url)
    checker = HealthChecker()

    def check_database():
        db = next(get_db())
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()

    async with EngineClient(config.get_engine_credentials()) as client:
        checker.register_check("database", check_database)
        checker.register_check("engine", client.test_connectivity, timeout=config.engine_timeout)
        results = await checker.run_all_checks()

    print(f"Overall Status: {results['overall_status']}")
    if detailed:
        print(f"Timestamp: {results['timestamp']}")
        for check_name, result in results.get('checks', {}).items():
            print(f"  {check_name}: {result.get('status', 'unknown')} - {result.get('message', 'No message')}")

    return results['overall_status'] == 'healthy'


def preview_graph(graph_file: str):
    """Translate a graph file and print the document plus any defects."""
    from .core.mapper import map_graph, summarize_defects

    with open(graph_file, "r", encoding="utf-8") as f:
        graph = json.load(f)

    result = map_graph(graph.get("name", "Untitled"), graph.get("nodes", []), graph.get("edges", []))
    print(json.dumps(result.document.to_payload(), indent=2))

    defects = summarize_defects(result.defects)
    if defects:
        print(f"{len(defects)} defect(s) repaired:", file=sys.stderr)
        for defect in defects:
            print(f"  - {defect['message']}", file=sys.stderr)


def show_configuration(config: AppConfig):
    """Show current configuration with secrets masked."""
    print("Current Configuration:")
    for key, value in config.to_safe_dict().items():
        print(f"  {key}: {value}")


def validate_configuration_command(config: AppConfig):
    """Validate configuration and show results."""
    try:
        validate_config(config)
        print("Configuration validation: PASSED")
        print("All configuration settings are valid.")
    except ValueError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e}")
        sys.exit(1)


def main():
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        config = load_configuration(args)
        setup_logging(level=config.log_level.value, log_file=config.log_file, structured=config.log_structured)

        if args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            elif args.config_command == "validate":
                validate_configuration_command(config)
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)
            return

        if args.command == "preview":
            preview_graph(args.graph_file)
            return

        validate_config(config)

        if args.command == "run" or args.command is None:
            run_server(config, getattr(args, 'workers', 1))

        elif args.command == "db":
            if args.db_command:
                run_database_command(args.db_command, config)
            else:
                print("Database command required. Use --help for options.")
                sys.exit(1)

        elif args.command == "health":
            if not asyncio.run(run_health_check(config, args.detailed)):
                sys.exit(1)

        else:
            parser.print_help()

    except (ValueError, OSError, FlowSyncError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
