"""Database migrations for execution history queries."""

from sqlalchemy import text
from . import database
from ..core.logging import get_logger

logger = get_logger(__name__)


def create_indexes_for_execution_queries():
    """Create database indexes to optimize execution and log queries."""
    try:
        with database.engine.connect() as connection:
            # Executions of a workflow, newest first
            connection.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_executions_workflow_started
                ON executions(workflow_id, started_at)
            """))

            # Running executions are looked up on startup to resume polling
            connection.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_executions_status
                ON executions(status)
            """))

            # Logs are always read per execution in timestamp order
            connection.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_execution_logs_execution_timestamp
                ON execution_logs(execution_id, timestamp)
            """))

            connection.commit()
            logger.info("Successfully created database indexes for execution queries")

    except Exception as e:
        logger.error(f"Failed to create database indexes: {str(e)}")
        raise


def optimize_database():
    """Apply engine-specific settings for concurrent reads."""
    try:
        with database.engine.connect() as connection:
            if "sqlite" in str(database.engine.url) and database.engine.url.database not in (None, "", ":memory:"):
                # WAL lets the API read while a poller writes
                connection.execute(text("PRAGMA journal_mode=WAL"))
                connection.execute(text("PRAGMA optimize"))
                logger.info("Applied SQLite optimizations")

            connection.commit()

    except Exception as e:
        logger.error(f"Failed to optimize database: {str(e)}")
        raise


def run_migrations():
    """Run all migrations."""
    try:
        logger.info("Starting database migrations")
        create_indexes_for_execution_queries()
        optimize_database()
        logger.info("Database migrations completed successfully")

    except Exception as e:
        logger.error(f"Database migrations failed: {str(e)}")
        raise


if __name__ == "__main__":
    database.configure_database()
    run_migrations()
