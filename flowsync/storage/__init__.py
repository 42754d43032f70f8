"""Database models and storage layer."""

from .database import Base, get_db, configure_database, create_tables, drop_tables
from .models import WorkflowModel, ExecutionModel, ExecutionLogModel

__all__ = [
    "Base",
    "get_db",
    "configure_database",
    "create_tables",
    "drop_tables",
    "WorkflowModel",
    "ExecutionModel",
    "ExecutionLogModel",
]
