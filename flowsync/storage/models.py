"""SQLAlchemy database models for flowsync."""

from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, ForeignKey
from sqlalchemy.orm import relationship

from ..models.core import utcnow
from .database import Base


class WorkflowModel(Base):
    """Database model for local workflows and their mirrored graph."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    status = Column(String, nullable=False, default="draft")  # draft, active, inactive, archived
    external_workflow_id = Column(String)
    last_synced_at = Column(DateTime)
    last_run_at = Column(DateTime)
    nodes = Column(JSON, nullable=False, default=list)
    edges = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    executions = relationship("ExecutionModel", back_populates="workflow")


class ExecutionModel(Base):
    """Database model for workflow executions."""
    __tablename__ = "executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False)
    status = Column(String, nullable=False)  # pending, running, success, failed, cancelled
    trigger_type = Column(String, default="api")
    trigger_data = Column(JSON, nullable=False, default=dict)
    input_data = Column(JSON)
    output_data = Column(JSON)
    error_message = Column(Text)
    error_details = Column(JSON)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    started_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime)
    duration_ms = Column(Integer)

    workflow = relationship("WorkflowModel", back_populates="executions")
    logs = relationship("ExecutionLogModel", back_populates="execution")


class ExecutionLogModel(Base):
    """Database model for execution log entries."""
    __tablename__ = "execution_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    execution_id = Column(String, ForeignKey("executions.id"), nullable=False)
    level = Column(String, nullable=False)  # debug, info, warning, error
    message = Column(Text, nullable=False)
    data = Column(JSON)
    node_id = Column(String)
    timestamp = Column(DateTime, default=utcnow)

    execution = relationship("ExecutionModel", back_populates="logs")
