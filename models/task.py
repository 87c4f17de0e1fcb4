from sqlalchemy import Column, Integer, DateTime, Text, Enum, ForeignKey, Index
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, TaskStatus


class Task(Base):
    """
    One execution attempt of a project's fetch-extract-dedup-persist cycle.

    Purpose:
    - Pin the schema version the task writes to (captured at creation)
    - Carry request parameter overrides for this run
    - Record outcome: status, result count, error, timestamps

    Status transitions are driven only by the ingestion runner.
    """
    __tablename__ = "tasks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id = Column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(Enum(TaskStatus), default=TaskStatus.PENDING, nullable=False, index=True)
    request_params = Column(JSONB, nullable=False, default=list)
    version = Column(Integer, nullable=False, default=1)

    # Outcome
    result_count = Column(Integer, nullable=True)  # NULL until completed
    error_message = Column(Text, nullable=True)

    # Timestamps
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    project = relationship("Project")

    __table_args__ = (
        Index("idx_task_project_status", "project_id", "status"),
    )
