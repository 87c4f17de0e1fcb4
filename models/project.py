from sqlalchemy import Column, String, Integer, DateTime, Text, Index
from sqlalchemy.dialects.postgresql import JSONB, UUID
from datetime import datetime
import uuid
from models.base import Base


class Project(Base):
    """
    A configured crawl target.

    Design:
    - request_params is the ordered parameter template
      ({key, type, default, required, options, length, save_to_database})
    - response_structure is the ordered field definition list of the
      current schema version
    - version only ever moves forward, once per schema change
    """
    __tablename__ = "projects"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)

    # Fetch target
    api_url = Column(Text, nullable=False)
    method = Column(String(10), nullable=False, default="GET")
    request_params = Column(JSONB, nullable=False, default=list)
    target_chain = Column(JSONB, nullable=True)  # e.g. ["data", "list"]

    # Schema
    response_structure = Column(JSONB, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_project_created", "created_at"),
    )
