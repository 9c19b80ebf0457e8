"""Project mapping model"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from incident_bridge.models.base import Base


class ProjectMapping(Base):
    """Spira project <-> Redmine project identifier"""

    __tablename__ = "project_mappings"

    id = Column(Integer, primary_key=True, index=True)

    # Spira project id
    project_id = Column(Integer, unique=True, nullable=False, index=True)

    # Redmine project identifier (the slug, not the display name)
    external_key = Column(String, nullable=False)

    sync_enabled = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<ProjectMapping(PR{self.project_id} -> '{self.external_key}')>"
