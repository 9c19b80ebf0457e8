"""User mapping model"""
from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime
from incident_bridge.models.base import Base


class UserMapping(Base):
    """Spira user id <-> Redmine user id

    Only consulted when auto-mapping of users is disabled.
    """

    __tablename__ = "user_mappings"

    id = Column(Integer, primary_key=True, index=True)

    internal_user_id = Column(Integer, unique=True, nullable=False, index=True)
    external_key = Column(String, unique=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<UserMapping({self.internal_user_id} -> {self.external_key})>"
