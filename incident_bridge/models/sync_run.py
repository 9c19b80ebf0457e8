"""Sync run model"""
from sqlalchemy import Column, Integer, DateTime, Text, Enum
from datetime import datetime
import enum
from incident_bridge.models.base import Base


class ServiceReturnType(str, enum.Enum):
    """Outcome of one data-sync run"""
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class SyncRun(Base):
    """Record of one execution of the data-sync"""

    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True, index=True)

    started_at = Column(DateTime, default=datetime.utcnow, index=True)
    finished_at = Column(DateTime, nullable=True)

    # Date passed in as "last successful sync" and the server time of this run.
    # The next run uses server_date_time of the latest non-error run.
    last_sync_date = Column(DateTime, nullable=True)
    server_date_time = Column(DateTime, nullable=False)

    result = Column(Enum(ServiceReturnType), nullable=True)

    created = Column(Integer, default=0)
    updated = Column(Integer, default=0)
    skipped = Column(Integer, default=0)
    failed = Column(Integer, default=0)
    message = Column(Text, nullable=True)

    def __repr__(self):
        return f"<SyncRun(result={self.result}, server_date_time={self.server_date_time})>"
