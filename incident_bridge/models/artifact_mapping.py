"""Artifact mapping model"""
from sqlalchemy import Column, Integer, String, DateTime, Enum, UniqueConstraint
from datetime import datetime, timezone
import enum
from incident_bridge.models.base import Base


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ArtifactType(str, enum.Enum):
    """Artifact types that carry cross-system identity"""
    INCIDENT = "incident"
    RELEASE = "release"


class ArtifactMapping(Base):
    """Identity link between a Spira artifact and its Redmine counterpart"""

    __tablename__ = "artifact_mappings"
    __table_args__ = (
        UniqueConstraint("project_id", "artifact_type", "internal_id", name="uq_artifact_mappings_internal"),
        UniqueConstraint("project_id", "artifact_type", "external_key", name="uq_artifact_mappings_external"),
    )

    id = Column(Integer, primary_key=True, index=True)

    project_id = Column(Integer, nullable=False, index=True)
    artifact_type = Column(Enum(ArtifactType), nullable=False)

    # Spira incident/release id
    internal_id = Column(Integer, nullable=False)
    # Redmine issue/version id
    external_key = Column(String, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return (
            f"<ArtifactMapping({self.artifact_type} PR{self.project_id}:"
            f"{self.internal_id} <-> {self.external_key})>"
        )
