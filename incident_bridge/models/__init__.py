"""Database models"""

from incident_bridge.models.base import Base
from incident_bridge.models.artifact_mapping import ArtifactMapping, ArtifactType
from incident_bridge.models.field_mapping import (
    CustomPropertyMapping,
    CustomPropertyValueMapping,
    FieldKind,
    FieldValueMapping,
)
from incident_bridge.models.project_mapping import ProjectMapping
from incident_bridge.models.sync_run import ServiceReturnType, SyncRun
from incident_bridge.models.user_mapping import UserMapping

__all__ = [
    "Base",
    "ProjectMapping",
    "ArtifactMapping",
    "ArtifactType",
    "FieldKind",
    "FieldValueMapping",
    "CustomPropertyMapping",
    "CustomPropertyValueMapping",
    "UserMapping",
    "SyncRun",
    "ServiceReturnType",
]
