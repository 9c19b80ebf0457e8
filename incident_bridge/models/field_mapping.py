"""Field value and custom property mapping models"""
from sqlalchemy import Boolean, Column, Enum, Integer, String, UniqueConstraint
import enum
from incident_bridge.models.base import Base
from incident_bridge.models.artifact_mapping import ArtifactType


class FieldKind(str, enum.Enum):
    """Enumerated incident fields that are translated value-by-value"""
    SEVERITY = "severity"
    PRIORITY = "priority"
    STATUS = "status"
    TYPE = "type"


class FieldValueMapping(Base):
    """Per-project translation of one status/type/priority/severity value"""

    __tablename__ = "field_value_mappings"
    __table_args__ = (
        UniqueConstraint("project_id", "field", "internal_id", name="uq_field_value_internal"),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, nullable=False, index=True)
    field = Column(Enum(FieldKind), nullable=False)

    internal_id = Column(Integer, nullable=False)
    external_key = Column(String, nullable=False)

    # Several Spira values may point at the same Redmine value; the primary row
    # decides which one is used when translating back into Spira.
    is_primary = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<FieldValueMapping({self.field} {self.internal_id} <-> {self.external_key})>"


class CustomPropertyMapping(Base):
    """Spira custom property <-> Redmine custom field id"""

    __tablename__ = "custom_property_mappings"
    __table_args__ = (
        UniqueConstraint(
            "project_id", "artifact_type", "custom_property_id", name="uq_custom_property_mapping"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, nullable=False, index=True)
    artifact_type = Column(Enum(ArtifactType), nullable=False, default=ArtifactType.INCIDENT)
    custom_property_id = Column(Integer, nullable=False)
    external_key = Column(String, nullable=False)

    def __repr__(self):
        return f"<CustomPropertyMapping({self.custom_property_id} <-> {self.external_key})>"


class CustomPropertyValueMapping(Base):
    """List value of a Spira custom property <-> Redmine custom field value"""

    __tablename__ = "custom_property_value_mappings"
    __table_args__ = (
        UniqueConstraint(
            "project_id", "custom_property_id", "internal_id", name="uq_custom_property_value"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, nullable=False, index=True)
    custom_property_id = Column(Integer, nullable=False)
    internal_id = Column(Integer, nullable=False)
    external_key = Column(String, nullable=False)

    def __repr__(self):
        return f"<CustomPropertyValueMapping({self.internal_id} <-> {self.external_key})>"
