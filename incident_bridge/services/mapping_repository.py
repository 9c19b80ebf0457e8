"""Mapping repository: persisted cross-system identities and lookup indexes"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from incident_bridge.models import (
    ArtifactMapping,
    ArtifactType,
    CustomPropertyMapping,
    CustomPropertyValueMapping,
    FieldKind,
    FieldValueMapping,
    ProjectMapping,
    UserMapping,
)

if TYPE_CHECKING:
    from incident_bridge.services.artifacts import CustomPropertyDefinition
    from incident_bridge.services.results import MappingDelta

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataMapping:
    """One identity link. An empty external key means "no external equivalent"."""

    project_id: Optional[int]
    internal_id: int
    external_key: str
    primary: bool = True


class MappingIndex:
    """Immutable lookup over a set of mappings.

    Keyed by (project_id, internal_id) and (project_id, external_key). When
    several rows share an external key, the reverse lookup can be limited to
    the primary row.
    """

    def __init__(self, mappings: Iterable[DataMapping] = ()):
        self._rows: Tuple[DataMapping, ...] = tuple(mappings)
        by_internal: Dict[Tuple[Optional[int], int], DataMapping] = {}
        by_external: Dict[Tuple[Optional[int], str], DataMapping] = {}
        by_external_primary: Dict[Tuple[Optional[int], str], DataMapping] = {}
        for row in self._rows:
            by_internal.setdefault((row.project_id, row.internal_id), row)
            if not row.external_key:
                continue
            by_external.setdefault((row.project_id, row.external_key), row)
            if row.primary:
                by_external_primary.setdefault((row.project_id, row.external_key), row)
        self._by_internal = by_internal
        self._by_external = by_external
        self._by_external_primary = by_external_primary

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self):
        return iter(self._rows)

    def by_internal(self, project_id: Optional[int], internal_id: Optional[int]) -> Optional[DataMapping]:
        if internal_id is None:
            return None
        return self._by_internal.get((project_id, int(internal_id)))

    def by_external(
        self, project_id: Optional[int], external_key, *, primary_only: bool = False
    ) -> Optional[DataMapping]:
        if external_key is None or str(external_key) == "":
            return None
        table = self._by_external_primary if primary_only else self._by_external
        return table.get((project_id, str(external_key)))


class MappingLedger:
    """Artifact identities visible during one phase of one project.

    Starts from the persisted index and merges each item's delta so later
    items of the same phase see what earlier items created or removed.
    """

    def __init__(self, incidents: MappingIndex, releases: MappingIndex):
        from incident_bridge.services.results import MappingDelta

        self.incidents = incidents
        self.releases = releases
        self.pending = MappingDelta()

    def merge(self, delta: "MappingDelta") -> None:
        self.pending.merge(delta)

    def _removed(self, mapping: DataMapping) -> bool:
        return any(
            r.internal_id == mapping.internal_id and r.external_key == mapping.external_key
            for r in self.pending.releases_removed
        )

    def incident_by_internal(self, project_id: int, internal_id: int) -> Optional[DataMapping]:
        found = self.incidents.by_internal(project_id, internal_id)
        if found:
            return found
        return next(
            (m for m in self.pending.incidents_added if m.project_id == project_id and m.internal_id == internal_id),
            None,
        )

    def incident_by_external(self, project_id: int, external_key) -> Optional[DataMapping]:
        found = self.incidents.by_external(project_id, external_key)
        if found:
            return found
        key = str(external_key)
        return next(
            (m for m in self.pending.incidents_added if m.project_id == project_id and m.external_key == key),
            None,
        )

    def release_by_internal(self, project_id: int, internal_id: int) -> Optional[DataMapping]:
        found = self.releases.by_internal(project_id, internal_id)
        if found and not self._removed(found):
            return found
        return next(
            (m for m in self.pending.releases_added if m.project_id == project_id and m.internal_id == internal_id),
            None,
        )

    def release_by_external(self, project_id: int, external_key) -> Optional[DataMapping]:
        found = self.releases.by_external(project_id, external_key)
        if found and not self._removed(found):
            return found
        key = str(external_key)
        return next(
            (m for m in self.pending.releases_added if m.project_id == project_id and m.external_key == key),
            None,
        )

    def release_removed(self, project_id: int, internal_id: int) -> bool:
        return any(r.project_id == project_id and r.internal_id == internal_id for r in self.pending.releases_removed)


@dataclass
class CustomPropertyMappings:
    """Custom property mapping of one property plus its list value mappings."""

    definition: "CustomPropertyDefinition"
    mapping: Optional[DataMapping]
    values: MappingIndex = field(default_factory=MappingIndex)


@dataclass
class ProjectMappings:
    """Read-only mapping tables of one project for one phase."""

    project_id: int
    external_project_key: str
    severity: MappingIndex
    priority: MappingIndex
    status: MappingIndex
    type: MappingIndex
    users: MappingIndex
    custom_properties: List[CustomPropertyMappings]
    ledger: MappingLedger


def _to_data_mapping(project_id: Optional[int], internal_id: int, external_key, primary: bool = True) -> DataMapping:
    return DataMapping(
        project_id=project_id,
        internal_id=int(internal_id),
        external_key="" if external_key is None else str(external_key),
        primary=bool(primary),
    )


class MappingRepository:
    """Read/write access to the mapping tables"""

    def __init__(self, db: Session):
        self.db = db

    def list_project_mappings(self) -> List[ProjectMapping]:
        return (
            self.db.query(ProjectMapping)
            .filter(ProjectMapping.sync_enabled == True)  # noqa: E712
            .order_by(ProjectMapping.project_id)
            .all()
        )

    def list_user_mappings(self) -> List[DataMapping]:
        rows = self.db.query(UserMapping).all()
        return [_to_data_mapping(None, r.internal_user_id, r.external_key) for r in rows]

    def list_field_value_mappings(self, project_id: int, field_kind: FieldKind) -> List[DataMapping]:
        rows = (
            self.db.query(FieldValueMapping)
            .filter(FieldValueMapping.project_id == project_id, FieldValueMapping.field == field_kind)
            .all()
        )
        return [_to_data_mapping(project_id, r.internal_id, r.external_key, r.is_primary) for r in rows]

    def get_custom_property_mapping(self, project_id: int, custom_property_id: int) -> Optional[DataMapping]:
        row = (
            self.db.query(CustomPropertyMapping)
            .filter(
                CustomPropertyMapping.project_id == project_id,
                CustomPropertyMapping.artifact_type == ArtifactType.INCIDENT,
                CustomPropertyMapping.custom_property_id == custom_property_id,
            )
            .first()
        )
        if row is None:
            return None
        return _to_data_mapping(project_id, row.custom_property_id, row.external_key)

    def list_custom_property_value_mappings(self, project_id: int, custom_property_id: int) -> List[DataMapping]:
        rows = (
            self.db.query(CustomPropertyValueMapping)
            .filter(
                CustomPropertyValueMapping.project_id == project_id,
                CustomPropertyValueMapping.custom_property_id == custom_property_id,
            )
            .all()
        )
        return [_to_data_mapping(project_id, r.internal_id, r.external_key) for r in rows]

    def list_artifact_mappings(self, project_id: int, artifact_type: ArtifactType) -> List[DataMapping]:
        rows = (
            self.db.query(ArtifactMapping)
            .filter(ArtifactMapping.project_id == project_id, ArtifactMapping.artifact_type == artifact_type)
            .all()
        )
        return [_to_data_mapping(project_id, r.internal_id, r.external_key) for r in rows]

    def _safe_commit_mapping(self, row: ArtifactMapping) -> bool:
        """Commit one mapping row, skipping it if the identity already exists."""
        try:
            self.db.add(row)
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                f"Skipped duplicate {row.artifact_type.value} mapping PR{row.project_id}:"
                f"{row.internal_id} <-> {row.external_key}"
            )
            return False

    def add_artifact_mappings(self, artifact_type: ArtifactType, mappings: List[DataMapping]) -> int:
        """Persist a batch of new mappings; returns how many were stored."""
        if not mappings:
            return 0

        def _row(m: DataMapping) -> ArtifactMapping:
            return ArtifactMapping(
                project_id=m.project_id,
                artifact_type=artifact_type,
                internal_id=m.internal_id,
                external_key=m.external_key,
            )

        try:
            self.db.add_all([_row(m) for m in mappings])
            self.db.commit()
            return len(mappings)
        except IntegrityError:
            # Fall back to row-by-row so one duplicate doesn't drop the batch.
            self.db.rollback()
            return sum(1 for m in mappings if self._safe_commit_mapping(_row(m)))

    def remove_artifact_mappings(self, artifact_type: ArtifactType, mappings: List[DataMapping]) -> int:
        removed = 0
        for m in mappings:
            removed += (
                self.db.query(ArtifactMapping)
                .filter(
                    ArtifactMapping.project_id == m.project_id,
                    ArtifactMapping.artifact_type == artifact_type,
                    ArtifactMapping.internal_id == m.internal_id,
                    ArtifactMapping.external_key == m.external_key,
                )
                .delete(synchronize_session=False)
            )
        if mappings:
            self.db.commit()
        return removed

    def flush_delta(self, delta: "MappingDelta") -> None:
        """Write a phase's accumulated identity changes.

        Removals go first so a re-created release can reuse its external key.
        """
        self.remove_artifact_mappings(ArtifactType.RELEASE, delta.releases_removed)
        self.add_artifact_mappings(ArtifactType.RELEASE, delta.releases_added)
        self.add_artifact_mappings(ArtifactType.INCIDENT, delta.incidents_added)

    def load_project_mappings(
        self,
        project_id: int,
        external_project_key: str,
        definitions: List["CustomPropertyDefinition"],
    ) -> ProjectMappings:
        """Build the read-only indexes for one project and one phase."""
        custom_properties = []
        for definition in definitions:
            mapping = self.get_custom_property_mapping(project_id, definition.custom_property_id)
            values = MappingIndex()
            if mapping is not None:
                values = MappingIndex(
                    self.list_custom_property_value_mappings(project_id, definition.custom_property_id)
                )
            custom_properties.append(CustomPropertyMappings(definition, mapping, values))

        return ProjectMappings(
            project_id=project_id,
            external_project_key=external_project_key,
            severity=MappingIndex(self.list_field_value_mappings(project_id, FieldKind.SEVERITY)),
            priority=MappingIndex(self.list_field_value_mappings(project_id, FieldKind.PRIORITY)),
            status=MappingIndex(self.list_field_value_mappings(project_id, FieldKind.STATUS)),
            type=MappingIndex(self.list_field_value_mappings(project_id, FieldKind.TYPE)),
            users=MappingIndex(self.list_user_mappings()),
            custom_properties=custom_properties,
            ledger=MappingLedger(
                MappingIndex(self.list_artifact_mappings(project_id, ArtifactType.INCIDENT)),
                MappingIndex(self.list_artifact_mappings(project_id, ArtifactType.RELEASE)),
            ),
        )
