"""Release <-> version resolution with mapping bookkeeping"""

import calendar
import logging
from datetime import datetime
from typing import Optional, Set

from incident_bridge.exceptions import ConnectivityError
from incident_bridge.services.artifacts import Release, Version, utcnow
from incident_bridge.services.mapping_repository import DataMapping, MappingLedger
from incident_bridge.services.results import MappingDelta

logger = logging.getLogger(__name__)

# Redmine version names are copied into the Spira version number field
VERSION_NUMBER_LENGTH = 10


def _add_month(dt: datetime) -> datetime:
    year = dt.year + (1 if dt.month == 12 else 0)
    month = 1 if dt.month == 12 else dt.month + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def _in_delta(delta: MappingDelta, project_id: int, *, internal_id=None, external_key=None) -> Optional[DataMapping]:
    for m in delta.releases_added:
        if m.project_id != project_id:
            continue
        if internal_id is not None and m.internal_id == internal_id:
            return m
        if external_key is not None and m.external_key == str(external_key):
            return m
    return None


class ReleaseResolver:
    """Resolves release identities for one project and one phase."""

    def __init__(self, spira, redmine, project_id: int, ledger: MappingLedger):
        self.spira = spira
        self.redmine = redmine
        self.project_id = project_id
        self.ledger = ledger
        # External versions already confirmed to exist during this phase
        self._verified: Set[str] = set()

    def _lookup_by_internal(self, release_id: int, delta: MappingDelta) -> Optional[DataMapping]:
        return self.ledger.release_by_internal(self.project_id, release_id) or _in_delta(
            delta, self.project_id, internal_id=release_id
        )

    def _version_exists(self, mapping: DataMapping) -> bool:
        if mapping.external_key in self._verified:
            return True
        try:
            version = self.redmine.get_version(int(mapping.external_key))
        except ValueError:
            return False
        if version is None:
            return False
        self._verified.add(mapping.external_key)
        return True

    def to_external(
        self,
        release_id: Optional[int],
        redmine_project_id: int,
        delta: MappingDelta,
        *,
        verify: bool = False,
    ) -> Optional[int]:
        """Redmine version id for a Spira release, creating the version if unmapped.

        With `verify`, a mapped version that no longer exists in Redmine is
        unmapped and None is returned.
        """
        if release_id is None:
            return None
        if self.ledger.release_removed(self.project_id, release_id):
            return None

        mapping = self._lookup_by_internal(release_id, delta)
        if mapping is not None:
            created_this_run = mapping in delta.releases_added or mapping in self.ledger.pending.releases_added
            if verify and not created_this_run and not self._version_exists(mapping):
                logger.warning(
                    f"Redmine version {mapping.external_key} mapped to release RL{release_id} no longer exists, removing mapping"
                )
                delta.releases_removed.append(mapping)
                return None
            return int(mapping.external_key)

        try:
            release = self.spira.get_release(release_id)
            version = self.redmine.create_version(
                Version(project_id=redmine_project_id, name=release.version_number or release.name, status="open")
            )
        except ConnectivityError:
            raise
        except Exception as e:
            logger.error(f"Unable to create Redmine version for release RL{release_id}: {e}")
            return None

        new_mapping = DataMapping(self.project_id, release_id, str(version.version_id))
        delta.releases_added.append(new_mapping)
        self._verified.add(new_mapping.external_key)
        logger.info(f"Mapped release RL{release_id} to new Redmine version {version.version_id}")
        return version.version_id

    def to_internal(
        self,
        version_id: Optional[int],
        version_name: Optional[str],
        delta: MappingDelta,
        creator_id: Optional[int] = None,
    ) -> Optional[int]:
        """Spira release id for a Redmine version, creating the release if unmapped."""
        if version_id is None:
            return None
        mapping = self.ledger.release_by_external(self.project_id, version_id) or _in_delta(
            delta, self.project_id, external_key=version_id
        )
        if mapping is not None:
            return mapping.internal_id

        name = (version_name or "").strip() or str(version_id)
        now = utcnow()
        try:
            release = self.spira.create_release(
                Release(
                    project_id=self.project_id,
                    name=name,
                    version_number=name[:VERSION_NUMBER_LENGTH],
                    active=True,
                    start_date=now,
                    end_date=_add_month(now),
                    creator_id=creator_id,
                )
            )
        except ConnectivityError:
            raise
        except Exception as e:
            logger.error(f"Unable to create Spira release for Redmine version {version_id}: {e}")
            return None

        delta.releases_added.append(DataMapping(self.project_id, release.release_id, str(version_id)))
        logger.info(f"Mapped Redmine version {version_id} to new release RL{release.release_id}")
        return release.release_id
