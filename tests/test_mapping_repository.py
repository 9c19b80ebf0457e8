import logging
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

logging.disable(logging.CRITICAL)


def _m(project_id, internal_id, external_key, primary=True):
    from incident_bridge.services.mapping_repository import DataMapping

    return DataMapping(project_id, internal_id, external_key, primary)


class MappingIndexTests(unittest.TestCase):
    def test_lookups_are_scoped_by_project(self):
        from incident_bridge.services.mapping_repository import MappingIndex

        index = MappingIndex([_m(1, 10, "100"), _m(2, 10, "200")])

        self.assertEqual(index.by_internal(1, 10).external_key, "100")
        self.assertEqual(index.by_internal(2, 10).external_key, "200")
        self.assertIsNone(index.by_internal(3, 10))
        self.assertEqual(index.by_external(2, "200").internal_id, 10)
        # Integer keys are compared as text
        self.assertEqual(index.by_external(1, 100).internal_id, 10)

    def test_reverse_lookup_can_be_limited_to_primary_rows(self):
        from incident_bridge.services.mapping_repository import MappingIndex

        # Two Spira statuses share one Redmine status
        index = MappingIndex([_m(1, 5, "3", primary=False), _m(1, 6, "3", primary=True)])

        self.assertEqual(index.by_internal(1, 5).external_key, "3")
        self.assertEqual(index.by_external(1, "3", primary_only=True).internal_id, 6)

    def test_empty_external_key_is_never_a_match(self):
        from incident_bridge.services.mapping_repository import MappingIndex

        index = MappingIndex([_m(1, 5, "")])
        self.assertIsNone(index.by_external(1, ""))
        self.assertIsNone(index.by_external(1, None))
        self.assertIsNotNone(index.by_internal(1, 5))


class MappingLedgerTests(unittest.TestCase):
    def _ledger(self, incidents=(), releases=()):
        from incident_bridge.services.mapping_repository import MappingIndex, MappingLedger

        return MappingLedger(MappingIndex(incidents), MappingIndex(releases))

    def test_merged_deltas_are_visible_to_later_items(self):
        from incident_bridge.services.results import MappingDelta

        ledger = self._ledger(incidents=[_m(1, 10, "100")])
        self.assertIsNone(ledger.incident_by_internal(1, 11))

        ledger.merge(MappingDelta(incidents_added=[_m(1, 11, "101")], releases_added=[_m(1, 17, "9")]))

        self.assertEqual(ledger.incident_by_internal(1, 11).external_key, "101")
        self.assertEqual(ledger.incident_by_external(1, "101").internal_id, 11)
        self.assertEqual(ledger.release_by_internal(1, 17).external_key, "9")
        self.assertEqual(ledger.release_by_external(1, 9).internal_id, 17)
        # Persisted rows still win
        self.assertEqual(ledger.incident_by_internal(1, 10).external_key, "100")

    def test_removed_release_is_hidden(self):
        from incident_bridge.services.results import MappingDelta

        ledger = self._ledger(releases=[_m(1, 17, "5")])
        ledger.merge(MappingDelta(releases_removed=[_m(1, 17, "5")]))

        self.assertIsNone(ledger.release_by_internal(1, 17))
        self.assertIsNone(ledger.release_by_external(1, "5"))
        self.assertTrue(ledger.release_removed(1, 17))


class MappingRepositoryTests(unittest.TestCase):
    def setUp(self):
        from incident_bridge.models import Base

        self.engine = create_engine("sqlite://")
        Base.metadata.create_all(bind=self.engine)
        self.db = sessionmaker(bind=self.engine)()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_add_skips_duplicates_individually(self):
        from incident_bridge.models import ArtifactType
        from incident_bridge.services.mapping_repository import MappingRepository

        repo = MappingRepository(self.db)
        self.assertEqual(repo.add_artifact_mappings(ArtifactType.INCIDENT, [_m(1, 10, "100")]), 1)

        stored = repo.add_artifact_mappings(
            ArtifactType.INCIDENT,
            [_m(1, 10, "100"), _m(1, 11, "101"), _m(1, 12, "100")],
        )

        self.assertEqual(stored, 1)
        rows = repo.list_artifact_mappings(1, ArtifactType.INCIDENT)
        self.assertEqual(sorted((r.internal_id, r.external_key) for r in rows), [(10, "100"), (11, "101")])

    def test_incident_and_release_identities_do_not_collide(self):
        from incident_bridge.models import ArtifactType
        from incident_bridge.services.mapping_repository import MappingRepository

        repo = MappingRepository(self.db)
        repo.add_artifact_mappings(ArtifactType.INCIDENT, [_m(1, 10, "100")])
        repo.add_artifact_mappings(ArtifactType.RELEASE, [_m(1, 10, "100")])

        self.assertEqual(len(repo.list_artifact_mappings(1, ArtifactType.INCIDENT)), 1)
        self.assertEqual(len(repo.list_artifact_mappings(1, ArtifactType.RELEASE)), 1)

    def test_flush_removes_before_adding(self):
        from incident_bridge.models import ArtifactType
        from incident_bridge.services.mapping_repository import MappingRepository
        from incident_bridge.services.results import MappingDelta

        repo = MappingRepository(self.db)
        repo.add_artifact_mappings(ArtifactType.RELEASE, [_m(1, 17, "5")])

        repo.flush_delta(
            MappingDelta(
                incidents_added=[_m(1, 10, "100")],
                releases_added=[_m(1, 17, "9")],
                releases_removed=[_m(1, 17, "5")],
            )
        )

        releases = repo.list_artifact_mappings(1, ArtifactType.RELEASE)
        self.assertEqual([(r.internal_id, r.external_key) for r in releases], [(17, "9")])
        self.assertEqual(len(repo.list_artifact_mappings(1, ArtifactType.INCIDENT)), 1)

    def test_load_project_mappings_builds_indexes(self):
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
        from incident_bridge.services.artifacts import CustomPropertyDefinition, CustomPropertyType
        from incident_bridge.services.mapping_repository import MappingRepository

        self.db.add_all(
            [
                ProjectMapping(project_id=1, external_key="web"),
                ProjectMapping(project_id=2, external_key="paused", sync_enabled=False),
                FieldValueMapping(project_id=1, field=FieldKind.STATUS, internal_id=1, external_key="2"),
                FieldValueMapping(project_id=1, field=FieldKind.TYPE, internal_id=3, external_key="1"),
                FieldValueMapping(project_id=2, field=FieldKind.STATUS, internal_id=1, external_key="7"),
                UserMapping(internal_user_id=4, external_key="40"),
                CustomPropertyMapping(project_id=1, custom_property_id=11, external_key="101"),
                CustomPropertyValueMapping(project_id=1, custom_property_id=11, internal_id=500, external_key="Red"),
                ArtifactMapping(project_id=1, artifact_type=ArtifactType.INCIDENT, internal_id=10, external_key="100"),
                ArtifactMapping(project_id=1, artifact_type=ArtifactType.RELEASE, internal_id=17, external_key="5"),
            ]
        )
        self.db.commit()

        repo = MappingRepository(self.db)
        self.assertEqual([p.project_id for p in repo.list_project_mappings()], [1])

        definitions = [
            CustomPropertyDefinition(11, 1, "Colour", CustomPropertyType.LIST),
            CustomPropertyDefinition(12, 2, "Notes", CustomPropertyType.TEXT),
        ]
        mappings = repo.load_project_mappings(1, "web", definitions)

        self.assertEqual(mappings.status.by_internal(1, 1).external_key, "2")
        self.assertEqual(mappings.type.by_external(1, "1").internal_id, 3)
        self.assertEqual(len(mappings.status), 1)
        self.assertEqual(mappings.users.by_internal(None, 4).external_key, "40")
        self.assertEqual(mappings.custom_properties[0].mapping.external_key, "101")
        self.assertEqual(mappings.custom_properties[0].values.by_external(1, "Red").internal_id, 500)
        self.assertIsNone(mappings.custom_properties[1].mapping)
        self.assertEqual(mappings.ledger.incident_by_external(1, "100").internal_id, 10)
        self.assertEqual(mappings.ledger.release_by_internal(1, 17).external_key, "5")


if __name__ == "__main__":
    unittest.main()
