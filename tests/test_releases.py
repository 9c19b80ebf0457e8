import logging
import unittest
from unittest.mock import Mock

logging.disable(logging.CRITICAL)

PROJECT = 1
REDMINE_PROJECT = 7


def _resolver(releases=(), spira=None, redmine=None):
    from incident_bridge.services.mapping_repository import DataMapping, MappingIndex, MappingLedger
    from incident_bridge.services.releases import ReleaseResolver

    ledger = MappingLedger(
        MappingIndex(),
        MappingIndex(DataMapping(PROJECT, internal, external) for internal, external in releases),
    )
    return ReleaseResolver(spira or Mock(), redmine or Mock(), PROJECT, ledger), ledger


class ReleaseToExternalTests(unittest.TestCase):
    def test_release_used_by_two_incidents_is_created_once(self):
        from incident_bridge.services.artifacts import Release, Version
        from incident_bridge.services.results import MappingDelta

        spira = Mock()
        spira.get_release.return_value = Release(PROJECT, "Spring drop", "2.1", release_id=17)
        redmine = Mock()
        redmine.create_version.return_value = Version(REDMINE_PROJECT, "2.1", version_id=90)
        resolver, ledger = _resolver(spira=spira, redmine=redmine)

        first = MappingDelta()
        self.assertEqual(resolver.to_external(17, REDMINE_PROJECT, first, verify=True), 90)
        ledger.merge(first)

        second = MappingDelta()
        self.assertEqual(resolver.to_external(17, REDMINE_PROJECT, second, verify=True), 90)
        ledger.merge(second)

        redmine.create_version.assert_called_once()
        created = redmine.create_version.call_args[0][0]
        self.assertEqual((created.project_id, created.name, created.status), (REDMINE_PROJECT, "2.1", "open"))
        self.assertEqual(len(ledger.pending.releases_added), 1)
        self.assertEqual(ledger.pending.releases_added[0].external_key, "90")
        # Created this run, so never looked up again
        redmine.get_version.assert_not_called()

    def test_same_delta_is_consulted_before_creating(self):
        from incident_bridge.services.artifacts import Release, Version
        from incident_bridge.services.results import MappingDelta

        spira = Mock()
        spira.get_release.return_value = Release(PROJECT, "Spring drop", "", release_id=17)
        redmine = Mock()
        redmine.create_version.return_value = Version(REDMINE_PROJECT, "Spring drop", version_id=90)
        resolver, _ = _resolver(spira=spira, redmine=redmine)

        delta = MappingDelta()
        resolver.to_external(17, REDMINE_PROJECT, delta)
        resolver.to_external(17, REDMINE_PROJECT, delta, verify=True)

        redmine.create_version.assert_called_once()
        self.assertEqual(redmine.create_version.call_args[0][0].name, "Spring drop")
        self.assertEqual(len(delta.releases_added), 1)

    def test_mapped_version_is_verified_once(self):
        from incident_bridge.services.artifacts import Version
        from incident_bridge.services.results import MappingDelta

        redmine = Mock()
        redmine.get_version.return_value = Version(REDMINE_PROJECT, "2.0", version_id=5)
        resolver, _ = _resolver(releases=[(17, "5")], redmine=redmine)

        self.assertEqual(resolver.to_external(17, REDMINE_PROJECT, MappingDelta(), verify=True), 5)
        self.assertEqual(resolver.to_external(17, REDMINE_PROJECT, MappingDelta(), verify=True), 5)
        redmine.get_version.assert_called_once_with(5)

    def test_unverified_lookup_does_not_call_redmine(self):
        from incident_bridge.services.results import MappingDelta

        redmine = Mock()
        resolver, _ = _resolver(releases=[(17, "5")], redmine=redmine)

        self.assertEqual(resolver.to_external(17, REDMINE_PROJECT, MappingDelta()), 5)
        redmine.get_version.assert_not_called()

    def test_deleted_version_unmaps_release(self):
        from incident_bridge.services.results import MappingDelta

        redmine = Mock()
        redmine.get_version.return_value = None
        resolver, ledger = _resolver(releases=[(17, "5")], redmine=redmine)

        delta = MappingDelta()
        self.assertIsNone(resolver.to_external(17, REDMINE_PROJECT, delta, verify=True))
        self.assertEqual([(m.internal_id, m.external_key) for m in delta.releases_removed], [(17, "5")])
        ledger.merge(delta)

        # Later items see the removal and make no further calls
        self.assertIsNone(resolver.to_external(17, REDMINE_PROJECT, MappingDelta(), verify=True))
        redmine.get_version.assert_called_once()
        redmine.create_version.assert_not_called()

    def test_creation_failure_leaves_release_unset(self):
        from incident_bridge.exceptions import ValidationFault
        from incident_bridge.services.artifacts import Release
        from incident_bridge.services.results import MappingDelta

        spira = Mock()
        spira.get_release.return_value = Release(PROJECT, "R", "1.0", release_id=17)
        redmine = Mock()
        redmine.create_version.side_effect = ValidationFault("Invalid", [("name", "has already been taken")])
        resolver, _ = _resolver(spira=spira, redmine=redmine)

        delta = MappingDelta()
        self.assertIsNone(resolver.to_external(17, REDMINE_PROJECT, delta))
        self.assertTrue(delta.is_empty())

    def test_lost_connection_on_creation_propagates(self):
        from incident_bridge.exceptions import ConnectivityError
        from incident_bridge.services.artifacts import Release
        from incident_bridge.services.results import MappingDelta

        spira = Mock()
        spira.get_release.return_value = Release(PROJECT, "R", "1.0", release_id=17)
        redmine = Mock()
        redmine.create_version.side_effect = ConnectivityError("HTTP 503 after 3 attempts")
        resolver, _ = _resolver(spira=spira, redmine=redmine)

        with self.assertRaises(ConnectivityError):
            resolver.to_external(17, REDMINE_PROJECT, MappingDelta())

    def test_none_release_is_ignored(self):
        from incident_bridge.services.results import MappingDelta

        spira = Mock()
        resolver, _ = _resolver(spira=spira)
        self.assertIsNone(resolver.to_external(None, REDMINE_PROJECT, MappingDelta()))
        spira.get_release.assert_not_called()


class ReleaseToInternalTests(unittest.TestCase):
    def test_existing_mapping_is_reused(self):
        from incident_bridge.services.results import MappingDelta

        spira = Mock()
        resolver, _ = _resolver(releases=[(17, "5")], spira=spira)

        self.assertEqual(resolver.to_internal(5, "2.0", MappingDelta()), 17)
        spira.create_release.assert_not_called()

    def test_new_release_truncates_version_number(self):
        from incident_bridge.services.artifacts import Release
        from incident_bridge.services.results import MappingDelta

        spira = Mock()
        spira.create_release.side_effect = lambda r: Release(
            r.project_id, r.name, r.version_number, release_id=33
        )
        resolver, _ = _resolver(spira=spira)

        delta = MappingDelta()
        self.assertEqual(resolver.to_internal(12, "Long version name 2024", delta, creator_id=4), 33)

        release = spira.create_release.call_args[0][0]
        self.assertEqual(release.name, "Long version name 2024")
        self.assertEqual(release.version_number, "Long versi")
        self.assertTrue(release.active)
        self.assertEqual(release.creator_id, 4)
        self.assertGreater(release.end_date, release.start_date)
        self.assertEqual([(m.internal_id, m.external_key) for m in delta.releases_added], [(33, "12")])

        # Second issue with the same version in the same item
        self.assertEqual(resolver.to_internal(12, "Long version name 2024", delta), 33)
        spira.create_release.assert_called_once()

    def test_missing_version_name_uses_id(self):
        from incident_bridge.services.artifacts import Release
        from incident_bridge.services.results import MappingDelta

        spira = Mock()
        spira.create_release.return_value = Release(PROJECT, "12", "12", release_id=34)
        resolver, _ = _resolver(spira=spira)

        resolver.to_internal(12, None, MappingDelta())
        self.assertEqual(spira.create_release.call_args[0][0].name, "12")


class AddMonthTests(unittest.TestCase):
    def test_clamps_to_month_end(self):
        from datetime import datetime

        from incident_bridge.services.releases import _add_month

        self.assertEqual(_add_month(datetime(2024, 1, 31)), datetime(2024, 2, 29))
        self.assertEqual(_add_month(datetime(2024, 12, 15)), datetime(2025, 1, 15))


if __name__ == "__main__":
    unittest.main()
