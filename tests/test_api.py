import logging
import unittest
from datetime import datetime
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logging.disable(logging.CRITICAL)


class MappingApiTests(unittest.TestCase):
    def setUp(self):
        from incident_bridge.api import field_mappings, project_mappings, sync, user_mappings
        from incident_bridge.models import Base
        from incident_bridge.models.base import get_db

        self.engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(bind=self.engine)

        def _get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app = FastAPI()
        for module in (project_mappings, user_mappings, field_mappings, sync):
            app.include_router(module.router)
        app.dependency_overrides[get_db] = _get_db
        self.client = TestClient(app)

    def tearDown(self):
        self.engine.dispose()

    def test_project_mapping_lifecycle(self):
        created = self.client.post("/api/project-mappings/", json={"project_id": 1, "external_key": " web "})
        self.assertEqual(created.status_code, 200)
        body = created.json()
        self.assertEqual((body["project_id"], body["external_key"], body["sync_enabled"]), (1, "web", True))

        duplicate = self.client.post("/api/project-mappings/", json={"project_id": 1, "external_key": "other"})
        self.assertEqual(duplicate.status_code, 400)

        updated = self.client.put(f"/api/project-mappings/{body['id']}", json={"sync_enabled": False})
        self.assertFalse(updated.json()["sync_enabled"])

        self.assertEqual(self.client.delete(f"/api/project-mappings/{body['id']}").status_code, 200)
        self.assertEqual(self.client.get(f"/api/project-mappings/{body['id']}").status_code, 404)

    def test_blank_project_key_is_rejected(self):
        response = self.client.post("/api/project-mappings/", json={"project_id": 1, "external_key": "  "})
        self.assertEqual(response.status_code, 400)

    def test_user_mapping_is_unique_both_ways(self):
        self.assertEqual(
            self.client.post("/api/user-mappings/", json={"internal_user_id": 4, "external_key": "40"}).status_code, 200
        )
        self.assertEqual(
            self.client.post("/api/user-mappings/", json={"internal_user_id": 5, "external_key": "40"}).status_code, 400
        )
        self.assertEqual(
            self.client.post("/api/user-mappings/", json={"internal_user_id": 4, "external_key": "41"}).status_code, 400
        )
        self.assertEqual(len(self.client.get("/api/user-mappings/").json()), 1)

    def test_field_value_mappings_filter_by_field(self):
        for field, internal, external in (("status", 1, "1"), ("status", 2, "2"), ("priority", 1, "4")):
            response = self.client.post(
                "/api/field-mappings/",
                json={"project_id": 1, "field": field, "internal_id": internal, "external_key": external},
            )
            self.assertEqual(response.status_code, 200)

        statuses = self.client.get("/api/field-mappings/", params={"project_id": 1, "field": "status"}).json()
        self.assertEqual(sorted(m["internal_id"] for m in statuses), [1, 2])

        duplicate = self.client.post(
            "/api/field-mappings/",
            json={"project_id": 1, "field": "status", "internal_id": 1, "external_key": "3"},
        )
        self.assertEqual(duplicate.status_code, 400)

    def test_field_value_mapping_needs_numeric_redmine_id(self):
        for external_key in ("", "New"):
            response = self.client.post(
                "/api/field-mappings/",
                json={"project_id": 1, "field": "status", "internal_id": 1, "external_key": external_key},
            )
            self.assertEqual(response.status_code, 400)

        # Severity has no Redmine counterpart
        severity = self.client.post(
            "/api/field-mappings/",
            json={"project_id": 1, "field": "severity", "internal_id": 1, "external_key": ""},
        )
        self.assertEqual(severity.status_code, 200)

    def test_custom_property_mapping_needs_numeric_field_id(self):
        bad = self.client.post(
            "/api/field-mappings/custom-properties",
            json={"project_id": 1, "custom_property_id": 11, "external_key": "cf_os"},
        )
        self.assertEqual(bad.status_code, 400)

        good = self.client.post(
            "/api/field-mappings/custom-properties",
            json={"project_id": 1, "custom_property_id": 11, "external_key": "101"},
        )
        self.assertEqual(good.status_code, 200)
        self.assertEqual(good.json()["artifact_type"], "incident")

        value = self.client.post(
            "/api/field-mappings/custom-property-values",
            json={"project_id": 1, "custom_property_id": 11, "internal_id": 500, "external_key": "Red"},
        )
        self.assertEqual(value.status_code, 200)

    def test_trigger_runs_sync_and_lists_runs(self):
        from incident_bridge.models import ServiceReturnType, SyncRun

        def _fake_run_sync(db):
            run = SyncRun(
                started_at=datetime(2024, 1, 1, 12, 0),
                finished_at=datetime(2024, 1, 1, 12, 1),
                server_date_time=datetime(2024, 1, 1, 12, 0),
                result=ServiceReturnType.SUCCESS,
                created=2,
                updated=0,
                skipped=1,
                failed=0,
            )
            db.add(run)
            db.commit()
            db.refresh(run)
            return run

        with patch("incident_bridge.api.sync.run_sync", side_effect=_fake_run_sync):
            response = self.client.post("/api/sync/trigger")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["result"], "success")
        self.assertEqual(response.json()["created"], 2)

        runs = self.client.get("/api/sync/runs").json()
        self.assertEqual([r["skipped"] for r in runs], [1])

    def test_trigger_while_a_run_is_in_progress_is_a_conflict(self):
        from incident_bridge.exceptions import SyncInProgress

        with patch("incident_bridge.api.sync.run_sync", side_effect=SyncInProgress("A data-sync is already running")):
            response = self.client.post("/api/sync/trigger")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(self.client.get("/api/sync/runs").json(), [])

    def test_artifact_mappings_listing(self):
        from incident_bridge.models import ArtifactMapping, ArtifactType

        db = self.Session()
        db.add_all(
            [
                ArtifactMapping(project_id=1, artifact_type=ArtifactType.INCIDENT, internal_id=10, external_key="200"),
                ArtifactMapping(project_id=1, artifact_type=ArtifactType.RELEASE, internal_id=17, external_key="5"),
            ]
        )
        db.commit()
        db.close()

        releases = self.client.get("/api/sync/artifact-mappings", params={"artifact_type": "release"}).json()
        self.assertEqual([(m["internal_id"], m["external_key"]) for m in releases], [(17, "5")])


if __name__ == "__main__":
    unittest.main()
