"""Incident synchronization service"""

import logging
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Optional

from sqlalchemy.orm import Session

from incident_bridge.config import Settings, settings as default_settings
from incident_bridge.exceptions import (
    ConnectivityError,
    DeserializationError,
    ProjectResolutionError,
    SyncInProgress,
)
from incident_bridge.models import ServiceReturnType, SyncRun
from incident_bridge.services.artifacts import RedmineProject, utcnow
from incident_bridge.services.custom_fields import CustomFieldTranslator
from incident_bridge.services.exporter import IncidentExporter
from incident_bridge.services.importer import IssueImporter
from incident_bridge.services.mapping_repository import MappingRepository, ProjectMappings
from incident_bridge.services.paging import PAGE_SIZE, fetch_all
from incident_bridge.services.redmine_client import RedmineClient
from incident_bridge.services.releases import ReleaseResolver
from incident_bridge.services.results import ItemResult, SyncReport
from incident_bridge.services.spira_client import SpiraClient
from incident_bridge.services.users import build_user_resolver

logger = logging.getLogger(__name__)

CLIENT_ID = "IncidentBridge"
DEFAULT_LAST_SYNC_DATE = datetime(1950, 1, 1)
IMPORT_FILTER_FLOOR = datetime(1990, 1, 1)

# Scheduled and manually triggered runs share the mapping state
_run_lock = Lock()


class SyncService:
    """Runs both sync phases for every mapped project"""

    def __init__(
        self,
        db: Session,
        spira: Optional[SpiraClient] = None,
        redmine: Optional[RedmineClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.repository = MappingRepository(db)
        self.spira = spira or SpiraClient(
            self.settings.spira_base_url,
            self.settings.spira_login,
            self.settings.spira_api_key,
            timeout=self.settings.http_timeout_seconds,
        )
        self.redmine = redmine or RedmineClient(
            self.settings.redmine_url,
            self.settings.redmine_login,
            self.settings.redmine_password,
            timeout=self.settings.http_timeout_seconds,
        )
        self.report = SyncReport()
        self.product_name = "Spira"

    def _authenticate_spira(self) -> bool:
        return self.spira.authenticate(self.settings.spira_login, self.settings.spira_api_key, CLIENT_ID)

    def _check_connectivity(self) -> bool:
        try:
            projects = self.redmine.get_projects()
        except Exception as e:
            logger.error(f"Unable to reach Redmine at {self.settings.redmine_url}: {e}")
            return False
        if not projects:
            logger.error(f"Redmine at {self.settings.redmine_url} returned no projects, check the login permissions")
            return False

        if not self._authenticate_spira():
            logger.error("Unable to authenticate with the Spira API, stopping data-synchronization")
            return False
        self.product_name = self.spira.get_product_name()
        return True

    def execute(self, last_sync_date: Optional[datetime], server_date_time: datetime) -> ServiceReturnType:
        """Run one data-sync; never raises."""
        self.report = SyncReport()
        logger.info(f"Starting data-sync (last sync {last_sync_date}, server time {server_date_time})")
        try:
            if not self._check_connectivity():
                return ServiceReturnType.ERROR

            for project_mapping in self.repository.list_project_mappings():
                try:
                    self._sync_project(project_mapping.project_id, project_mapping.external_key, last_sync_date)
                except ProjectResolutionError as e:
                    logger.error(str(e))
                    self.report.skipped_projects.append(project_mapping.project_id)
        except ConnectivityError as e:
            logger.error(f"Connection lost during data-sync: {e}")
            return ServiceReturnType.ERROR
        except Exception as e:
            logger.exception(f"General error during data-sync: {e}")
            return ServiceReturnType.ERROR

        counts = self.report.counts()
        logger.info(
            f"Data-sync completed: {counts}, skipped projects: {self.report.skipped_projects or 'none'}"
        )
        if self.report.has_problems():
            return ServiceReturnType.WARNING
        return ServiceReturnType.SUCCESS

    def _connect_project(self, project_id: int):
        if not self.spira.connect_to_project(project_id):
            raise ProjectResolutionError(
                f"Unable to connect to {self.product_name} project PR{project_id}, "
                "please check that the login has the appropriate permissions"
            )

    def _resolve_redmine_project(self, external_key: str) -> RedmineProject:
        try:
            return self.redmine.get_project(external_key)
        except Exception as e:
            raise ProjectResolutionError(
                f"Unable to retrieve project '{external_key}' from Redmine ({e}), skipping this project. "
                "Make sure the project mapping's external key is the Redmine project identifier, not the display name"
            ) from e

    def _load(self, project_id: int, external_key: str) -> ProjectMappings:
        try:
            definitions = self.spira.get_custom_property_definitions()
        except ConnectivityError:
            raise
        except Exception as e:
            raise ProjectResolutionError(
                f"Unable to read incident custom properties of project PR{project_id}: {e}"
            ) from e
        return self.repository.load_project_mappings(project_id, external_key, definitions)

    def _sync_project(self, project_id: int, external_key: str, last_sync_date: Optional[datetime]):
        self._connect_project(project_id)
        redmine_project = self._resolve_redmine_project(external_key)
        logger.info(f"Syncing project PR{project_id} with Redmine project '{redmine_project.name}' ({redmine_project.identifier})")

        since = last_sync_date or DEFAULT_LAST_SYNC_DATE

        if self.settings.create_new_items_in_redmine:
            self._export_phase(project_id, external_key, redmine_project, since)

        # Long batches may outlive the session
        if not self._authenticate_spira():
            raise ConnectivityError(f"Unable to re-authenticate with {self.product_name}")
        if not self.spira.connect_to_project(project_id):
            raise ConnectivityError(f"Unable to reconnect to {self.product_name} project PR{project_id}")

        self._import_phase(project_id, external_key, redmine_project, since)

    def _guarded(self, key: str, fn: Callable[[], ItemResult]) -> ItemResult:
        try:
            return fn()
        except ConnectivityError:
            raise
        except Exception as e:
            logger.error(f"{key}: unexpected error: {e}")
            return ItemResult.failed(key, str(e))

    def _phase_components(self, mappings: ProjectMappings):
        users = build_user_resolver(self.settings.auto_map_users, mappings.users, self.spira, self.redmine)
        releases = ReleaseResolver(self.spira, self.redmine, mappings.project_id, mappings.ledger)
        translator = CustomFieldTranslator(mappings.custom_properties)
        return users, releases, translator

    def _export_phase(self, project_id: int, external_key: str, redmine_project: RedmineProject, since: datetime):
        mappings = self._load(project_id, external_key)
        users, releases, translator = self._phase_components(mappings)
        exporter = IncidentExporter(
            self.spira,
            self.redmine,
            mappings,
            redmine_project.project_id,
            users,
            releases,
            translator,
            product_name=self.product_name,
            link_url_template=self.settings.external_issue_url_template,
        )

        try:
            total = self.spira.count_incidents()
            incidents = fetch_all(
                lambda start, size: self.spira.get_new_incidents(since, start, size),
                PAGE_SIZE,
                total=total,
                first_index=1,
            )
            logger.info(f"Found {len(incidents)} new incidents in {self.product_name} project PR{project_id}")

            for incident in incidents:
                result = self._guarded(f"IN{incident.incident_id}", lambda: exporter.process(incident))
                mappings.ledger.merge(result.delta)
                self.report.add(result)
        finally:
            self.repository.flush_delta(mappings.ledger.pending)
        logger.info(f"Export phase for PR{project_id} done, pending mappings flushed")

    def _import_phase(self, project_id: int, external_key: str, redmine_project: RedmineProject, since: datetime):
        mappings = self._load(project_id, external_key)
        users, releases, translator = self._phase_components(mappings)
        importer = IssueImporter(
            self.spira,
            self.redmine,
            mappings,
            redmine_project.project_id,
            users,
            releases,
            translator,
            create_new_items=self.settings.create_new_items_in_spira,
            link_url_template=self.settings.external_issue_url_template,
        )

        filter_date = since - timedelta(hours=self.settings.time_offset_hours)
        if filter_date < IMPORT_FILTER_FLOOR:
            filter_date = IMPORT_FILTER_FLOOR

        try:
            summaries = fetch_all(
                lambda offset, limit: self.redmine.get_issues(redmine_project.project_id, filter_date, offset, limit),
                PAGE_SIZE,
            )
            logger.info(f"Found {len(summaries)} new or updated issues in Redmine project '{redmine_project.identifier}'")

            for summary in summaries:
                result = self._guarded(f"#{summary.issue_id}", lambda: self._import_one(importer, summary.issue_id))
                mappings.ledger.merge(result.delta)
                self.report.add(result)
        finally:
            self.repository.flush_delta(mappings.ledger.pending)
        logger.info(f"Import phase for PR{project_id} done, pending mappings flushed")

    def _import_one(self, importer: IssueImporter, issue_id: int) -> ItemResult:
        try:
            issue = self.redmine.get_issue(issue_id)
        except DeserializationError as e:
            logger.error(f"#{issue_id}: unable to deserialize Redmine issue: {e}")
            logger.error(f"#{issue_id}: response payload: {e.raw}")
            return ItemResult.failed(f"#{issue_id}", str(e))
        return importer.process(issue)


def last_successful_sync_date(db: Session) -> Optional[datetime]:
    """Server time of the latest run that did not end in error."""
    run = (
        db.query(SyncRun)
        .filter(SyncRun.result.in_([ServiceReturnType.SUCCESS, ServiceReturnType.WARNING]))
        .order_by(SyncRun.server_date_time.desc())
        .first()
    )
    return run.server_date_time if run else None


def run_sync(db: Session, service: Optional[SyncService] = None) -> SyncRun:
    """Execute one data-sync and record it as a SyncRun.

    Raises SyncInProgress when another run holds the lock.
    """
    if not _run_lock.acquire(blocking=False):
        raise SyncInProgress("A data-sync is already running")
    try:
        return _run_sync(db, service)
    finally:
        _run_lock.release()


def _run_sync(db: Session, service: Optional[SyncService]) -> SyncRun:
    server_date_time = utcnow()
    last_sync_date = last_successful_sync_date(db)
    run = SyncRun(started_at=server_date_time, last_sync_date=last_sync_date, server_date_time=server_date_time)

    service = service or SyncService(db)
    result = service.execute(last_sync_date, server_date_time)

    counts = service.report.counts()
    run.result = result
    run.finished_at = utcnow()
    run.created = counts["created"]
    run.updated = counts["updated"]
    run.skipped = counts["skipped"]
    run.failed = counts["failed"]
    failures = [f"{r.key}: {r.error}" for r in service.report.failed]
    if service.report.skipped_projects:
        failures.insert(0, "skipped projects: " + ", ".join(f"PR{p}" for p in service.report.skipped_projects))
    run.message = "\n".join(failures) or None

    db.add(run)
    db.commit()
    db.refresh(run)
    return run
