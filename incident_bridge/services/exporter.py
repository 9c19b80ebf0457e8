"""Phase 1: push new Spira incidents to Redmine"""

import logging
from typing import Optional

from incident_bridge.exceptions import ConnectivityError, ValidationFault
from incident_bridge.services.artifacts import AttachmentType, Document, Incident, Issue, SpiraArtifactType
from incident_bridge.services.custom_fields import CustomFieldTranslator
from incident_bridge.services.mapping_repository import DataMapping, ProjectMappings
from incident_bridge.services.releases import ReleaseResolver
from incident_bridge.services.results import ItemResult, MappingDelta
from incident_bridge.services.users import UserResolver

logger = logging.getLogger(__name__)


def _redmine_id(external_key: Optional[str]) -> Optional[int]:
    try:
        return int(external_key)
    except (TypeError, ValueError):
        return None


def _as_int(external_key: str, what: str) -> Optional[int]:
    value = _redmine_id(external_key)
    if value is None:
        logger.warning(f"Mapped Redmine {what} '{external_key}' is not a numeric id, leaving it unset")
    return value


class IncidentExporter:
    """Creates one Redmine issue per unmapped Spira incident."""

    def __init__(
        self,
        spira,
        redmine,
        mappings: ProjectMappings,
        redmine_project_id: int,
        users: UserResolver,
        releases: ReleaseResolver,
        translator: CustomFieldTranslator,
        *,
        product_name: str = "Spira",
        link_url_template: Optional[str] = None,
    ):
        self.spira = spira
        self.redmine = redmine
        self.mappings = mappings
        self.project_id = mappings.project_id
        self.redmine_project_id = redmine_project_id
        self.users = users
        self.releases = releases
        self.translator = translator
        self.product_name = product_name
        self.link_url_template = link_url_template

    def process(self, incident: Incident) -> ItemResult:
        key = f"IN{incident.incident_id}"
        delta = MappingDelta()

        if self.mappings.ledger.incident_by_internal(self.project_id, incident.incident_id) is not None:
            return ItemResult.skipped(key, "already mapped", delta)

        # Required translations; an empty or non-numeric key has no Redmine equivalent
        status = self.mappings.status.by_internal(self.project_id, incident.status_id)
        status_id = _redmine_id(status.external_key) if status is not None else None
        if status_id is None:
            logger.error(f"{key}: no Redmine status mapped for incident status {incident.status_id} in project PR{self.project_id}")
            return ItemResult.skipped(key, f"unmapped status {incident.status_id}", delta)
        tracker = self.mappings.type.by_internal(self.project_id, incident.type_id)
        tracker_id = _redmine_id(tracker.external_key) if tracker is not None else None
        if tracker_id is None:
            logger.error(f"{key}: no Redmine tracker mapped for incident type {incident.type_id} in project PR{self.project_id}")
            return ItemResult.skipped(key, f"unmapped type {incident.type_id}", delta)

        try:
            try:
                logger.debug(f"{key}: exporting {self.spira.get_incident_url(incident.incident_id)}")
            except ConnectivityError:
                raise
            except Exception as e:
                logger.debug(f"{key}: could not resolve incident URL: {e}")

            issue = self._build_issue(incident, key, status_id, tracker_id, delta)
            created = self.redmine.create_issue(issue)
        except ConnectivityError:
            raise
        except ValidationFault as e:
            logger.error(f"{key}: Redmine rejected the new issue: {e}")
            return ItemResult.failed(key, str(e), delta)
        except Exception as e:
            logger.error(f"{key}: failed to create Redmine issue: {e}")
            return ItemResult.failed(key, str(e), delta)

        issue_id = created.issue_id
        delta.incidents_added.append(DataMapping(self.project_id, incident.incident_id, str(issue_id)))
        logger.info(f"{key}: created Redmine issue #{issue_id}")

        self._add_link_back(incident, key, issue_id)
        self._copy_comments(incident, key, issue_id)
        self._copy_attachments(incident, key, issue_id)
        self._copy_associations(incident, key, issue_id, delta)
        return ItemResult.created(key, delta)

    def _build_issue(self, incident: Incident, key: str, status_id: int, tracker_id: int, delta: MappingDelta) -> Issue:
        priority_id = None
        if incident.priority_id is not None:
            priority = self.mappings.priority.by_internal(self.project_id, incident.priority_id)
            if priority is None:
                logger.warning(f"{key}: no Redmine priority mapped for priority {incident.priority_id}, leaving it unset")
            else:
                priority_id = _as_int(priority.external_key, "priority")

        # Redmine has no severity field; a missing mapping is still reported
        if incident.severity_id is not None:
            if self.mappings.severity.by_internal(self.project_id, incident.severity_id) is None:
                logger.warning(f"{key}: no Redmine value mapped for severity {incident.severity_id}")

        author_id = None
        if incident.opener_id is not None:
            author_id = self.users.to_external(incident.opener_id)
            if author_id is None:
                logger.warning(f"{key}: no Redmine user for opener {incident.opener_id}, using the synchronization user")

        assigned_to_id = None
        if incident.owner_id is not None:
            assigned_to_id = self.users.to_external(incident.owner_id)
            if assigned_to_id is None:
                logger.warning(f"{key}: no Redmine user for owner {incident.owner_id}, leaving assignee empty")

        # Redmine has no "detected in" version: the version is created and
        # mapped but not set on the issue.
        if incident.detected_release_id is not None:
            self.releases.to_external(incident.detected_release_id, self.redmine_project_id, delta)

        fixed_version_id = None
        if incident.resolved_release_id is not None:
            fixed_version_id = self.releases.to_external(
                incident.resolved_release_id, self.redmine_project_id, delta, verify=True
            )

        estimated_hours = None
        if incident.estimated_effort is not None:
            estimated_hours = incident.estimated_effort / 60.0

        return Issue(
            project_id=self.redmine_project_id,
            subject=incident.name,
            description=incident.plain_description,
            status_id=status_id,
            tracker_id=tracker_id,
            priority_id=priority_id,
            author_id=author_id,
            assigned_to_id=assigned_to_id,
            fixed_version_id=fixed_version_id,
            start_date=incident.start_date,
            due_date=incident.closed_date,
            estimated_hours=estimated_hours,
            done_ratio=incident.completion_percent or 0,
            created_on=incident.creation_date,
            updated_on=incident.last_update_date,
            custom_fields=self.translator.to_external(incident.custom_properties, key),
        )

    def _add_link_back(self, incident: Incident, key: str, issue_id: int):
        if not self.link_url_template:
            return
        try:
            url = self.redmine.url + self.link_url_template.format(key=issue_id)
            self.spira.add_url_document(
                Document(
                    filename_or_url=url,
                    attachment_type=AttachmentType.URL,
                    description="Link to issue in Redmine",
                    artifact_id=incident.incident_id,
                    artifact_type=SpiraArtifactType.INCIDENT,
                )
            )
        except Exception as e:
            logger.error(f"{key}: failed to add link to Redmine issue #{issue_id}: {e}")

    def _copy_comments(self, incident: Incident, key: str, issue_id: int):
        try:
            comments = self.spira.get_comments(incident.incident_id)
        except Exception as e:
            logger.error(f"{key}: failed to read comments: {e}")
            return
        for comment in comments:
            if not (comment.text or "").strip():
                continue
            try:
                self.redmine.add_note(issue_id, comment.text)
            except Exception as e:
                logger.error(f"{key}: failed to copy comment {comment.comment_id} to Redmine issue #{issue_id}: {e}")

    def _copy_attachments(self, incident: Incident, key: str, issue_id: int):
        try:
            documents = self.spira.get_documents(incident.incident_id)
        except Exception as e:
            logger.error(f"{key}: failed to read attachments: {e}")
            return

        uploads = []
        for document in documents:
            # Redmine only supports file attachments
            if document.attachment_type != AttachmentType.FILE:
                continue
            try:
                data = self.spira.open_document(document.attachment_id)
                if not data:
                    continue
                token = self.redmine.upload(data, document.filename_or_url)
                uploads.append(
                    {
                        "token": token,
                        "filename": document.filename_or_url,
                        "description": document.description or "",
                    }
                )
            except Exception as e:
                logger.error(
                    f"{key}: failed to copy attachment DC{document.attachment_id} to Redmine "
                    f"(the issue itself was added): {e}"
                )

        if not uploads:
            return
        try:
            self.redmine.attach_uploads(issue_id, uploads, notes=f"Adding attachments from {self.product_name}")
        except Exception as e:
            logger.error(f"{key}: failed to attach files to Redmine issue #{issue_id} (the issue itself was added): {e}")

    def _copy_associations(self, incident: Incident, key: str, issue_id: int, delta: MappingDelta):
        try:
            associations = self.spira.get_associations(incident.incident_id)
        except Exception as e:
            logger.error(f"{key}: failed to read associations: {e}")
            return

        for association in associations:
            if association.dest_artifact_type != SpiraArtifactType.INCIDENT:
                continue
            target = self.mappings.ledger.incident_by_internal(self.project_id, association.dest_artifact_id)
