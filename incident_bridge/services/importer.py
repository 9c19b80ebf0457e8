"""Phase 2: pull new and changed Redmine issues into Spira"""

import logging
from typing import List, Optional

from incident_bridge.exceptions import ConnectivityError, ValidationFault
from incident_bridge.services.artifacts import (
    Association,
    AttachmentType,
    Comment,
    Document,
    Incident,
    Issue,
    SpiraArtifactType,
    utcnow,
)
from incident_bridge.services.custom_fields import CustomFieldTranslator, apply_custom_property_values
from incident_bridge.services.mapping_repository import DataMapping, ProjectMappings
from incident_bridge.services.releases import ReleaseResolver
from incident_bridge.services.results import ItemResult, MappingDelta
from incident_bridge.services.users import UserResolver

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "Name Not Specified"
DESCRIPTION_PLACEHOLDER = "Description Not Specified"


class IssueImporter:
    """Creates or updates the Spira incident matching one Redmine issue."""

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
        create_new_items: bool = True,
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
        self.create_new_items = create_new_items
        self.link_url_template = link_url_template

    def process(self, issue: Issue) -> ItemResult:
        key = f"#{issue.issue_id}"
        delta = MappingDelta()

        if issue.project_id != self.redmine_project_id:
            return ItemResult.skipped(key, f"belongs to Redmine project {issue.project_id}", delta)

        mapping = self.mappings.ledger.incident_by_external(self.project_id, issue.issue_id)
        is_new = mapping is None

        if is_new:
            if not self.create_new_items:
                return ItemResult.skipped(key, "creating new incidents in Spira is disabled", delta)
            incident = self._new_incident(issue, key)
            existing_comments: List[Comment] = []
        else:
            try:
                incident = self.spira.get_incident(mapping.internal_id)
                existing_comments = self.spira.get_comments(mapping.internal_id)
            except ConnectivityError:
                raise
            except Exception as e:
                logger.error(f"{key}: unable to load mapped incident IN{mapping.internal_id}: {e}")
                return ItemResult.failed(key, str(e), delta)
            if issue.subject:
                incident.name = issue.subject
            if issue.description:
                incident.description = issue.description
            key = f"{key} (IN{incident.incident_id})"

        # Unmapped trackers are deliberately not imported
        tracker = self.mappings.type.by_external(self.project_id, issue.tracker_id, primary_only=True)
        if issue.tracker_id is not None and tracker is None and is_new:
            return ItemResult.skipped(key, f"unmapped tracker {issue.tracker_id}", delta)

        try:
            self._apply_fields(issue, incident, key, tracker)
            comments = self._stage_comments(issue, existing_comments, key)
            incident.resolved_release_id = self._resolve_release(issue, incident, delta)
            incident.custom_properties = apply_custom_property_values(
                incident.custom_properties, self.translator.to_internal(issue.custom_fields, key)
            )
        except ConnectivityError:
            raise
        except Exception as e:
            logger.error(f"{key}: failed to translate issue: {e}")
            return ItemResult.failed(key, str(e), delta)

        if is_new:
            return self._create(issue, incident, comments, key, delta)
        return self._update(incident, comments, key, delta)

    def _new_incident(self, issue: Issue, key: str) -> Incident:
        incident = Incident(
            project_id=self.project_id,
            name=issue.subject or NAME_PLACEHOLDER,
            description=issue.description or DESCRIPTION_PLACEHOLDER,
            creation_date=issue.created_on,
        )
        if issue.author_id is not None:
            incident.opener_id = self.users.to_internal(issue.author_id)
            if incident.opener_id is None:
                logger.warning(f"{key}: no Spira user for Redmine user {issue.author_id}, using the synchronization user as detector")
        return incident

    def _apply_fields(self, issue: Issue, incident: Incident, key: str, tracker: Optional[DataMapping]):
        if issue.priority_id is None:
            incident.priority_id = None
        else:
            priority = self.mappings.priority.by_external(self.project_id, issue.priority_id, primary_only=True)
            if priority is None:
                logger.warning(f"{key}: no Spira priority mapped for Redmine priority {issue.priority_id}")
            else:
                incident.priority_id = priority.internal_id

        # Redmine has no severity, so the incident's severity is left as is.

        if issue.status_id is not None:
            status = self.mappings.status.by_external(self.project_id, issue.status_id, primary_only=True)
            if status is None:
                logger.error(f"{key}: no Spira incident status mapped for Redmine status {issue.status_id} in project PR{self.project_id}")
            else:
                incident.status_id = status.internal_id

        if issue.tracker_id is not None:
            if tracker is None:
                logger.error(f"{key}: no Spira incident type mapped for Redmine tracker {issue.tracker_id} in project PR{self.project_id}")
            else:
                incident.type_id = tracker.internal_id

        if issue.assigned_to_id is not None:
            owner_id = self.users.to_internal(issue.assigned_to_id)
            if owner_id is None:
                logger.warning(f"{key}: no Spira user for Redmine user {issue.assigned_to_id}, ignoring the assignee")
            else:
                incident.owner_id = owner_id

        if issue.start_date is not None:
            incident.start_date = issue.start_date
        if issue.due_date is not None:
            incident.closed_date = issue.due_date

        if issue.estimated_hours is not None:
            estimated = issue.estimated_hours
            incident.estimated_effort = int(round(estimated * 60))
            done = issue.done_ratio or 0
            remaining = (estimated - estimated * done / 100.0) * 60
            if remaining > 0:
                incident.remaining_effort = int(round(remaining))

    def _stage_comments(self, issue: Issue, existing: List[Comment], key: str) -> List[Comment]:
        seen = {(c.text or "").strip() for c in existing}
        staged = []
        for journal in issue.journals:
            text = (journal.notes or "").strip()
            if not text or text in seen:
                continue
            creator_id = None
            if journal.user_id is not None:
                creator_id = self.users.to_internal(journal.user_id)
                if creator_id is None:
                    logger.debug(f"{key}: journal {journal.journal_id} author {journal.user_id} is not mapped")
            staged.append(
                Comment(
                    text=journal.notes,
                    artifact_id=None,
                    creator_id=creator_id,
                    creation_date=journal.created_on or utcnow(),
                )
            )
            seen.add(text)
        return staged

    def _resolve_release(self, issue: Issue, incident: Incident, delta: MappingDelta) -> Optional[int]:
        if issue.fixed_version_id is None:
            return incident.resolved_release_id
        release_id = self.releases.to_internal(
            issue.fixed_version_id, issue.fixed_version_name, delta, creator_id=incident.opener_id
        )
        # Left unset rather than dangling when the release cannot be created
        return release_id

    def _create(self, issue: Issue, incident: Incident, comments: List[Comment], key: str, delta: MappingDelta) -> ItemResult:
        try:
            created = self.spira.create_incident(incident)
        except ConnectivityError:
            raise
        except ValidationFault as e:
            logger.error(f"{key}: Spira rejected the new incident: {e}")
            return ItemResult.failed(key, str(e), delta)
        except Exception as e:
            logger.error(f"{key}: failed to add issue to Spira: {e}")
            return ItemResult.failed(key, str(e), delta)

        incident_id = created.incident_id
        delta.incidents_added.append(DataMapping(self.project_id, incident_id, str(issue.issue_id)))
        logger.info(f"{key}: created Spira incident IN{incident_id}")

        for comment in comments:
            comment.artifact_id = incident_id
        try:
            self.spira.add_comments(comments)
        except Exception as e:
            logger.error(f"{key}: failed to add comments to IN{incident_id}: {e}")

        self._add_link_back(issue, key, incident_id)
        self._copy_attachments(issue, key, incident_id)
        self._copy_relations(issue, key, incident_id, delta)
        return ItemResult.created(key, delta)

    def _update(self, incident: Incident, comments: List[Comment], key: str, delta: MappingDelta) -> ItemResult:
        try:
            self.spira.update_incident(incident)
            for comment in comments:
                comment.artifact_id = incident.incident_id
            self.spira.add_comments(comments)
        except ConnectivityError:
            raise
        except ValidationFault as e:
            logger.error(f"{key}: Spira rejected the incident update: {e}")
            return ItemResult.failed(key, str(e), delta)
        except Exception as e:
            logger.error(f"{key}: failed to update incident: {e}")
            return ItemResult.failed(key, str(e), delta)
        return ItemResult.updated(key, delta)

    def _add_link_back(self, issue: Issue, key: str, incident_id: int):
        if not self.link_url_template:
            return
        try:
            self.spira.add_url_document(
                Document(
                    filename_or_url=self.redmine.url + self.link_url_template.format(key=issue.issue_id),
                    attachment_type=AttachmentType.URL,
                    description="Link to issue in Redmine",
                    artifact_id=incident_id,
                    artifact_type=SpiraArtifactType.INCIDENT,
                )
            )
        except Exception as e:
            logger.warning(f"{key}: unable to add Redmine hyperlink to IN{incident_id}: {e}")

    def _copy_attachments(self, issue: Issue, key: str, incident_id: int):
        for attachment in issue.attachments:
            try:
                data = self.redmine.download(attachment.content_url)
                self.spira.add_file_document(
                    Document(
                        filename_or_url=attachment.filename,
                        attachment_type=AttachmentType.FILE,
                        description=attachment.description,
                        upload_date=attachment.created_on or utcnow(),
                        artifact_id=incident_id,
                        artifact_type=SpiraArtifactType.INCIDENT,
                    ),
                    data,
                )
            except Exception as e:
                logger.error(f"{key}: unable to attach '{attachment.filename}' to IN{incident_id}: {e}")

    def _copy_relations(self, issue: Issue, key: str, incident_id: int, delta: MappingDelta):
        for relation in issue.relations:
            other = relation.issue_to_id if relation.issue_id == issue.issue_id else relation.issue_id
            target = self.mappings.ledger.incident_by_external(self.project_id, other)
            if target is None:
                continue
            try:
                self.spira.create_association(
                    Association(
                        source_artifact_id=incident_id,
                        dest_artifact_id=target.internal_id,
                        comment=relation.relation_type,
                    )
                )
            except Exception as e:
                logger.error(f"{key}: unable to associate IN{incident_id} with IN{target.internal_id}: {e}")
