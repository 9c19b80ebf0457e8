"""Typed records exchanged with Spira and Redmine

Each record knows how to read itself from the REST payload of its system
(`from_api`) and, where we write it back, how to render that payload
(`to_api`). Optional fields are ``None`` when unset; an empty string is never
used as an id.
"""

import enum
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from html import unescape
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Date helpers (everything is stored as UTC tz-naive)
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to UTC tz-naive; naive values are taken as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO8601 timestamp or date into a UTC tz-naive datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return normalize_utc_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    # Spira may send more than 6 fractional digits
    text = re.sub(r"(\.\d{6})\d+", r"\1", text)
    dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    return normalize_utc_naive(dt)


def format_spira_datetime(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return normalize_utc_naive(dt).strftime("%Y-%m-%dT%H:%M:%S.000")


def format_redmine_date(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return normalize_utc_naive(dt).strftime("%Y-%m-%d")


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _ref_id(ref: Any) -> Optional[int]:
    """Redmine nests references as {"id": .., "name": ..}."""
    if isinstance(ref, dict):
        return _as_int(ref.get("id"))
    return None


def _ref_name(ref: Any) -> Optional[str]:
    if isinstance(ref, dict):
        return ref.get("name")
    return None


# ---------------------------------------------------------------------------
# HTML -> plain text (Redmine descriptions are plain/textile)
# ---------------------------------------------------------------------------

class _TextExtractor(HTMLParser):
    _BLOCK_TAGS = {"p", "div", "br", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "pre"}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.parts: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag in self._BLOCK_TAGS:
            self.parts.append("\n")

    def handle_endtag(self, tag):
        if tag in self._BLOCK_TAGS and tag != "br":
            self.parts.append("\n")

    def handle_data(self, data):
        self.parts.append(data)


def html_to_plain_text(html: Optional[str]) -> str:
    """Render rich text as plain text with paragraph breaks preserved."""
    if not html:
        return ""
    parser = _TextExtractor()
    parser.feed(html)
    parser.close()
    text = unescape("".join(parser.parts)).replace("\xa0", " ")
    lines = [line.strip() for line in text.splitlines()]
    text = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


# ---------------------------------------------------------------------------
# Spira (internal system)
# ---------------------------------------------------------------------------

class SpiraArtifactType(int, enum.Enum):
    REQUIREMENT = 1
    TEST_CASE = 2
    INCIDENT = 3
    RELEASE = 4


class AttachmentType(int, enum.Enum):
    FILE = 1
    URL = 2


class CustomPropertyType(int, enum.Enum):
    TEXT = 1
    INTEGER = 2
    DECIMAL = 3
    BOOLEAN = 4
    DATE = 5
    LIST = 6
    MULTI_LIST = 7
    USER = 8


@dataclass
class CustomPropertyDefinition:
    custom_property_id: int
    property_number: int
    name: str
    property_type: CustomPropertyType

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CustomPropertyDefinition":
        return cls(
            custom_property_id=int(data["CustomPropertyId"]),
            property_number=int(data["PropertyNumber"]),
            name=data.get("Name") or "",
            property_type=CustomPropertyType(int(data["CustomPropertyTypeId"])),
        )


@dataclass
class CustomPropertyValue:
    property_number: int
    custom_property_id: Optional[int] = None
    string_value: Optional[str] = None
    integer_value: Optional[int] = None
    decimal_value: Optional[Decimal] = None
    boolean_value: Optional[bool] = None
    date_time_value: Optional[datetime] = None
    integer_list_value: Optional[List[int]] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CustomPropertyValue":
        definition = data.get("Definition") or {}
        return cls(
            property_number=int(data["PropertyNumber"]),
            custom_property_id=_as_int(definition.get("CustomPropertyId")),
            string_value=data.get("StringValue"),
            integer_value=_as_int(data.get("IntegerValue")),
            decimal_value=_as_decimal(data.get("DecimalValue")),
            boolean_value=data.get("BooleanValue"),
            date_time_value=parse_datetime(data.get("DateTimeValue")),
            integer_list_value=(
                [int(v) for v in data["IntegerListValue"]]
                if data.get("IntegerListValue") is not None
                else None
            ),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "PropertyNumber": self.property_number,
            "StringValue": self.string_value,
            "IntegerValue": self.integer_value,
            "DecimalValue": float(self.decimal_value) if self.decimal_value is not None else None,
            "BooleanValue": self.boolean_value,
            "DateTimeValue": format_spira_datetime(self.date_time_value),
            "IntegerListValue": self.integer_list_value,
        }


@dataclass
class Incident:
    project_id: int
    incident_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    status_id: Optional[int] = None
    type_id: Optional[int] = None
    priority_id: Optional[int] = None
    severity_id: Optional[int] = None
    opener_id: Optional[int] = None
    owner_id: Optional[int] = None
    detected_release_id: Optional[int] = None
    resolved_release_id: Optional[int] = None
    # Effort values are in minutes
    estimated_effort: Optional[int] = None
    actual_effort: Optional[int] = None
    projected_effort: Optional[int] = None
    remaining_effort: Optional[int] = None
    completion_percent: Optional[int] = None
    creation_date: Optional[datetime] = None
    last_update_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    closed_date: Optional[datetime] = None
    custom_properties: List[CustomPropertyValue] = field(default_factory=list)
    # Spira uses this for optimistic concurrency on update
    concurrency_date: Optional[str] = None

    @property
    def plain_description(self) -> str:
        return html_to_plain_text(self.description)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Incident":
        return cls(
            project_id=int(data["ProjectId"]),
            incident_id=_as_int(data.get("IncidentId")),
            name=data.get("Name"),
            description=data.get("Description"),
            status_id=_as_int(data.get("IncidentStatusId")),
            type_id=_as_int(data.get("IncidentTypeId")),
            priority_id=_as_int(data.get("PriorityId")),
            severity_id=_as_int(data.get("SeverityId")),
            opener_id=_as_int(data.get("OpenerId")),
            owner_id=_as_int(data.get("OwnerId")),
            detected_release_id=_as_int(data.get("DetectedReleaseId")),
            resolved_release_id=_as_int(data.get("ResolvedReleaseId")),
            estimated_effort=_as_int(data.get("EstimatedEffort")),
            actual_effort=_as_int(data.get("ActualEffort")),
            projected_effort=_as_int(data.get("ProjectedEffort")),
            remaining_effort=_as_int(data.get("RemainingEffort")),
            completion_percent=_as_int(data.get("CompletionPercent")),
            creation_date=parse_datetime(data.get("CreationDate")),
            last_update_date=parse_datetime(data.get("LastUpdateDate")),
            start_date=parse_datetime(data.get("StartDate")),
            closed_date=parse_datetime(data.get("ClosedDate")),
            custom_properties=[CustomPropertyValue.from_api(cp) for cp in data.get("CustomProperties") or []],
            concurrency_date=data.get("ConcurrencyDate"),
        )

    def to_api(self) -> Dict[str, Any]:
        payload = {
            "ProjectId": self.project_id,
            "Name": self.name,
            "Description": self.description,
            "IncidentStatusId": self.status_id,
            "IncidentTypeId": self.type_id,
            "PriorityId": self.priority_id,
            "SeverityId": self.severity_id,
            "OpenerId": self.opener_id,
            "OwnerId": self.owner_id,
            "DetectedReleaseId": self.detected_release_id,
            "ResolvedReleaseId": self.resolved_release_id,
            "EstimatedEffort": self.estimated_effort,
            "ActualEffort": self.actual_effort,
            "ProjectedEffort": self.projected_effort,
            "RemainingEffort": self.remaining_effort,
            "CompletionPercent": self.completion_percent,
            "CreationDate": format_spira_datetime(self.creation_date),
            "StartDate": format_spira_datetime(self.start_date),
            "ClosedDate": format_spira_datetime(self.closed_date),
            "CustomProperties": [cp.to_api() for cp in self.custom_properties],
        }
        if self.incident_id is not None:
            payload["IncidentId"] = self.incident_id
        if self.concurrency_date is not None:
            payload["ConcurrencyDate"] = self.concurrency_date
        return payload


@dataclass
class Comment:
    text: str
    artifact_id: Optional[int] = None
    comment_id: Optional[int] = None
    creator_id: Optional[int] = None
    creation_date: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Comment":
        return cls(
            text=data.get("Text") or "",
            artifact_id=_as_int(data.get("ArtifactId")),
            comment_id=_as_int(data.get("CommentId")),
            creator_id=_as_int(data.get("CreatorId")),
            creation_date=parse_datetime(data.get("CreationDate")),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "ArtifactId": self.artifact_id,
            "Text": self.text,
            "CreatorId": self.creator_id,
            "CreationDate": format_spira_datetime(self.creation_date),
        }


@dataclass
class Release:
    project_id: int
    name: str
    version_number: str
    release_id: Optional[int] = None
    active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    creator_id: Optional[int] = None
    description: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Release":
        return cls(
            project_id=int(data["ProjectId"]),
            name=data.get("Name") or "",
            version_number=data.get("VersionNumber") or "",
            release_id=_as_int(data.get("ReleaseId")),
            active=bool(data.get("Active", True)),
            start_date=parse_datetime(data.get("StartDate")),
            end_date=parse_datetime(data.get("EndDate")),
            creator_id=_as_int(data.get("CreatorId")),
            description=data.get("Description"),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "ProjectId": self.project_id,
            "Name": self.name,
            "VersionNumber": self.version_number,
            "Active": self.active,
            "StartDate": format_spira_datetime(self.start_date),
            "EndDate": format_spira_datetime(self.end_date),
            "CreatorId": self.creator_id,
            "Description": self.description,
        }


@dataclass
class Document:
    filename_or_url: str
    attachment_type: AttachmentType
    project_id: Optional[int] = None
    attachment_id: Optional[int] = None
    description: Optional[str] = None
    author_id: Optional[int] = None
    upload_date: Optional[datetime] = None
    artifact_id: Optional[int] = None
    artifact_type: SpiraArtifactType = SpiraArtifactType.INCIDENT

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Document":
        return cls(
            filename_or_url=data.get("FilenameOrUrl") or "",
            attachment_type=AttachmentType(int(data.get("AttachmentTypeId") or AttachmentType.FILE)),
            project_id=_as_int(data.get("ProjectId")),
            attachment_id=_as_int(data.get("AttachmentId")),
            description=data.get("Description"),
            author_id=_as_int(data.get("AuthorId")),
            upload_date=parse_datetime(data.get("UploadDate")),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "ProjectId": self.project_id,
            "FilenameOrUrl": self.filename_or_url,
            "AttachmentTypeId": int(self.attachment_type),
            "Description": self.description,
            "AuthorId": self.author_id,
            "UploadDate": format_spira_datetime(self.upload_date),
            "AttachedArtifacts": (
                [{"ArtifactId": self.artifact_id, "ArtifactTypeId": int(self.artifact_type)}]
                if self.artifact_id is not None
                else []
            ),
        }


@dataclass
class Association:
    source_artifact_id: int
    dest_artifact_id: int
    source_artifact_type: SpiraArtifactType = SpiraArtifactType.INCIDENT
    dest_artifact_type: SpiraArtifactType = SpiraArtifactType.INCIDENT
    comment: Optional[str] = None
    creator_id: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Association":
        return cls(
            source_artifact_id=int(data["SourceArtifactId"]),
            dest_artifact_id=int(data["DestArtifactId"]),
            source_artifact_type=SpiraArtifactType(int(data.get("SourceArtifactTypeId") or 3)),
            dest_artifact_type=_spira_type_or_none(data.get("DestArtifactTypeId")),
            comment=data.get("Comment"),
            creator_id=_as_int(data.get("CreatorId")),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "SourceArtifactId": self.source_artifact_id,
            "SourceArtifactTypeId": int(self.source_artifact_type),
            "DestArtifactId": self.dest_artifact_id,
            "DestArtifactTypeId": int(self.dest_artifact_type),
            "Comment": self.comment,
            "CreatorId": self.creator_id,
            # Related-to
            "ArtifactLinkTypeId": 1,
        }


def _spira_type_or_none(value: Any):
    """Unknown artifact types (tasks, risks, ...) are kept as plain ints."""
    raw = _as_int(value)
    if raw is None:
        return None
    try:
        return SpiraArtifactType(raw)
    except ValueError:
        return raw


@dataclass
class SpiraUser:
    user_id: int
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SpiraUser":
        return cls(
            user_id=int(data["UserId"]),
            username=data.get("UserName") or "",
            first_name=data.get("FirstName"),
            last_name=data.get("LastName"),
            email=data.get("EmailAddress"),
        )


# ---------------------------------------------------------------------------
# Redmine (external system)
# ---------------------------------------------------------------------------

@dataclass
class CustomFieldValue:
    field_id: int
    value: Any = None
    name: Optional[str] = None
    multiple: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CustomFieldValue":
        return cls(
            field_id=int(data["id"]),
            value=data.get("value"),
            name=data.get("name"),
            multiple=bool(data.get("multiple", False)),
        )

    def to_api(self) -> Dict[str, Any]:
        return {"id": self.field_id, "value": self.value}


@dataclass
class Journal:
    journal_id: int
    notes: Optional[str] = None
    user_id: Optional[int] = None
    created_on: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Journal":
        return cls(
            journal_id=int(data["id"]),
            notes=data.get("notes"),
            user_id=_ref_id(data.get("user")),
            created_on=parse_datetime(data.get("created_on")),
        )


@dataclass
class Relation:
    relation_id: int
    issue_id: int
    issue_to_id: int
    relation_type: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Relation":
        return cls(
            relation_id=int(data["id"]),
            issue_id=int(data["issue_id"]),
            issue_to_id=int(data["issue_to_id"]),
            relation_type=data.get("relation_type") or "relates",
        )


@dataclass
class Attachment:
    attachment_id: int
    filename: str
    content_url: str
    description: Optional[str] = None
    filesize: Optional[int] = None
    author_id: Optional[int] = None
    created_on: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Attachment":
        return cls(
            attachment_id=int(data["id"]),
            filename=data.get("filename") or "",
            content_url=data.get("content_url") or "",
            description=data.get("description"),
            filesize=_as_int(data.get("filesize")),
            author_id=_ref_id(data.get("author")),
            created_on=parse_datetime(data.get("created_on")),
        )


@dataclass
class Issue:
    project_id: int
    issue_id: Optional[int] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    tracker_id: Optional[int] = None
    status_id: Optional[int] = None
    priority_id: Optional[int] = None
    author_id: Optional[int] = None
    assigned_to_id: Optional[int] = None
    fixed_version_id: Optional[int] = None
    fixed_version_name: Optional[str] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    done_ratio: Optional[int] = None
    created_on: Optional[datetime] = None
    updated_on: Optional[datetime] = None
    custom_fields: List[CustomFieldValue] = field(default_factory=list)
    journals: List[Journal] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Issue":
        estimated = data.get("estimated_hours")
        return cls(
            project_id=int(_ref_id(data.get("project")) or data.get("project_id")),
            issue_id=_as_int(data.get("id")),
            subject=data.get("subject"),
            description=data.get("description"),
            tracker_id=_ref_id(data.get("tracker")),
            status_id=_ref_id(data.get("status")),
            priority_id=_ref_id(data.get("priority")),
            author_id=_ref_id(data.get("author")),
            assigned_to_id=_ref_id(data.get("assigned_to")),
            fixed_version_id=_ref_id(data.get("fixed_version")),
            fixed_version_name=_ref_name(data.get("fixed_version")),
            start_date=parse_datetime(data.get("start_date")),
            due_date=parse_datetime(data.get("due_date")),
            estimated_hours=float(estimated) if estimated is not None else None,
            done_ratio=_as_int(data.get("done_ratio")),
            created_on=parse_datetime(data.get("created_on")),
            updated_on=parse_datetime(data.get("updated_on")),
            custom_fields=[CustomFieldValue.from_api(cf) for cf in data.get("custom_fields") or []],
            journals=[Journal.from_api(j) for j in data.get("journals") or []],
            relations=[Relation.from_api(r) for r in data.get("relations") or []],
            attachments=[Attachment.from_api(a) for a in data.get("attachments") or []],
        )

    def to_api(self) -> Dict[str, Any]:
        """Render the create/update payload; unset fields are omitted."""
        payload: Dict[str, Any] = {
            "project_id": self.project_id,
            "subject": self.subject,
            "description": self.description,
            "tracker_id": self.tracker_id,
            "status_id": self.status_id,
            "priority_id": self.priority_id,
            "author_id": self.author_id,
            "assigned_to_id": self.assigned_to_id,
            "fixed_version_id": self.fixed_version_id,
            "start_date": format_redmine_date(self.start_date),
            "due_date": format_redmine_date(self.due_date),
            "estimated_hours": self.estimated_hours,
            "done_ratio": self.done_ratio,
        }
        payload = {k: v for k, v in payload.items() if v is not None}
        if self.custom_fields:
            payload["custom_fields"] = [cf.to_api() for cf in self.custom_fields]
        return payload


@dataclass
class Version:
    project_id: int
    name: str
    version_id: Optional[int] = None
    status: str = "open"
    description: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Version":
        return cls(
            project_id=int(_ref_id(data.get("project")) or data.get("project_id")),
            name=data.get("name") or "",
            version_id=_as_int(data.get("id")),
            status=data.get("status") or "open",
            description=data.get("description"),
        )

    def to_api(self) -> Dict[str, Any]:
        payload = {"name": self.name, "status": self.status}
        if self.description:
            payload["description"] = self.description
        return payload


@dataclass
class RedmineUser:
    user_id: int
    login: str
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    mail: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RedmineUser":
        return cls(
            user_id=int(data["id"]),
            login=data.get("login") or "",
            firstname=data.get("firstname"),
            lastname=data.get("lastname"),
            mail=data.get("mail"),
        )


@dataclass
class RedmineProject:
    project_id: int
    identifier: str
    name: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RedmineProject":
        return cls(
            project_id=int(data["id"]),
            identifier=data.get("identifier") or "",
            name=data.get("name") or "",
        )
