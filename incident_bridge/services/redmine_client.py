"""Redmine REST API client wrapper"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from incident_bridge.exceptions import DeserializationError, RemoteNotFound
from incident_bridge.services.artifacts import (
    Issue,
    RedmineProject,
    RedmineUser,
    Version,
    format_redmine_date,
)
from incident_bridge.services.http_client import ApiClient

logger = logging.getLogger(__name__)

ISSUE_INCLUDES = "attachments,relations,journals"
# Redmine user status filter: 1 = active
USER_STATUS_ACTIVE = 1


def _unwrap(payload: Any, key: str) -> Any:
    """Redmine wraps single objects as {"issue": {...}}."""
    if not isinstance(payload, dict) or key not in payload:
        raise DeserializationError(f"Expected '{key}' in Redmine response", raw=repr(payload)[:2000])
    return payload[key]


def _decode_with(factory: Callable[[Any], Any], payload: Any, what: str):
    try:
        return factory(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise DeserializationError(f"Malformed Redmine {what}: {e}", raw=repr(payload)[:2000]) from e


class RedmineClient:
    """Wrapper for the Redmine operations used by the data-sync"""

    def __init__(
        self,
        url: str,
        login: str,
        password: Optional[str] = None,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = (url or "").rstrip("/")
        # Login without password is a Redmine API key
        if password:
            self.api = ApiClient(self.url, auth=(login, password), timeout=timeout, transport=transport)
        else:
            self.api = ApiClient(
                self.url,
                headers={"X-Redmine-API-Key": login or ""},
                timeout=timeout,
                transport=transport,
            )

    # -- projects -----------------------------------------------------------

    def get_projects(self) -> List[RedmineProject]:
        payload = self.api.get("projects.json", params={"limit": 100})
        return [_decode_with(RedmineProject.from_api, p, "project") for p in _unwrap(payload, "projects")]

    def get_project(self, identifier: str) -> RedmineProject:
        payload = self.api.get(f"projects/{identifier}.json")
        return _decode_with(RedmineProject.from_api, _unwrap(payload, "project"), "project")

    # -- issues -------------------------------------------------------------

    def get_issues(
        self, project_id: int, updated_since: datetime, offset: int, limit: int
    ) -> List[Issue]:
        """One page of issue summaries for a project, any status."""
        payload = self.api.get(
            "issues.json",
            params={
                "project_id": project_id,
                "updated_on": f">={format_redmine_date(updated_since)}",
                "status_id": "*",
                "sort": "id",
                "offset": offset,
                "limit": limit,
            },
        )
        return [_decode_with(Issue.from_api, i, "issue") for i in _unwrap(payload, "issues")]

    def get_issue(self, issue_id: int, include: str = ISSUE_INCLUDES) -> Issue:
        payload = self.api.get(f"issues/{int(issue_id)}.json", params={"include": include})
        return _decode_with(Issue.from_api, _unwrap(payload, "issue"), "issue")

    def create_issue(self, issue: Issue) -> Issue:
        payload = self.api.post("issues.json", {"issue": issue.to_api()})
        created = _decode_with(Issue.from_api, _unwrap(payload, "issue"), "issue")
        logger.info(f"Created issue #{created.issue_id} in Redmine project {issue.project_id}")
        return created

    def update_issue(self, issue_id: int, fields: Dict[str, Any]) -> None:
        """PUT partial issue fields; `notes` adds a journal entry, `uploads` attaches files."""
        self.api.put(f"issues/{int(issue_id)}.json", {"issue": fields})

    def add_note(self, issue_id: int, notes: str) -> None:
        self.update_issue(issue_id, {"notes": notes})

    def attach_uploads(self, issue_id: int, uploads: List[Dict[str, Any]], notes: Optional[str] = None) -> None:
        fields: Dict[str, Any] = {"uploads": uploads}
        if notes:
            fields["notes"] = notes
        self.update_issue(issue_id, fields)

    def create_relation(self, issue_id: int, issue_to_id: int, relation_type: str = "relates") -> None:
        self.api.post(
            f"issues/{int(issue_id)}/relations.json",
            {"relation": {"issue_to_id": int(issue_to_id), "relation_type": relation_type}},
        )

    # -- files --------------------------------------------------------------

    def upload(self, data: bytes, filename: Optional[str] = None) -> str:
        """Upload raw bytes; returns the token used to attach them."""
        params = {"filename": filename} if filename else None
        payload = self.api.post_binary("uploads.json", data, params=params)
        token = _unwrap(payload, "upload").get("token")
        if not token:
            raise DeserializationError("Redmine upload returned no token", raw=repr(payload))
        return token

    def download(self, content_url: str) -> bytes:
        return self.api.get_binary(content_url)

    # -- versions -----------------------------------------------------------

    def get_version(self, version_id: int) -> Optional[Version]:
        """Fetch a version; None when it no longer exists."""
        try:
            payload = self.api.get(f"versions/{int(version_id)}.json")
        except RemoteNotFound:
            return None
        return _decode_with(Version.from_api, _unwrap(payload, "version"), "version")

    def create_version(self, version: Version) -> Version:
        payload = self.api.post(
            f"projects/{int(version.project_id)}/versions.json", {"version": version.to_api()}
        )
        created = _decode_with(Version.from_api, _unwrap(payload, "version"), "version")
        logger.info(f"Created version {created.version_id} '{created.name}' in Redmine project {version.project_id}")
        return created

    # -- users --------------------------------------------------------------

    def get_user(self, user_id: int) -> RedmineUser:
        payload = self.api.get(f"users/{int(user_id)}.json")
        return _decode_with(RedmineUser.from_api, _unwrap(payload, "user"), "user")

    def find_users(self, name: str, status: int = USER_STATUS_ACTIVE) -> List[RedmineUser]:
        payload = self.api.get("users.json", params={"name": name, "status": status})
        return [_decode_with(RedmineUser.from_api, u, "user") for u in _unwrap(payload, "users")]
