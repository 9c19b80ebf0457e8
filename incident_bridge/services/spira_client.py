"""Spira REST API client wrapper"""

import base64
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

import httpx

from incident_bridge.exceptions import ConnectivityError, DeserializationError, RemoteNotFound
from incident_bridge.services.artifacts import (
    Association,
    Comment,
    CustomPropertyDefinition,
    Document,
    Incident,
    Release,
    SpiraArtifactType,
    SpiraUser,
    format_spira_datetime,
)
from incident_bridge.services.http_client import ApiClient

logger = logging.getLogger(__name__)

REST_PATH = "/Services/v6_0/RestService.svc"


def _decode_with(factory: Callable[[Any], Any], payload: Any, what: str):
    """Build a typed record, turning shape errors into DeserializationError."""
    try:
        return factory(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise DeserializationError(f"Malformed Spira {what}: {e}", raw=repr(payload)) from e


class SpiraClient:
    """Wrapper for the Spira operations used by the data-sync"""

    def __init__(
        self,
        base_url: str,
        login: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.login = login
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport
        self.project_id: Optional[int] = None
        self.api = self._new_api(login, api_key, client_id=None)

    def _new_api(self, login: str, api_key: str, client_id: Optional[str]) -> ApiClient:
        headers = {"username": login or "", "api-key": api_key or ""}
        if client_id:
            headers["User-Agent"] = client_id
        return ApiClient(
            f"{self.base_url}{REST_PATH}",
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    def _project(self) -> int:
        if self.project_id is None:
            raise ConnectivityError("Not connected to a Spira project")
        return self.project_id

    # -- connection ---------------------------------------------------------

    def authenticate(self, login: str, api_key: str, client_id: str) -> bool:
        """(Re)open a session; returns False if the credentials are rejected."""
        self.api.close()
        self.login = login
        self.api_key = api_key
        self.api = self._new_api(login, api_key, client_id)
        self.project_id = None
        try:
            user = self.api.get(f"users/usernames/{login}")
        except (ConnectivityError, RemoteNotFound) as e:
            logger.error(f"Spira authentication failed for '{login}': {e}")
            return False
        return bool(user)

    def connect_to_project(self, project_id: int) -> bool:
        try:
            self.api.get(f"projects/{int(project_id)}")
        except (ConnectivityError, RemoteNotFound) as e:
            logger.error(f"Unable to connect to Spira project PR{project_id}: {e}")
            self.project_id = None
            return False
        self.project_id = int(project_id)
        return True

    # -- system -------------------------------------------------------------

    def get_product_name(self) -> str:
        return str(self.api.get("system/product-name") or "Spira")

    def get_web_server_url(self) -> str:
        return str(self.api.get("system/web-server-url") or self.base_url).rstrip("/")

    def get_incident_url(self, incident_id: int) -> str:
        """Absolute URL of an incident in the Spira web UI."""
        return f"{self.get_web_server_url()}/{self._project()}/Incident/{int(incident_id)}.aspx"

    # -- incidents ----------------------------------------------------------

    def count_incidents(self) -> int:
        return int(self.api.get(f"projects/{self._project()}/incidents/count") or 0)

    def get_new_incidents(self, since: datetime, start_row: int, number_rows: int) -> List[Incident]:
        """Incidents created since `since`, 1-based `start_row`."""
        payload = self.api.get(
            f"projects/{self._project()}/incidents/new",
            params={
                "creation_date": format_spira_datetime(since),
                "start_row": start_row,
                "number_rows": number_rows,
            },
        )
        return [_decode_with(Incident.from_api, item, "incident") for item in payload or []]

    def get_incident(self, incident_id: int) -> Incident:
        payload = self.api.get(f"projects/{self._project()}/incidents/{int(incident_id)}")
        return _decode_with(Incident.from_api, payload, "incident")

    def create_incident(self, incident: Incident) -> Incident:
        payload = self.api.post(f"projects/{self._project()}/incidents", incident.to_api())
        created = _decode_with(Incident.from_api, payload, "incident")
        logger.info(f"Created incident IN{created.incident_id} in Spira project PR{self.project_id}")
        return created

    def update_incident(self, incident: Incident) -> None:
        self.api.put(
            f"projects/{self._project()}/incidents/{int(incident.incident_id)}",
            incident.to_api(),
        )
        logger.info(f"Updated incident IN{incident.incident_id} in Spira project PR{self.project_id}")

    def get_comments(self, incident_id: int) -> List[Comment]:
        payload = self.api.get(f"projects/{self._project()}/incidents/{int(incident_id)}/comments")
        return [_decode_with(Comment.from_api, item, "comment") for item in payload or []]

    def add_comments(self, comments: List[Comment]) -> None:
        for comment in comments:
            self.api.post(
                f"projects/{self._project()}/incidents/{int(comment.artifact_id)}/comments",
                comment.to_api(),
            )

    def get_custom_property_definitions(self) -> List[CustomPropertyDefinition]:
        payload = self.api.get(f"projects/{self._project()}/custom-properties/Incident")
        return [
            _decode_with(CustomPropertyDefinition.from_api, item, "custom property")
            for item in payload or []
        ]

    # -- releases -----------------------------------------------------------

    def get_release(self, release_id: int) -> Release:
        payload = self.api.get(f"projects/{self._project()}/releases/{int(release_id)}")
        return _decode_with(Release.from_api, payload, "release")

    def create_release(self, release: Release) -> Release:
        payload = self.api.post(f"projects/{self._project()}/releases", release.to_api())
        created = _decode_with(Release.from_api, payload, "release")
        logger.info(f"Created release RL{created.release_id} '{created.name}' in Spira project PR{self.project_id}")
        return created

    # -- documents ----------------------------------------------------------

    def get_documents(self, incident_id: int) -> List[Document]:
        payload = self.api.get(
            f"projects/{self._project()}/artifact-types/{int(SpiraArtifactType.INCIDENT)}"
            f"/artifacts/{int(incident_id)}/documents"
        )
        return [_decode_with(Document.from_api, item, "document") for item in payload or []]

    def open_document(self, attachment_id: int) -> bytes:
        payload = self.api.get(f"projects/{self._project()}/documents/{int(attachment_id)}/open")
        if isinstance(payload, list):
            return bytes(payload)
        try:
            return base64.b64decode(payload or "")
        except (TypeError, ValueError) as e:
            raise DeserializationError(f"Malformed Spira document content: {e}", raw=str(payload)[:500]) from e

    def add_url_document(self, document: Document) -> None:
        document.project_id = self._project()
        self.api.post(f"projects/{self._project()}/documents/url", document.to_api())

    def add_file_document(self, document: Document, data: bytes) -> None:
        document.project_id = self._project()
        body = document.to_api()
        body["BinaryData"] = base64.b64encode(data).decode("ascii")
        self.api.post(f"projects/{self._project()}/documents/file", body)

    # -- associations -------------------------------------------------------

    def get_associations(self, incident_id: int) -> List[Association]:
        payload = self.api.get(
            f"projects/{self._project()}/associations/{int(SpiraArtifactType.INCIDENT)}/{int(incident_id)}"
        )
        return [_decode_with(Association.from_api, item, "association") for item in payload or []]

    def create_association(self, association: Association) -> None:
        self.api.post(f"projects/{self._project()}/associations", association.to_api())

    # -- users --------------------------------------------------------------

    def get_user(self, user_id: int) -> SpiraUser:
        return _decode_with(SpiraUser.from_api, self.api.get(f"users/{int(user_id)}"), "user")

    def get_user_by_username(self, username: str) -> Optional[SpiraUser]:
        try:
            payload = self.api.get(f"users/usernames/{username}")
        except RemoteNotFound:
            return None
        return _decode_with(SpiraUser.from_api, payload, "user")
