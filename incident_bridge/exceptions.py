"""Error types raised by the Spira/Redmine clients and the sync engine"""

from typing import List, Optional, Tuple


class IncidentBridgeError(Exception):
    """Base class for all integration errors."""


class ConnectivityError(IncidentBridgeError):
    """A system is unreachable or rejected our credentials."""


class ProjectResolutionError(IncidentBridgeError):
    """A mapped project could not be opened on one of the two systems."""


class RemoteNotFound(IncidentBridgeError):
    """The remote system answered 404 for the requested object."""


class ValidationFault(IncidentBridgeError):
    """The remote system rejected a create/update with field-level messages."""

    def __init__(self, summary: str, messages: Optional[List[Tuple[str, str]]] = None):
        self.summary = summary or "Validation failed"
        self.messages = list(messages or [])
        super().__init__(self._render())

    def _render(self) -> str:
        if not self.messages:
            return self.summary
        details = "; ".join(f"{field or '(general)'}={message}" for field, message in self.messages)
        return f"{self.summary}: {details}"


class DeserializationError(IncidentBridgeError):
    """A response payload could not be decoded into the expected shape."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw or ""


class SyncInProgress(IncidentBridgeError):
    """Another data-sync is already running in this process."""
