"""Services"""

from incident_bridge.services.redmine_client import RedmineClient
from incident_bridge.services.spira_client import SpiraClient
from incident_bridge.services.sync_service import SyncService

__all__ = ["RedmineClient", "SpiraClient", "SyncService"]
