"""API routes"""

from incident_bridge.api import field_mappings, project_mappings, sync, user_mappings

__all__ = ["project_mappings", "user_mappings", "field_mappings", "sync"]
