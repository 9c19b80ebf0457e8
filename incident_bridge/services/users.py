"""User identity resolution between Spira and Redmine"""

import logging
from typing import Optional

from incident_bridge.services.mapping_repository import MappingIndex

logger = logging.getLogger(__name__)


class UserResolver:
    """Resolve a user across systems; None means unresolved (never fatal)."""

    def to_external(self, internal_user_id: Optional[int]) -> Optional[int]:
        raise NotImplementedError

    def to_internal(self, external_user_id: Optional[int]) -> Optional[int]:
        raise NotImplementedError


class TableUserResolver(UserResolver):
    """Looks users up in the persisted user mapping table."""

    def __init__(self, users: MappingIndex):
        self.users = users

    def to_external(self, internal_user_id):
        mapping = self.users.by_internal(None, internal_user_id)
        if mapping is None or not mapping.external_key:
            return None
        try:
            return int(mapping.external_key)
        except ValueError:
            logger.warning(f"User mapping for Spira user {internal_user_id} has a non-numeric Redmine id '{mapping.external_key}'")
            return None

    def to_internal(self, external_user_id):
        if external_user_id is None:
            return None
        mapping = self.users.by_external(None, str(external_user_id))
        return mapping.internal_id if mapping else None


class LiveLookupUserResolver(UserResolver):
    """Matches users by login name with fresh calls to both systems."""

    def __init__(self, spira, redmine):
        self.spira = spira
        self.redmine = redmine

    def to_external(self, internal_user_id):
        if internal_user_id is None:
            return None
        try:
            spira_user = self.spira.get_user(internal_user_id)
            candidates = self.redmine.find_users(spira_user.username)
        except Exception as e:
            logger.warning(f"Unable to look up Redmine user for Spira user {internal_user_id}: {e}")
            return None
        if not candidates:
            return None
        # The name filter also matches first/last name and email
        exact = next((u for u in candidates if u.login == spira_user.username), None)
        return (exact or candidates[0]).user_id

    def to_internal(self, external_user_id):
        if external_user_id is None:
            return None
        try:
            redmine_user = self.redmine.get_user(external_user_id)
            spira_user = self.spira.get_user_by_username(redmine_user.login)
        except Exception as e:
            logger.warning(f"Unable to look up Spira user for Redmine user {external_user_id}: {e}")
            return None
        return spira_user.user_id if spira_user else None


def build_user_resolver(auto_map_users: bool, users: MappingIndex, spira, redmine) -> UserResolver:
    """Pick the resolver variant once per run."""
    if auto_map_users:
        return LiveLookupUserResolver(spira, redmine)
    return TableUserResolver(users)
