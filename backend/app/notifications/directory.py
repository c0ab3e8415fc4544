"""
directory.py — Contact and group lookup.

The router depends only on the Directory protocol. InMemoryDirectory backs
tests and single-process deployments and is seeded with the built-in
"Application Alerts" group.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Protocol

from backend.app.notifications.models import Contact, Group, GroupMember

logger = logging.getLogger(__name__)

APPLICATION_ALERTS_GROUP_ID = "affb5044-8981-4661-bbe7-3478fd7a115d"
APPLICATION_ALERTS_GROUP_TITLE = "Application Alerts"


class Directory(Protocol):
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        ...

    async def get_active_group_members(self, group_id: str) -> List[str]:
        ...


class InMemoryDirectory:
    """Dictionary-backed directory."""

    def __init__(
        self,
        contacts: Iterable[Contact] = (),
        groups: Iterable[Group] = (),
    ):
        self._contacts: Dict[str, Contact] = {}
        self._groups: Dict[str, Group] = {
            APPLICATION_ALERTS_GROUP_ID: Group(
                group_id=APPLICATION_ALERTS_GROUP_ID,
                title=APPLICATION_ALERTS_GROUP_TITLE,
            ),
        }
        for contact in contacts:
            self.add_contact(contact)
        for group in groups:
            self.add_group(group)

    def add_contact(self, contact: Contact) -> None:
        self._contacts[contact.contact_id] = contact

    def add_group(self, group: Group) -> None:
        self._groups[group.group_id] = group

    def add_member(self, group_id: str, contact_id: str, active: bool = True) -> None:
        self._groups[group_id].members.append(GroupMember(contact_id, active))

    def get_group(self, group_id: str) -> Optional[Group]:
        return self._groups.get(group_id)

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        return self._contacts.get(contact_id)

    async def get_active_group_members(self, group_id: str) -> List[str]:
        group = self._groups.get(group_id)
        if group is None:
            logger.warning("Unknown notification group %s", group_id)
            return []
        return group.active_member_ids()
