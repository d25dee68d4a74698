"""Enumerate the events and roles visible to the signed-in VMS user."""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional, Tuple

from status_log import StatusLog
from vms_driver import By, VmsDriver
from volunteer_cache import EventRef, RoleRef

logger = logging.getLogger(__name__)

EVENT_LINK_SELECTOR = "a[href*='EventDetail']"
ROLE_LINK_SELECTOR = "a[href*='RoleDetail']"


class NoRolesError(RuntimeError):
    """Raised when an event exposes no role to reach its unassigned pool from."""


class EventAndRoleTracker:
    """Lists events and roles, skipping units the status log marks finished.

    Skipping is only a shortcut. Pass ``skip_completed=False`` to rescan
    everything and rely on row-level dedup alone.
    """

    def __init__(
        self,
        driver: VmsDriver,
        events_url: str,
        status_log: Optional[StatusLog] = None,
        skip_completed: bool = True,
    ) -> None:
        self.driver = driver
        self.events_url = events_url
        self.status_log = status_log
        self.skip_completed = skip_completed and status_log is not None
        self._roles_by_event: Dict[str, List[RoleRef]] = {}

    def _collect_links(self, selector: str) -> List[Tuple[str, str]]:
        links: List[Tuple[str, str]] = []
        seen: set[str] = set()
        for element in self.driver.find_elements(By.CSS_SELECTOR, selector):
            href = self.driver.read_attribute(element, "href")
            if not href or href in seen:
                continue
            seen.add(href)
            links.append((self.driver.read_text(element).strip(), href))
        return links

    def all_events(self) -> List[EventRef]:
        self.driver.navigate(self.events_url)
        return [EventRef(name, url) for name, url in self._collect_links(EVENT_LINK_SELECTOR)]

    def remaining_events(self) -> Iterator[EventRef]:
        # Snapshot first: processing an event navigates away from the listing.
        events = self.all_events()
        logger.info("Found %d events", len(events))
        for event in events:
            if self.skip_completed and self.status_log.is_event_complete(event.name):
                logger.info("Skipping event already completed: %s", event.name)
                continue
            yield event

    def all_roles(self, event: EventRef) -> List[RoleRef]:
        roles = self._roles_by_event.get(event.url)
        if roles is None:
            self.driver.navigate(event.url)
            roles = [RoleRef(name, url) for name, url in self._collect_links(ROLE_LINK_SELECTOR)]
            self._roles_by_event[event.url] = roles
        return roles

    def remaining_roles(self, event: EventRef) -> List[RoleRef]:
        roles = self.all_roles(event)
        if not self.skip_completed:
            return list(roles)
        remaining = []
        for role in roles:
            if self.status_log.is_role_complete(event.name, role.name):
                logger.info("Skipping role already completed: %s/%s", event.name, role.name)
                continue
            remaining.append(role)
        return remaining

    def any_role(self, event: EventRef) -> RoleRef:
        roles = self.all_roles(event)
        if not roles:
            raise NoRolesError(f"Event {event.name!r} has no roles")
        return roles[0]
