"""Read one volunteer's profile page from the VMS."""

from __future__ import annotations

import logging

from vms_driver import DEFAULT_TIMEOUT, By, ElementNotFound, VmsDriver
from volunteer_cache import VolunteerDetail, VolunteerRef

logger = logging.getLogger(__name__)

PROFILE_SECTION_CLASS = "secondarySection"
PERSONAL_NOTE_CLASS = "personalLabel"
ROLE_PREFERENCES_LINK_ID = "MainContent_RolePreferencesLinkButton"
VOLUNTEER_COMMENTS_ID = "MainContent_VolunteerComments"


class FetchFailed(RuntimeError):
    """Raised when a volunteer page stays incomplete after the retry."""

    def __init__(self, volunteer: VolunteerRef, cause: Exception) -> None:
        super().__init__(f"Could not read volunteer {volunteer.name!r} ({volunteer.url}): {cause}")
        self.volunteer = volunteer
        self.cause = cause


class VolunteerDetailFetcher:
    def __init__(self, driver: VmsDriver, wait_timeout: float = DEFAULT_TIMEOUT) -> None:
        self.driver = driver
        self.wait_timeout = wait_timeout

    def fetch(self, volunteer: VolunteerRef, include_role_assignment: bool) -> VolunteerDetail:
        """Return the volunteer's detail, retrying once if the page was incomplete.

        ``ElementWaitTimeout`` from the comments wait is not retried; callers
        treat it as "no data" for this volunteer.
        """

        # The profile page is where the VMS is flakiest, hence the retry.
        try:
            return self._read_profile(volunteer, include_role_assignment)
        except ElementNotFound as exc:
            logger.warning("Retrying %s after missing element: %s", volunteer.name, exc)
        try:
            return self._read_profile(volunteer, include_role_assignment)
        except ElementNotFound as exc:
            raise FetchFailed(volunteer, exc) from exc

    def _read_profile(self, volunteer: VolunteerRef, include_role_assignment: bool) -> VolunteerDetail:
        driver = self.driver
        driver.navigate(volunteer.url)

        section = driver.find_element(By.CLASS_NAME, PROFILE_SECTION_CLASS)
        name = driver.read_text(driver.find_element(By.TAG_NAME, "h2", scope=section)).strip()
        notes = tuple(
            driver.read_text(element)
            for element in driver.find_elements(By.CLASS_NAME, PERSONAL_NOTE_CLASS)
        )
        logger.info("Processing %s", name)

        comments = ""
        if include_role_assignment:
            driver.click(driver.find_element(By.ID, ROLE_PREFERENCES_LINK_ID))
            comments = driver.read_text(
                driver.wait_for_presence(VOLUNTEER_COMMENTS_ID, self.wait_timeout)
            )

        return VolunteerDetail(name=name, comments=comments, personal_notes=notes)
