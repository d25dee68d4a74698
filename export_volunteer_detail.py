"""Export volunteer assignment detail from the volunteer management system.

The VMS export omits the free-text fields volunteers fill in (comments and
personal notes), so this script signs in, walks every event, role and
volunteer, and appends one CSV row per (event, role, volunteer). Volunteers
registered for an event but not yet placed are exported under the role name
``Unassigned``.

Runs are resumable: rows already in the CSV are skipped, and a volunteer's
profile is read at most once no matter how many roles they hold. Killing the
script at any point is safe; run it again to continue.

Usage example:

    python export_volunteer_detail.py --headed --output volunteer_detail.csv

Credentials are requested at runtime or read from environment variables so they
are not persisted in the source code or shell history.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from event_role_tracker import EventAndRoleTracker, NoRolesError
from status_log import StatusLog
from vms_driver import (
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT,
    By,
    ElementNotFound,
    ElementWaitTimeout,
    PlaywrightVmsDriver,
    VmsDriver,
    launch_browser,
    perform_login,
)
from volunteer_cache import (
    CorruptCacheError,
    EventRef,
    ExportRow,
    RecordCache,
    VolunteerRef,
)
from volunteer_detail import FetchFailed, VolunteerDetailFetcher

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = "volunteer_detail.csv"
DEFAULT_STATUS_FILE = "status_tracker.txt"
SCHEDULE_TABLE_ID = "ScheduleTable"
UNASSIGNED_TABLE_ID = "UnassignedTable"
UNASSIGNED_TAB_ID = "UnassignedTab"
UNASSIGNED_ROLE = "Unassigned"
VOLUNTEER_LINK_SELECTOR = "a[href*=People]"


@dataclass
class ExportSummary:
    rows_written: int = 0
    rows_skipped: int = 0
    details_reused: int = 0
    details_fetched: int = 0
    events_completed: int = 0
    empty_units: List[str] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)


class VolunteerExporter:
    """Walk events, roles and volunteers, appending rows not yet exported.

    Completion markers are written after each role and after each event's
    unassigned pool. A ``FetchFailed`` is logged and skipped unless
    ``abort_on_fetch_failure`` is set. A role or event that skipped anyone is
    left unmarked, so the next run revisits it and picks up the missing rows.
    """

    def __init__(
        self,
        driver: VmsDriver,
        tracker: EventAndRoleTracker,
        fetcher: VolunteerDetailFetcher,
        cache: RecordCache,
        status_log: StatusLog,
        wait_timeout: float = DEFAULT_TIMEOUT,
        abort_on_fetch_failure: bool = False,
    ) -> None:
        self.driver = driver
        self.tracker = tracker
        self.fetcher = fetcher
        self.cache = cache
        self.status_log = status_log
        self.wait_timeout = wait_timeout
        self.abort_on_fetch_failure = abort_on_fetch_failure
        self.summary = ExportSummary()

    def run(self) -> ExportSummary:
        for event in self.tracker.remaining_events():
            self.export_event(event)
        return self.summary

    def export_event(self, event: EventRef) -> None:
        logger.info("=== Event: %s ===", event.name)
        finished = True
        for role in self.tracker.remaining_roles(event):
            logger.info("--- Role: %s ---", role.name)
            self.driver.navigate(role.url)
            if self.export_unit(event, role.name, SCHEDULE_TABLE_ID, include_role_assignment=True):
                self.status_log.mark_role_complete(event.name, role.name)
            else:
                finished = False

        try:
            finished = self.export_unassigned(event) and finished
        except NoRolesError as exc:
            logger.error("%s; event left unfinished", exc)
            self.summary.failures.append(f"{event.name} -> no_roles")
            return

        if finished:
            self.status_log.mark_event_complete(event.name)
            self.summary.events_completed += 1

    def export_unassigned(self, event: EventRef) -> bool:
        # Every role page links to the same unassigned pool, so any role will do.
        role = self.tracker.any_role(event)
        logger.info("%s for unassigned volunteers", role.name)
        if not self._open_unassigned_tab(role.url):
            self.summary.failures.append(f"{event.name}/{UNASSIGNED_ROLE} -> tab_not_found")
            return False
        return self.export_unit(
            event, UNASSIGNED_ROLE, UNASSIGNED_TABLE_ID, include_role_assignment=False
        )

    def _open_unassigned_tab(self, role_url: str) -> bool:
        for attempt in (1, 2):
            self.driver.navigate(role_url)
            try:
                self.driver.click(self.driver.find_element(By.ID, UNASSIGNED_TAB_ID))
                return True
            except ElementNotFound as exc:
                logger.warning("Unassigned tab not found (attempt %d): %s", attempt, exc)
        return False

    def enumerate_volunteers(self, table_id: str) -> List[VolunteerRef]:
        """Return the table's volunteers, keeping the first of any repeated name."""

        table = self.driver.wait_for_presence(table_id, self.wait_timeout)
        volunteers: List[VolunteerRef] = []
        seen: set[str] = set()
        for link in self.driver.find_elements(By.CSS_SELECTOR, VOLUNTEER_LINK_SELECTOR, scope=table):
            href = self.driver.read_attribute(link, "href")
            if not href:
                continue
            volunteer = VolunteerRef.from_link(self.driver.read_text(link), href)
            if volunteer.name in seen:
                continue
            seen.add(volunteer.name)
            volunteers.append(volunteer)
        return volunteers

    def export_unit(
        self, event: EventRef, role_name: str, table_id: str, include_role_assignment: bool
    ) -> bool:
        """Export one role or unassigned pool; False if any volunteer was left out."""

        try:
            volunteers = self.enumerate_volunteers(table_id)
        except ElementWaitTimeout:
            logger.info("Skipping because no volunteers in %s/%s", event.name, role_name)
            self.summary.empty_units.append(f"{event.name}/{role_name}")
            return True

        complete = True
        for volunteer in volunteers:
            if not self.export_volunteer(event, role_name, volunteer, include_role_assignment):
                complete = False
        return complete

    def export_volunteer(
        self,
        event: EventRef,
        role_name: str,
        volunteer: VolunteerRef,
        include_role_assignment: bool,
    ) -> bool:
        if self.cache.is_processed(event.name, role_name, volunteer.name):
            logger.info(
                "Skipping because already logged: %s, %s, %s",
                event.name,
                role_name,
                volunteer.name,
            )
            self.summary.rows_skipped += 1
            return True

        detail = self.cache.lookup_detail(volunteer.name)
        if detail is not None:
            logger.info("Using cached volunteer details for: %s", volunteer.name)
            self.summary.details_reused += 1
        else:
            try:
                detail = self.fetcher.fetch(volunteer, include_role_assignment)
            except ElementWaitTimeout as exc:
                logger.warning("No role assignment detail for %s: %s", volunteer.name, exc)
                self.summary.failures.append(f"{event.name}/{role_name}/{volunteer.name} -> timeout")
                return False
            except FetchFailed as exc:
                if self.abort_on_fetch_failure:
                    raise
                logger.error("%s; skipping", exc)
                self.summary.failures.append(f"{event.name}/{role_name}/{volunteer.name} -> fetch_failed")
                return False
            self.summary.details_fetched += 1

        self.cache.record_row(
            ExportRow(
                event_name=event.name,
                role_name=role_name,
                volunteer_name=volunteer.name,
                comments=detail.comments,
                personal_notes=detail.personal_notes,
            )
        )
        self.summary.rows_written += 1
        return True


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Export volunteer comments and personal notes from the VMS to CSV."
    )
    parser.add_argument(
        "--base-url",
        default=DEFAULT_BASE_URL,
        help=f"VMS home page, which shows the login form (default: {DEFAULT_BASE_URL}).",
    )
    parser.add_argument(
        "--events-url",
        help="Page listing the events to export. Defaults to --base-url.",
    )
    parser.add_argument(
        "--output",
        default=DEFAULT_OUTPUT,
        help=f"CSV file to append rows to (default: {DEFAULT_OUTPUT}).",
    )
    parser.add_argument(
        "--status-file",
        default=DEFAULT_STATUS_FILE,
        help=f"Progress log of finished events and roles (default: {DEFAULT_STATUS_FILE}).",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Launch the browser in headless mode (default).",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Launch the browser with a visible window for troubleshooting.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f"Seconds to wait for page actions before giving up (default: {DEFAULT_TIMEOUT:g}).",
    )
    parser.add_argument(
        "--wait-timeout",
        type=float,
        default=DEFAULT_TIMEOUT,
        help=(
            "Seconds to wait for tables and comments that render after page load "
            f"(default: {DEFAULT_TIMEOUT:g})."
        ),
    )
    parser.add_argument(
        "--ignore-status-log",
        action="store_true",
        help="Rescan events and roles already marked finished in the status file.",
    )
    parser.add_argument(
        "--abort-on-fetch-failure",
        action="store_true",
        help="Stop the run when a volunteer page cannot be read instead of skipping it.",
    )
    parser.add_argument(
        "--username",
        help=(
            "VMS email address. If omitted, the script reads from the "
            "VMS_USERNAME environment variable or prompts interactively."
        ),
    )
    parser.add_argument(
        "--password",
        help=(
            "VMS password. If omitted, the script reads from the "
            "VMS_PASSWORD environment variable or prompts interactively."
        ),
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.headless and args.headed:
        parser.error("--headless and --headed cannot be used together")

    return args


def prompt_for_credentials(args: argparse.Namespace) -> Tuple[str, str]:
    import os

    username = (args.username or os.environ.get("VMS_USERNAME") or "").strip()
    password = args.password or os.environ.get("VMS_PASSWORD")

    if not username:
        username = input("VMS email: ").strip()
    if not password:
        password = getpass.getpass("VMS password: ")

    return username, password


def resolve_headless(args: argparse.Namespace) -> bool:
    if args.headed:
        return False
    return True


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s  %(levelname)-7s %(message)s",
        datefmt="%H:%M:%S",
    )


def print_summary(summary: ExportSummary) -> None:
    print(
        f"Wrote {summary.rows_written} rows "
        f"({summary.details_fetched} fetched, {summary.details_reused} from cache). "
        f"Skipped {summary.rows_skipped} rows already exported. "
        f"Completed {summary.events_completed} events."
    )
    if summary.empty_units:
        print("Units with no volunteers:")
        for unit in summary.empty_units:
            print(f"  {unit}")
    if summary.failures:
        print("Not exported (rerun to retry):")
        for failure in summary.failures:
            print(f"  {failure}")


def run_export(args: argparse.Namespace) -> int:
    try:
        cache = RecordCache.open(Path(args.output))
    except CorruptCacheError as exc:
        print(f"Cannot resume from {args.output}: {exc}", file=sys.stderr)
        return 1

    with cache:
        username, password = prompt_for_credentials(args)
        with StatusLog.open(Path(args.status_file)) as status_log, launch_browser(
            resolve_headless(args), args.timeout
        ) as page:
            perform_login(page, args.base_url, username, password, args.timeout)
            driver = PlaywrightVmsDriver(page, args.timeout)
            tracker = EventAndRoleTracker(
                driver,
                args.events_url or args.base_url,
                status_log,
                skip_completed=not args.ignore_status_log,
            )
            exporter = VolunteerExporter(
                driver,
                tracker,
                VolunteerDetailFetcher(driver, args.wait_timeout),
                cache,
                status_log,
                wait_timeout=args.wait_timeout,
                abort_on_fetch_failure=args.abort_on_fetch_failure,
            )
            summary = exporter.run()

    print_summary(summary)
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    start = time.monotonic()
    try:
        return run_export(args)
    finally:
        print(f"Done. This took {int(time.monotonic() - start)} seconds to run")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
