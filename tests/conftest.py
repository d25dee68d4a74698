# tests/conftest.py
import contextlib
import re
from dataclasses import dataclass, field
from functools import partial

import pytest

from event_role_tracker import EventAndRoleTracker
from export_volunteer_detail import VolunteerExporter
from status_log import StatusLog
from vms_driver import By, ElementNotFound, ElementWaitTimeout
from volunteer_cache import RecordCache, normalize_volunteer_name
from volunteer_detail import VolunteerDetailFetcher

BASE_URL = "https://vms.test"
EVENTS_URL = f"{BASE_URL}/Events"

_CSS_ATTR_CONTAINS = re.compile(r"^(\w+)\[(\w+)\*=['\"]?([^'\"\]]+)['\"]?\]$")


class BrowserCrashed(Exception):
    """Stands in for the process dying mid-run."""


# ---------------------------------------------------------------------
# Minimal DOM + driver implementing the VmsDriver protocol
# ---------------------------------------------------------------------
@dataclass
class FakeElement:
    tag: str
    text: str = ""
    id: str = ""
    classes: tuple = ()
    attrs: dict = field(default_factory=dict)
    children: list = field(default_factory=list)
    reveals: list = field(default_factory=list)

    def descendants(self):
        for child in self.children:
            yield child
            yield from child.descendants()

    def matches(self, by, value):
        if by == By.ID:
            return self.id == value
        if by == By.CLASS_NAME:
            return value in self.classes
        if by == By.TAG_NAME:
            return self.tag == value
        if by == By.CSS_SELECTOR:
            m = _CSS_ATTR_CONTAINS.match(value)
            if not m:
                raise ValueError(f"fake driver cannot parse selector {value!r}")
            tag, attr, needle = m.groups()
            return self.tag == tag and needle in self.attrs.get(attr, "")
        raise ValueError(by)


def link(text, href):
    return FakeElement("a", text=text, attrs={"href": href})


class FakeVmsDriver:
    def __init__(self, pages):
        self.pages = pages
        self.root = FakeElement("body")
        self.url = "about:blank"
        self.visits = []
        self.waits = []
        self.broken_loads = {}  # url -> number of loads that render an empty page
        self.crash_after_visits = None

    def navigate(self, url):
        if self.crash_after_visits is not None and len(self.visits) >= self.crash_after_visits:
            raise BrowserCrashed(url)
        self.visits.append(url)
        self.url = url
        if self.broken_loads.get(url, 0) > 0:
            self.broken_loads[url] -= 1
            self.root = FakeElement("body")
            return
        self.root = self.pages[url]()

    def find_elements(self, by, value, scope=None):
        root = scope if scope is not None else self.root
        return [el for el in root.descendants() if el.matches(by, value)]

    def find_element(self, by, value, scope=None):
        found = self.find_elements(by, value, scope)
        if not found:
            raise ElementNotFound(f"{by}={value} on {self.url}")
        return found[0]

    def read_text(self, element):
        return element.text

    def read_attribute(self, element, name):
        return element.attrs.get(name)

    def wait_for_presence(self, element_id, timeout):
        self.waits.append((element_id, timeout))
        found = self.find_elements(By.ID, element_id)
        if not found:
            raise ElementWaitTimeout(f"#{element_id} after {timeout}s")
        return found[0]

    def click(self, element):
        self.root.children.extend(element.reveals)

    def visits_to(self, url):
        return self.visits.count(url)


# ---------------------------------------------------------------------
# Site builder: events -> roles -> volunteers
# ---------------------------------------------------------------------
class FakeSite:
    def __init__(self):
        self.pages = {}
        self.events = []
        self.people = {}
        self._ids = 0
        self.pages[EVENTS_URL] = self._events_page

    def _next_id(self):
        self._ids += 1
        return self._ids

    def volunteer_url(self, name):
        return self.people[normalize_volunteer_name(name)]

    def add_volunteer(self, name, notes=(), comments=""):
        url = f"{BASE_URL}/People/Details?id={self._next_id()}"
        self.people[name] = url
        self.pages[url] = partial(_volunteer_page, name, tuple(notes), comments)
        return url

    def add_event(self, name, roles, unassigned=()):
        """roles maps role name -> list of raw display names, or None for a table that never renders."""
        event_url = f"{BASE_URL}/EventDetail?id={self._next_id()}"
        role_links = []
        unassigned_links = None if unassigned is None else [
            (raw, self.volunteer_url(raw)) for raw in unassigned
        ]
        for role_name, volunteers in roles.items():
            role_url = f"{BASE_URL}/RoleDetail?id={self._next_id()}"
            schedule = None if volunteers is None else [
                (raw, self.volunteer_url(raw)) for raw in volunteers
            ]
            self.pages[role_url] = partial(_role_page, schedule, unassigned_links)
            role_links.append((role_name, role_url))
        self.pages[event_url] = partial(_event_page, role_links)
        self.events.append((name, event_url))
        return event_url

    def role_url(self, event_name, role_name):
        event_url = dict(self.events)[event_name]
        return dict(self.pages[event_url].args[0])[role_name]

    def _events_page(self):
        return FakeElement("body", children=[link(name, url) for name, url in self.events])


def _event_page(role_links):
    return FakeElement("body", children=[link(name, url) for name, url in role_links])


def _role_page(schedule, unassigned):
    children = []
    if schedule is not None:
        children.append(
            FakeElement("table", id="ScheduleTable", children=[link(t, u) for t, u in schedule])
        )
    tab = FakeElement("a", text="Unassigned", id="UnassignedTab")
    if unassigned is not None:
        tab.reveals = [
            FakeElement("table", id="UnassignedTable", children=[link(t, u) for t, u in unassigned])
        ]
    children.append(tab)
    return FakeElement("body", children=children)


def _volunteer_page(name, notes, comments):
    prefs = FakeElement("a", id="MainContent_RolePreferencesLinkButton")
    prefs.reveals = [FakeElement("div", text=comments, id="MainContent_VolunteerComments")]
    children = [
        FakeElement("div", classes=("secondarySection",), children=[FakeElement("h2", text=name)]),
        *[FakeElement("div", text=note, classes=("personalLabel",)) for note in notes],
        prefs,
    ]
    return FakeElement("body", children=children)


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------
@pytest.fixture
def site():
    """Two events; Alice holds a role in both, Bob is assigned in one and unassigned in the other."""
    s = FakeSite()
    s.add_volunteer("Alice Smith", notes=("FIRST alum",), comments="Happy to judge")
    s.add_volunteer("Bob Jones", notes=(), comments="Prefers mornings")
    s.add_volunteer("Carol White", notes=("Mentor", "Sponsor contact"), comments="Ref lead")
    s.add_volunteer("Dave Green", notes=(), comments="never read")
    s.add_volunteer("Erin Black", notes=("Parent",), comments="First time")
    s.add_event(
        "Regional A",
        {
            "Judge": ["Alice Smith", "Bob Jones (Hidden)", "Alice Smith"],
            "Referee": ["Carol White"],
        },
        unassigned=["Dave Green"],
    )
    s.add_event(
        "Regional B",
        {"Judge": ["Alice Smith", "Erin Black"]},
        unassigned=["Bob Jones"],
    )
    return s


@pytest.fixture
def driver(site):
    return FakeVmsDriver(site.pages)


@pytest.fixture
def export_paths(tmp_path):
    return tmp_path / "volunteer_detail.csv", tmp_path / "status_tracker.txt"


@pytest.fixture
def make_exporter(export_paths):
    """Build a VolunteerExporter over fresh cache/status handles, as a restarted process would."""
    csv_path, status_path = export_paths
    with contextlib.ExitStack() as stack:

        def build(driver, skip_completed=True, abort_on_fetch_failure=False):
            cache = stack.enter_context(RecordCache.open(csv_path))
            status = stack.enter_context(StatusLog.open(status_path))
            tracker = EventAndRoleTracker(driver, EVENTS_URL, status, skip_completed=skip_completed)
            return VolunteerExporter(
                driver,
                tracker,
                VolunteerDetailFetcher(driver, wait_timeout=15),
                cache,
                status,
                wait_timeout=15,
                abort_on_fetch_failure=abort_on_fetch_failure,
            )

        yield build
