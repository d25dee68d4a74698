"""Browser access to the volunteer management system (VMS).

The export logic never talks to Playwright directly. It consumes the small
capability surface described by :class:`VmsDriver` (navigate, find, read,
wait, click), which keeps the traversal testable against an in-memory fake.
:class:`PlaywrightVmsDriver` is the production implementation.

The VMS pops up JavaScript alerts on some pages. They carry no information, so
``launch_browser`` stubs out ``window.alert``/``window.confirm`` before any
page script runs.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Protocol
from urllib.parse import urljoin

from playwright.sync_api import (  # type: ignore[import-not-found]
    TimeoutError as PlaywrightTimeoutError,
    Locator,
    Page,
    sync_playwright,
)

DEFAULT_BASE_URL = "https://my.firstinspires.org/VMS"
DEFAULT_TIMEOUT = 15.0
LINK_ATTRIBUTES = ("href", "src")
SUPPRESS_ALERTS_SCRIPT = (
    "window.alert = function(msg) { };"
    "window.confirm = function(msg) { return true; };"
)


class ElementNotFound(RuntimeError):
    """Raised when an element the page should contain is missing."""


class ElementWaitTimeout(TimeoutError):
    """Raised when a dynamically rendered element does not appear in time."""


class By:
    """Lookup strategies understood by :meth:`VmsDriver.find_element`."""

    ID = "id"
    CLASS_NAME = "class name"
    TAG_NAME = "tag name"
    CSS_SELECTOR = "css selector"


def to_css(by: str, value: str) -> str:
    if by == By.ID:
        return f"[id='{value}']"
    if by == By.CLASS_NAME:
        return f".{value}"
    if by in (By.TAG_NAME, By.CSS_SELECTOR):
        return value
    raise ValueError(f"Unsupported lookup strategy: {by!r}")


class VmsDriver(Protocol):
    """Everything the exporter needs from a browser session."""

    def navigate(self, url: str) -> None: ...

    def find_element(self, by: str, value: str, scope: Any = None) -> Any: ...

    def find_elements(self, by: str, value: str, scope: Any = None) -> List[Any]: ...

    def read_text(self, element: Any) -> str: ...

    def read_attribute(self, element: Any, name: str) -> Optional[str]: ...

    def wait_for_presence(self, element_id: str, timeout: float) -> Any: ...

    def click(self, element: Any) -> None: ...


class PlaywrightVmsDriver:
    """:class:`VmsDriver` backed by a Playwright sync-API page.

    Elements handed out are ``Locator`` objects pinned to a single match.
    Playwright timeouts while reading or clicking a located element mean the
    page changed underneath us, so they surface as :class:`ElementNotFound`.
    """

    def __init__(self, page: Page, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.page = page
        self.timeout = timeout

    def navigate(self, url: str) -> None:
        self.page.goto(urljoin(self.page.url, url))

    def _root(self, scope: Optional[Locator]) -> Any:
        return scope if scope is not None else self.page

    def find_element(
        self, by: str, value: str, scope: Optional[Locator] = None
    ) -> Locator:
        locator = self._root(scope).locator(to_css(by, value))
        if locator.count() == 0:
            raise ElementNotFound(f"No element matches {by}={value!r} on {self.page.url}")
        return locator.first

    def find_elements(
        self, by: str, value: str, scope: Optional[Locator] = None
    ) -> List[Locator]:
        locator = self._root(scope).locator(to_css(by, value))
        return [locator.nth(idx) for idx in range(locator.count())]

    def read_text(self, element: Locator) -> str:
        try:
            return element.inner_text(timeout=self.timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise ElementNotFound(f"Element vanished before it could be read on {self.page.url}") from exc

    def read_attribute(self, element: Locator, name: str) -> Optional[str]:
        try:
            value = element.get_attribute(name, timeout=self.timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise ElementNotFound(f"Element vanished before reading {name!r} on {self.page.url}") from exc
        if value and name in LINK_ATTRIBUTES:
            return urljoin(self.page.url, value)
        return value

    def wait_for_presence(self, element_id: str, timeout: float) -> Locator:
        selector = to_css(By.ID, element_id)
        try:
            self.page.wait_for_selector(selector, state="attached", timeout=timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise ElementWaitTimeout(
                f"#{element_id} did not appear within {timeout:g}s on {self.page.url}"
            ) from exc
        return self.page.locator(selector).first

    def click(self, element: Locator) -> None:
        try:
            element.click(timeout=self.timeout * 1000)
        except PlaywrightTimeoutError as exc:
            raise ElementNotFound(f"Element could not be clicked on {self.page.url}") from exc


@contextmanager
def launch_browser(headless: bool, timeout: float = DEFAULT_TIMEOUT) -> Iterator[Page]:
    """Open a Chromium page and close every browser resource on exit."""

    with sync_playwright() as playwright:
        browser = playwright.chromium.launch(headless=headless)
        try:
            context = browser.new_context()
            context.set_default_timeout(timeout * 1000)
            context.add_init_script(SUPPRESS_ALERTS_SCRIPT)
            yield context.new_page()
        finally:
            browser.close()


def perform_login(page: Page, home_url: str, username: str, password: str, timeout: float) -> None:
    """Sign into the VMS using its ASP.NET login form."""

    page.goto(home_url)
    try:
        email_input = page.wait_for_selector("#EmailAddressTextBox", timeout=timeout * 1000)
    except PlaywrightTimeoutError as exc:
        raise RuntimeError("Could not find the email field on the VMS login page.") from exc

    email_input.fill(username)
    page.fill("#PasswordTextBox", password)
    page.click("#LoginButton")

    try:
        page.wait_for_load_state("networkidle", timeout=timeout * 1000)
    except PlaywrightTimeoutError:
        pass
