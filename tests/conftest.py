"""
Shared fakes for the search automation tests.

FakePage stands in for browser.BrowserPage: it serves a landing page and,
after submit, whatever results page is queued next. FakeClock gives the
state machine a time source whose sleep() advances it instantly.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest

from search_automation.config_loader import RunSettings

FIXTURES = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


class FakeClock:
    """Monotonic clock driven only by the sleeps issued against it"""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ResultsPage:
    """What the browser shows after the query is submitted"""

    def __init__(
        self,
        url: str,
        html: str = "",
        text: Optional[str] = None,
        title: str = "Results",
        elements: Sequence[str] = (),
    ):
        self.url = url
        self.html = html
        self.text = text if text is not None else ""
        self.title = title
        self.elements = set(elements)


class FakePage:
    """Scriptable BrowserPage double; records every interaction"""

    def __init__(
        self,
        *,
        landing_url: Optional[str] = None,
        landing_text: str = "Search the web",
        landing_elements: Sequence[str] = (),
        results: Sequence[ResultsPage] = (),
        submit_navigates: bool = True,
        fail_on: Optional[Dict[str, Exception]] = None,
        title_failures: int = 0,
    ):
        self.landing_url = landing_url
        self.landing_text = landing_text
        self.landing_elements = set(landing_elements)
        self.results = list(results)
        self.submit_navigates = submit_navigates
        self.fail_on = dict(fail_on or {})
        self.title_failures = title_failures

        self.url = "about:blank"
        self.text = ""
        self.html = ""
        self._title = ""
        self.elements: set = set()

        self.navigations: List[str] = []
        self.clicks: List[str] = []
        self.presses: List[str] = []
        self.typed: List[str] = []
        self.submits = 0
        self.content_calls = 0
        self.screenshots: List[Path] = []

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail_on:
            raise self.fail_on[method]

    async def navigate(self, url: str, timeout_ms: int = 60000) -> None:
        self._maybe_fail("navigate")
        self.navigations.append(url)
        self.url = self.landing_url or url
        self.text = self.landing_text
        self.html = f"<html><body>{self.landing_text}</body></html>"
        self._title = "Landing"
        self.elements = set(self.landing_elements)

    async def has_element(self, selector: str) -> bool:
        self._maybe_fail("has_element")
        return selector in self.elements

    async def click(self, selector: str, delay_ms: int = 0) -> bool:
        self._maybe_fail("click")
        if selector not in self.elements:
            return False
        self.clicks.append(selector)
        return True

    async def press(self, key: str) -> None:
        self._maybe_fail(f"press:{key}")
        self.presses.append(key)

    async def type_text(self, text: str, delay_ms: int = 0) -> None:
        self._maybe_fail("type_text")
        self.typed.append(text)

    async def submit(self, key: str = "Enter", timeout_ms: int = 60000) -> bool:
        self._maybe_fail("submit")
        self.submits += 1
        self.presses.append(key)
        if not self.submit_navigates or not self.results:
            return False
        page = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        self.url = page.url
        self.text = page.text
        self.html = page.html
        self._title = page.title
        self.elements = set(page.elements)
        return True

    async def evaluate_text(self) -> str:
        return self.text

    def current_url(self) -> str:
        return self.url

    async def title(self) -> str:
        if self.title_failures > 0:
            self.title_failures -= 1
            raise RuntimeError("Execution context was destroyed")
        return self._title

    async def content(self) -> str:
        self.content_calls += 1
        return self.html

    async def screenshot(self, path) -> Optional[Path]:
        path = Path(path)
        self.screenshots.append(path)
        return path

    @property
    def typed_text(self) -> str:
        return "".join(self.typed)


class FakeSessionFactory:
    """Stands in for BrowserSession: one FakePage per worker, closes tracked"""

    def __init__(self, page_for_worker=None, fail_for: Sequence[int] = ()):
        self.page_for_worker = page_for_worker or (lambda worker_id: FakePage())
        self.fail_for = set(fail_for)
        self.identities: Dict[int, object] = {}
        self.pages: Dict[int, FakePage] = {}
        self.opened: List[int] = []
        self.closed: List[int] = []

    def __call__(self, identity, settings, worker_id):
        return self._session(identity, worker_id)

    @asynccontextmanager
    async def _session(self, identity, worker_id):
        self.identities[worker_id] = identity
        if worker_id in self.fail_for:
            raise RuntimeError("browserType.launch: proxy connection refused")
        page = self.page_for_worker(worker_id)
        self.pages[worker_id] = page
        self.opened.append(worker_id)
        try:
            yield page
        finally:
            self.closed.append(worker_id)


GOOGLE_BOX = "textarea[name='q'], input[name='q']"
BING_BOX = "#sb_form_q"


def google_page(results_url: str = "https://www.google.com/search?q=best+books", **kwargs) -> FakePage:
    """Landing with a consent banner and query box, results from the fixture"""
    results = kwargs.pop("results", None) or [
        ResultsPage(url=results_url, html=load_fixture("google_results.html"), title="best books - Google Search")
    ]
    kwargs.setdefault("landing_elements", ("button#L2AGLb", GOOGLE_BOX))
    return FakePage(results=results, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> RunSettings:
    return RunSettings(
        keywords=("best books", "best country"),
        proxy_host="proxy.example.net",
        proxy_port=7777,
        proxy_username="customer",
        proxy_password="secret",
        worker_count=1,
        max_retries=3,
        ip_check_enabled=False,
        backoff_base_seconds=5.0,
        backoff_jitter_seconds=0.0,
        backoff_max_seconds=120.0,
    )
