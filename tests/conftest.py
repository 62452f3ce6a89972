"""Shared fixtures: fake Playwright objects and an API client."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from guidestats.api.deps import get_profile_stats_service
from guidestats.core.cache import ResultCache
from guidestats.schemas.stats import ScrapeMode
from guidestats.services.browser import BrowserManager
from guidestats.services.limiter import InFlightRegistry, ScrapeLimiter
from guidestats.services.profile_scraper import ProfileStatsService
from guidestats.services.session_driver import (
    BODY_TEXT_JS,
    CLICK_BY_KEYWORD_JS,
    COLLECT_PANEL_ROWS_JS,
    TimingProfile,
)

FAST_TIMING = TimingProfile(
    navigation_timeout_ms=1_000,
    panel_timeout_ms=100,
    panel_retry_timeout_ms=50,
    nudge_delay_s=0,
    hydration_delay_s=0,
    deadline_s=5,
)
FAST_PROFILES = {ScrapeMode.NORMAL: FAST_TIMING, ScrapeMode.SLOW: FAST_TIMING}


async def no_sleep(seconds):
    return None


class FakeElement:
    def __init__(self, text: str = ""):
        self.text = text
        self.clicks = 0

    async def inner_text(self):
        return self.text

    async def click(self, timeout=None):
        self.clicks += 1


class FakeMouse:
    def __init__(self):
        self.wheels: list[tuple[int, int]] = []

    async def wheel(self, dx, dy):
        self.wheels.append((dx, dy))


class FakePage:
    """Scriptable stand-in for a Playwright Page.

    ``body_texts`` and ``panel_rows`` are consumed one per evaluate call; the
    last value repeats once the list runs out.
    """

    def __init__(
        self,
        body_texts=("",),
        panel_rows=((),),
        elements=None,
        panel_ready=True,
        goto_error=None,
        navigations=None,
    ):
        self.body_texts = list(body_texts)
        self.panel_rows = [list(r) for r in panel_rows]
        self.elements = dict(elements or {})
        self.panel_ready = panel_ready
        self.goto_error = goto_error
        self.navigations = navigations if navigations is not None else []
        self.keyword_clicks: list[str] = []
        self.mouse = FakeMouse()
        self.closed = False

    @staticmethod
    def _next(seq):
        return seq.pop(0) if len(seq) > 1 else seq[0]

    async def goto(self, url, wait_until=None, timeout=None):
        self.navigations.append(url)
        if self.goto_error is not None:
            raise self.goto_error

    async def evaluate(self, script, arg=None):
        if script == BODY_TEXT_JS:
            return self._next(self.body_texts)
        if script == COLLECT_PANEL_ROWS_JS:
            return self._next(self.panel_rows)
        if script == CLICK_BY_KEYWORD_JS:
            self.keyword_clicks.append(arg)
            return True
        raise AssertionError(f"unexpected script: {script[:40]}")

    async def query_selector(self, selector):
        return self.elements.get(selector)

    async def wait_for_selector(self, selector, timeout=None):
        if not self.panel_ready:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        return FakeElement()

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self, page_factory):
        self._page_factory = page_factory
        self.cookies = []
        self.routes = []
        self.pages = []
        self.closed = False

    async def add_cookies(self, cookies):
        self.cookies.extend(cookies)

    async def route(self, pattern, handler):
        self.routes.append(pattern)

    async def new_page(self):
        page = self._page_factory()
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, page_factory=FakePage):
        self._page_factory = page_factory
        self.contexts: list[FakeContext] = []
        self.closed = False

    def is_connected(self):
        return not self.closed

    async def new_context(self, **kwargs):
        context = FakeContext(self._page_factory)
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed = True


class FakeLauncher:
    """Launcher callable that records every launch."""

    def __init__(self, page_factory=FakePage):
        self.page_factory = page_factory
        self.launches: list[FakeBrowser] = []

    async def __call__(self, executable_path):
        browser = FakeBrowser(self.page_factory)
        self.launches.append(browser)
        return browser


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest_asyncio.fixture
async def browser(launcher):
    manager = BrowserManager(
        idle_timeout=60, launcher=launcher, binary_finder=lambda: "/usr/bin/chromium"
    )
    yield manager
    await manager.shutdown()


def make_service(browser, driver=None, limit=1, **kwargs) -> ProfileStatsService:
    opts = dict(
        browser=browser,
        cache=ResultCache(ttl=300, enabled=True),
        limiter=ScrapeLimiter(limit=limit),
        inflight=InFlightRegistry(),
        timing_profiles=FAST_PROFILES,
        sleep=no_sleep,
    )
    if driver is not None:
        opts["driver"] = driver
    opts.update(kwargs)
    return ProfileStatsService(**opts)


@pytest.fixture
def service(browser):
    return make_service(browser)


@pytest_asyncio.fixture
async def client(service):
    from guidestats.main import app

    app.dependency_overrides[get_profile_stats_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
