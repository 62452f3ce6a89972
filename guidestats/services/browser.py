"""Browser lifecycle management.

One Chromium process is shared by every scrape. It is launched on first
demand, handed out as isolated sessions (fresh context + page per attempt),
and torn down after it has sat idle for BROWSER_IDLE_SHUTDOWN_SECONDS. The
next session after a teardown relaunches it transparently.
"""

import asyncio
import logging
import os
import random
import shutil
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from playwright.async_api import async_playwright, Browser, BrowserContext, Page

from guidestats.config import settings
from guidestats.core.exceptions import BinaryNotFoundError
from guidestats.core.metrics import active_browser_sessions, browser_launches_total

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Binary discovery
# ---------------------------------------------------------------------------

BINARY_NAMES = frozenset(
    {"chrome", "chrome-headless-shell", "headless_shell", "chromium", "Chromium"}
)
SYSTEM_BINARIES = ("chromium", "chromium-browser", "google-chrome", "google-chrome-stable")


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def default_cache_dirs() -> list[str]:
    """Directories searched for a downloaded browser build, in order."""
    dirs = []
    if settings.BROWSER_CACHE_DIR:
        dirs.append(settings.BROWSER_CACHE_DIR)
    dirs.append(
        os.environ.get("PLAYWRIGHT_BROWSERS_PATH")
        or os.path.expanduser("~/.cache/ms-playwright")
    )
    return dirs


def find_browser_binary(
    override: str | None = None, cache_dirs: list[str] | None = None
) -> str | None:
    """Locate a Chrome/Chromium executable.

    Order: explicit override, downloaded builds under the cache dirs, then
    whatever is on PATH.
    """
    override = settings.BROWSER_EXECUTABLE_PATH if override is None else override
    if override:
        if _is_executable(override):
            return override
        logger.warning("BROWSER_EXECUTABLE_PATH=%s is not executable, ignoring", override)

    for root in default_cache_dirs() if cache_dirs is None else cache_dirs:
        if not os.path.isdir(root):
            continue
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                if name in BINARY_NAMES and _is_executable(path):
                    return path

    for name in SYSTEM_BINARIES:
        path = shutil.which(name)
        if path:
            return path
    return None


# ---------------------------------------------------------------------------
# Session setup
# ---------------------------------------------------------------------------

CHROME_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36",
]

# Pre-accepts the cookie consent interstitial
CONSENT_COOKIES = [
    {"name": "CONSENT", "value": "YES+cb", "domain": ".google.com", "path": "/"},
]

# Markup and styling load; heavy payloads do not
BLOCKED_RESOURCE_TYPES = frozenset({"image", "media", "font"})

TRACKING_DOMAINS = frozenset(
    {
        "doubleclick.net",
        "googlesyndication.com",
        "googletagmanager.com",
        "google-analytics.com",
    }
)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-blink-features=AutomationControlled",
]


async def _route_handler(route, request):
    """Abort heavy resource types and tracker requests."""
    if request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
        return
    try:
        hostname = request.url.split("//", 1)[1].split("/", 1)[0].split(":")[0].lower()
    except IndexError:
        await route.continue_()
        return
    if any(domain in hostname for domain in TRACKING_DOMAINS):
        await route.abort()
        return
    await route.continue_()


def _context_kwargs() -> dict:
    return dict(
        user_agent=random.choice(CHROME_USER_AGENTS),
        viewport={"width": 1366, "height": 900},
        locale="en-US",
        timezone_id="America/New_York",
        java_script_enabled=True,
        color_scheme="light",
        extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
    )


class BrowserManager:
    """Owns the shared browser process and issues isolated sessions.

    Launch and teardown are serialized by one lock; sessions themselves run
    concurrently, each in its own BrowserContext.
    """

    def __init__(
        self,
        idle_timeout: float | None = None,
        launcher: Callable[[str], Awaitable[Browser]] | None = None,
        binary_finder: Callable[[], str | None] = find_browser_binary,
    ):
        self._idle_timeout = (
            settings.BROWSER_IDLE_SHUTDOWN_SECONDS if idle_timeout is None else idle_timeout
        )
        self._launcher = launcher or self._launch_chromium
        self._binary_finder = binary_finder
        self._binary: str | None = None
        self._playwright = None
        self._browser: Browser | None = None
        self._lock: asyncio.Lock | None = None
        self._loop = None
        self._idle_task: asyncio.Task | None = None
        self._active = 0

    # -- state -------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    @property
    def active_sessions(self) -> int:
        return self._active

    @property
    def idle_timer_armed(self) -> bool:
        return self._idle_task is not None and not self._idle_task.done()

    def describe(self) -> dict:
        """Read-only diagnostics; never launches anything."""
        cache_dirs = default_cache_dirs()
        return {
            "executable": self._binary or self._binary_finder(),
            "cache_dirs": {d: os.path.isdir(d) for d in cache_dirs},
            "running": self.is_running,
            "active_sessions": self._active,
            "idle_timeout_seconds": self._idle_timeout,
        }

    # -- launch / teardown ------------------------------------------------

    def resolve_binary(self) -> str:
        """Path of the browser binary, or BinaryNotFoundError.

        Positive results are remembered; a miss is re-checked next time so a
        browser installed after startup is picked up.
        """
        if self._binary is None:
            self._binary = self._binary_finder()
        if not self._binary:
            raise BinaryNotFoundError(
                "Chrome/Chromium not found. Install one with "
                "`python -m playwright install chromium` or set BROWSER_EXECUTABLE_PATH."
            )
        return self._binary

    def _get_lock(self) -> asyncio.Lock:
        """Get or create a Lock bound to the current event loop."""
        current_loop = asyncio.get_running_loop()
        if self._lock is None or self._loop is not current_loop:
            self._lock = asyncio.Lock()
            self._loop = current_loop
        return self._lock

    async def _launch_chromium(self, executable_path: str) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=settings.BROWSER_HEADLESS,
            executable_path=executable_path,
            args=CHROMIUM_ARGS,
        )

    async def _ensure_browser(self) -> Browser:
        if self.is_running:
            return self._browser
        async with self._get_lock():
            if self.is_running:
                return self._browser
            if self._browser is not None:
                logger.warning("Browser disconnected, relaunching")
                await self._teardown()
            path = self.resolve_binary()
            self._browser = await self._launcher(path)
            browser_launches_total.inc()
            logger.info("Browser launched (%s)", path)
            return self._browser

    async def _teardown(self) -> None:
        """Close the browser and Playwright driver. Caller holds the lock."""
        browser, self._browser = self._browser, None
        pw, self._playwright = self._playwright, None
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.debug("Browser close failed: %s", e)
        if pw is not None:
            try:
                await pw.stop()
            except Exception as e:
                logger.debug("Playwright stop failed: %s", e)

    async def shutdown(self) -> None:
        self._cancel_idle_timer()
        async with self._get_lock():
            was_running = self._browser is not None
            await self._teardown()
        if was_running:
            logger.info("Browser shut down")

    # -- idle timer --------------------------------------------------------

    def _cancel_idle_timer(self) -> None:
        if self._idle_task is not None and not self._idle_task.done():
            self._idle_task.cancel()
        self._idle_task = None

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        if self._browser is None:
            return
        self._idle_task = asyncio.get_running_loop().create_task(self._idle_shutdown())

    async def _idle_shutdown(self) -> None:
        await asyncio.sleep(self._idle_timeout)
        # Detach first so a new session cannot cancel us mid-teardown
        self._idle_task = None
        async with self._get_lock():
            if self._active or self._browser is None:
                return
            logger.info("Browser idle for %ss, shutting down", self._idle_timeout)
            await self._teardown()

    # -- sessions ----------------------------------------------------------

    @asynccontextmanager
    async def session(self):
        """Yield a fresh Page in its own BrowserContext.

        The context is closed on every exit path, including cancellation,
        before the idle timer is re-armed.
        """
        self._cancel_idle_timer()
        self._active += 1
        active_browser_sessions.inc()
        context: BrowserContext | None = None
        page: Page | None = None
        try:
            browser = await self._ensure_browser()
            context = await browser.new_context(**_context_kwargs())
            await context.add_cookies(CONSENT_COOKIES)
            await context.route("**/*", _route_handler)
            page = await context.new_page()
            yield page
        finally:
            try:
                await asyncio.shield(self._release(page, context))
            except Exception as e:
                logger.debug("Session release failed: %s", e)

    async def _release(self, page: Page | None, context: BrowserContext | None) -> None:
        try:
            if page is not None:
                try:
                    await page.close()
                except Exception as e:
                    logger.debug("Page close failed: %s", e)
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    logger.debug("Context close failed: %s", e)
        finally:
            self._active = max(0, self._active - 1)
            active_browser_sessions.dec()
            if self._active == 0:
                self._arm_idle_timer()


browser_manager = BrowserManager()
