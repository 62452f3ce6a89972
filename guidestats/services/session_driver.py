"""One scrape attempt against one candidate URL.

Sequence (strictly in order, on a page owned by this attempt only):

  1. navigate, waiting for initial markup only
  2. bail out with ConsentWallError if the consent interstitial rendered
  3. pick up a display name (selectors first, then a text heuristic)
  4. open the stats panel; failing to open it is not fatal
  5-7. panel rows + body text -> merged StatsRecord
  8. if every count is 0, give hydration one more chance and re-extract

The sleeps in here are hydration heuristics, not readiness guarantees.
Tests inject ``sleep`` so nothing waits on the wall clock.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from playwright.async_api import Error as PlaywrightError, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from guidestats.core.exceptions import ConsentWallError, NavigationTimeoutError
from guidestats.schemas.stats import ScrapeMode, StatsRecord
from guidestats.services.extraction import (
    extract_panel_counts,
    extract_text_counts,
    guess_display_name,
    is_boilerplate,
    merge_counts,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class TimingProfile:
    navigation_timeout_ms: int
    panel_timeout_ms: int
    panel_retry_timeout_ms: int
    nudge_delay_s: float
    hydration_delay_s: float
    deadline_s: float


TIMING_PROFILES: dict[ScrapeMode, TimingProfile] = {
    ScrapeMode.NORMAL: TimingProfile(
        navigation_timeout_ms=45_000,
        panel_timeout_ms=7_000,
        panel_retry_timeout_ms=3_000,
        nudge_delay_s=0.6,
        hydration_delay_s=1.2,
        deadline_s=90,
    ),
    ScrapeMode.SLOW: TimingProfile(
        navigation_timeout_ms=90_000,
        panel_timeout_ms=15_000,
        panel_retry_timeout_ms=6_000,
        nudge_delay_s=1.5,
        hydration_delay_s=3.0,
        deadline_s=180,
    ),
}

CONSENT_SIGNATURES = ("before you continue to google",)

MAX_NAME_LENGTH = 80
NAME_SELECTORS = (
    "h1.geAzIe",
    '[role="main"] h1',
    "h1",
    "div.fontHeadlineLarge",
)

STATS_TRIGGER_SELECTOR = '[jsaction*="pane.profile-stats.showStats"], .uyVA9'
STATS_TRIGGER_KEYWORD = "points"
PANEL_READY_SELECTOR = '.QrGqBf, .nKYSz, [role="dialog"], div[aria-modal="true"]'

BODY_TEXT_JS = "() => (document.body && document.body.innerText) || ''"

# Clicks the first visible interactive element whose text contains the keyword
CLICK_BY_KEYWORD_JS = """
(keyword) => {
    const re = new RegExp(keyword, 'i');
    const nodes = [...document.querySelectorAll('button,[role="button"],a,div,span')];
    const el = nodes.find(n => n.offsetParent !== null && re.test(n.textContent || ''));
    if (!el) return false;
    el.click();
    return true;
}
"""

# Walks the DOM (including open shadow roots) for stats rows and returns
# [{label, value}] pairs as plain text
COLLECT_PANEL_ROWS_JS = """
() => {
    function* walk(root) {
        yield root;
        for (const el of (root.querySelectorAll ? root.querySelectorAll('*') : [])) {
            yield el;
            if (el.shadowRoot) yield* walk(el.shadowRoot);
        }
    }
    function findTextDeep(root, selector) {
        const direct = root.querySelector && root.querySelector(selector);
        if (direct) return (direct.textContent || '').trim();
        for (const el of (root.querySelectorAll ? root.querySelectorAll('*') : [])) {
            if (el.matches && el.matches(selector)) return (el.textContent || '').trim();
            if (el.shadowRoot) {
                const t = findTextDeep(el.shadowRoot, selector);
                if (t) return t;
            }
        }
        return '';
    }
    const rows = [];
    for (const node of walk(document)) {
        const cls = (node.className || '').toString();
        if (/\\bnKYSz\\b/.test(cls)) {
            rows.push({label: findTextDeep(node, '.FM5HI'), value: findTextDeep(node, '.AyEQdd')});
        }
    }
    return rows;
}
"""


def is_consent_wall(body_text: str) -> bool:
    lowered = (body_text or "").lower()
    return any(sig in lowered for sig in CONSENT_SIGNATURES)


async def _navigate(page: Page, url: str, timing: TimingProfile) -> None:
    try:
        await page.goto(
            url, wait_until="domcontentloaded", timeout=timing.navigation_timeout_ms
        )
    except PlaywrightTimeoutError as e:
        raise NavigationTimeoutError(
            f"Navigation to {url} timed out after {timing.navigation_timeout_ms}ms"
        ) from e


async def _body_text(page: Page) -> str:
    return (await page.evaluate(BODY_TEXT_JS)) or ""


async def _text_of(page: Page, selector: str) -> str | None:
    try:
        el = await page.query_selector(selector)
        if el is None:
            return None
        text = " ".join((await el.inner_text()).split())
    except PlaywrightError as e:
        logger.debug("Name selector %s failed: %s", selector, e)
        return None
    return text or None


async def find_display_name(page: Page, body_text: str) -> str | None:
    """Selectors in priority order, then the first-lines heuristic."""
    for selector in NAME_SELECTORS:
        name = await _text_of(page, selector)
        if name and len(name) <= MAX_NAME_LENGTH and not is_boilerplate(name):
            return name
    return guess_display_name(body_text)


async def _wait_for_panel(page: Page, timeout_ms: int) -> bool:
    try:
        await page.wait_for_selector(PANEL_READY_SELECTOR, timeout=timeout_ms)
        return True
    except PlaywrightTimeoutError:
        return False


async def open_stats_panel(page: Page, timing: TimingProfile, sleep: Sleep = asyncio.sleep) -> bool:
    """Click the points chip and wait for the stats overlay.

    Returns whether the overlay rendered. Never raises for a missing panel.
    """
    trigger = await page.query_selector(STATS_TRIGGER_SELECTOR)
    if trigger is not None:
        try:
            await trigger.click(timeout=timing.panel_retry_timeout_ms)
        except PlaywrightError as e:
            logger.debug("Stats trigger click failed: %s", e)
    else:
        clicked = await page.evaluate(CLICK_BY_KEYWORD_JS, STATS_TRIGGER_KEYWORD)
        logger.debug("Stats trigger not found, keyword click=%s", clicked)

    if await _wait_for_panel(page, timing.panel_timeout_ms):
        return True

    # Nudge: a scroll often provokes the lazy overlay to render
    await page.mouse.wheel(0, 400)
    await sleep(timing.nudge_delay_s)
    return await _wait_for_panel(page, timing.panel_retry_timeout_ms)


async def _extract(page: Page, name: str | None) -> StatsRecord:
    rows = await page.evaluate(COLLECT_PANEL_ROWS_JS) or []
    structured = extract_panel_counts(rows)
    text = extract_text_counts(await _body_text(page))
    return StatsRecord(name=name, **merge_counts(structured, text))


async def drive_session(
    page: Page,
    url: str,
    timing: TimingProfile = TIMING_PROFILES[ScrapeMode.NORMAL],
    sleep: Sleep = asyncio.sleep,
) -> StatsRecord:
    """Run one full attempt against ``url`` and return the merged record."""
    await _navigate(page, url, timing)

    body = await _body_text(page)
    if is_consent_wall(body):
        raise ConsentWallError(f"Consent wall at {url}")

    name = await find_display_name(page, body)
    panel_open = await open_stats_panel(page, timing, sleep)
    if not panel_open:
        logger.info("Stats panel did not open for %s, falling back to text", url)

    record = await _extract(page, name)
    if record.is_empty():
        logger.info("All counts are 0 for %s, waiting for late hydration", url)
        await sleep(timing.hydration_delay_s)
        record = await _extract(page, name)
    return record
