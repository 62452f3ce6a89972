"""Profile stats orchestration.

Request path:

    normalize -> cache -> (binary check) -> in-flight join or
    limiter slot -> deadline -> candidate state machine -> cache write

The candidate state machine walks the ordered candidate URLs:

    PENDING -> ATTEMPTING(i) -> SUCCEEDED
                             -> RETRYING(i+1)   timeout-class failure on i == 0
                             -> EXHAUSTED       consent wall, any other failure,
                                                or any failure after the first

Retry policy is the data in RETRYABLE_ON_FIRST / TERMINAL_FAILURES.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from guidestats.core.cache import ResultCache, cache_key
from guidestats.core.exceptions import (
    AttemptFailedError,
    BinaryNotFoundError,
    ConsentWallError,
    ExecutionTimeoutError,
    GuideStatsError,
    NavigationTimeoutError,
    PanelTimeoutError,
    ScrapeExhaustedError,
)
from guidestats.core.metrics import (
    cache_hits_total,
    candidate_attempts_total,
    profile_fetch_duration_seconds,
    profile_fetch_total,
)
from guidestats.schemas.stats import ProfileStatsResponse, ScrapeMode, StatsRecord
from guidestats.services.browser import BrowserManager, browser_manager
from guidestats.services.identifier import (
    ProfileIdentifier,
    candidate_urls,
    normalize_identifier,
)
from guidestats.services.limiter import InFlightRegistry, ScrapeLimiter
from guidestats.services.session_driver import (
    BODY_TEXT_JS,
    TIMING_PROFILES,
    TimingProfile,
    drive_session,
    open_stats_panel,
)

logger = logging.getLogger(__name__)

DEBUG_SAMPLE_CHARS = 2000


class AttemptState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


RETRYABLE_ON_FIRST = (NavigationTimeoutError, PanelTimeoutError)
TERMINAL_FAILURES = (ConsentWallError,)


def classify_failure(exc: BaseException) -> GuideStatsError:
    """Map anything an attempt raised onto the error taxonomy."""
    if isinstance(exc, GuideStatsError):
        return exc
    first_line = (str(exc).strip().splitlines() or [""])[0]
    if isinstance(exc, PlaywrightTimeoutError):
        return PanelTimeoutError(first_line or "Timed out waiting for the page")
    return AttemptFailedError(f"{type(exc).__name__}: {first_line}")


def next_state(failure: GuideStatsError, attempt_index: int) -> AttemptState:
    if isinstance(failure, TERMINAL_FAILURES):
        return AttemptState.EXHAUSTED
    if attempt_index == 0 and isinstance(failure, RETRYABLE_ON_FIRST):
        return AttemptState.RETRYING
    return AttemptState.EXHAUSTED


@dataclass
class CandidateOutcome:
    record: StatsRecord
    url: str
    attempts: list[str] = field(default_factory=list)


class CandidateRunner:
    """Drives session attempts over candidate URLs until one succeeds or
    the retry policy gives up."""

    def __init__(
        self,
        browser: BrowserManager,
        timing: TimingProfile,
        sleep=asyncio.sleep,
        driver=drive_session,
    ):
        self._browser = browser
        self._timing = timing
        self._sleep = sleep
        self._driver = driver
        self.state = AttemptState.PENDING
        self.attempts: list[str] = []

    async def run(self, candidates: list[str]) -> CandidateOutcome:
        last_failure: GuideStatsError | None = None

        for index, url in enumerate(candidates):
            self.state = AttemptState.ATTEMPTING
            self.attempts.append(url)
            logger.info("Attempt %d: %s", index + 1, url)
            try:
                async with self._browser.session() as page:
                    record = await self._driver(page, url, self._timing, sleep=self._sleep)
            except BinaryNotFoundError:
                raise
            except Exception as exc:
                failure = classify_failure(exc)
                candidate_attempts_total.labels(outcome=failure.code).inc()
                last_failure = failure
                self.state = next_state(failure, index)
                logger.warning(
                    "Attempt %d failed (%s: %s) -> %s",
                    index + 1,
                    failure.code,
                    failure.message,
                    self.state.value,
                )
                if self.state is AttemptState.RETRYING:
                    continue
                break
            else:
                candidate_attempts_total.labels(outcome="success").inc()
                self.state = AttemptState.SUCCEEDED
                return CandidateOutcome(record=record, url=url, attempts=list(self.attempts))

        self.state = AttemptState.EXHAUSTED
        raise ScrapeExhaustedError(
            last_failure or AttemptFailedError("No candidate URLs to try"),
            attempts=list(self.attempts),
        )


@dataclass
class FetchResult:
    payload: dict
    cache_hit: bool


class ProfileStatsService:
    """Entry point used by the API and CLI."""

    def __init__(
        self,
        browser: BrowserManager | None = None,
        cache: ResultCache | None = None,
        limiter: ScrapeLimiter | None = None,
        inflight: InFlightRegistry | None = None,
        timing_profiles: dict[ScrapeMode, TimingProfile] | None = None,
        sleep=asyncio.sleep,
        driver=drive_session,
    ):
        self.browser = browser_manager if browser is None else browser
        self.cache = ResultCache() if cache is None else cache
        self.limiter = ScrapeLimiter() if limiter is None else limiter
        self.inflight = InFlightRegistry() if inflight is None else inflight
        self._timing = timing_profiles or TIMING_PROFILES
        self._sleep = sleep
        self._driver = driver
        self.executions = 0

    async def fetch(self, raw_identifier: str, mode: ScrapeMode | str = ScrapeMode.NORMAL) -> FetchResult:
        """Stats for one profile, from cache or a fresh scrape.

        InvalidIdentifierError and BinaryNotFoundError are raised before any
        concurrency slot is taken.
        """
        try:
            identifier = normalize_identifier(raw_identifier)
            mode = ScrapeMode(mode)
            key = cache_key(identifier.url, mode.value)

            cached = self.cache.get(key)
            if cached is not None:
                cache_hits_total.inc()
                profile_fetch_total.labels(status="cache_hit").inc()
                return FetchResult(payload=cached, cache_hit=True)

            self.browser.resolve_binary()
            # Joiners share one serialized result and each decode their own copy
            payload = json.loads(
                await self.inflight.run(key, lambda: self._execute(identifier, mode, key))
            )
        except GuideStatsError as e:
            profile_fetch_total.labels(status=e.code).inc()
            raise
        profile_fetch_total.labels(status="success").inc()
        return FetchResult(payload=payload, cache_hit=False)

    async def _execute(self, identifier: ProfileIdentifier, mode: ScrapeMode, key: str) -> str:
        async with self.limiter:
            self.executions += 1
            timing = self._timing[mode]
            runner = CandidateRunner(self.browser, timing, sleep=self._sleep, driver=self._driver)
            start = time.monotonic()
            try:
                outcome = await asyncio.wait_for(
                    runner.run(candidate_urls(identifier)), timeout=timing.deadline_s
                )
            except asyncio.TimeoutError:
                raise ExecutionTimeoutError(
                    f"Scrape of {identifier.url} exceeded {timing.deadline_s}s"
                ) from None
            finally:
                profile_fetch_duration_seconds.observe(time.monotonic() - start)

        payload = ProfileStatsResponse(
            contrib_url=outcome.url,
            fetched_at=datetime.now(timezone.utc).isoformat(),
            mode=mode,
            **outcome.record.model_dump(),
        ).model_dump(mode="json", by_alias=True)
        self.cache.set(key, payload)
        logger.info(
            "Fetched %s via %s (%d attempt(s))",
            identifier.url,
            outcome.url,
            len(outcome.attempts),
        )
        return json.dumps(payload)

    async def debug_sample(self, raw_identifier: str) -> dict:
        """Navigate to the first candidate, open the panel and return a slice
        of visible text. Never cached."""
        identifier = normalize_identifier(raw_identifier)
        self.browser.resolve_binary()
        timing = self._timing[ScrapeMode.NORMAL]
        url = candidate_urls(identifier)[0]
        async with self.limiter:
            try:
                panel_open, text = await asyncio.wait_for(
                    self._sample(url, timing), timeout=timing.deadline_s
                )
            except asyncio.TimeoutError:
                raise ExecutionTimeoutError(
                    f"Debug sample of {url} exceeded {timing.deadline_s}s"
                ) from None
            except BinaryNotFoundError:
                raise
            except Exception as exc:
                raise ScrapeExhaustedError(classify_failure(exc), attempts=[url]) from exc
        return {"url": url, "panel_opened": panel_open, "sample": text[:DEBUG_SAMPLE_CHARS]}

    async def _sample(self, url: str, timing: TimingProfile) -> tuple[bool, str]:
        async with self.browser.session() as page:
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=timing.navigation_timeout_ms,
            )
            panel_open = await open_stats_panel(page, timing, self._sleep)
            text = (await page.evaluate(BODY_TEXT_JS)) or ""
        return panel_open, text


profile_stats_service = ProfileStatsService()
