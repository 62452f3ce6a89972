"""Tests for guidestats.services.profile_scraper: retry policy and orchestration."""

import asyncio

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from guidestats.core.cache import ResultCache
from guidestats.core.exceptions import (
    AttemptFailedError,
    BinaryNotFoundError,
    ConsentWallError,
    ExecutionTimeoutError,
    InvalidIdentifierError,
    NavigationTimeoutError,
    PanelTimeoutError,
    ScrapeExhaustedError,
)
from guidestats.schemas.stats import ScrapeMode, StatsRecord
from guidestats.services.browser import BrowserManager
from guidestats.services.identifier import candidate_urls, normalize_identifier
from guidestats.services.profile_scraper import (
    AttemptState,
    CandidateRunner,
    classify_failure,
    next_state,
)
from guidestats.services.session_driver import TimingProfile

from tests.conftest import FAST_TIMING, FakeLauncher, FakePage, make_service, no_sleep

PROFILE_ID = "123456789012"
CANDIDATES = candidate_urls(normalize_identifier(PROFILE_ID))


class ScriptedDriver:
    """Driver stand-in: per-call outcomes, in order. Exceptions are raised."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.urls: list[str] = []

    async def __call__(self, page, url, timing, sleep=None):
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


RECORD = StatsRecord(name="Jane Doe", level=7, points=1234, reviews=42)


class TestRetryPolicy:
    def test_timeouts_on_first_candidate_retry(self):
        assert next_state(NavigationTimeoutError(), 0) is AttemptState.RETRYING
        assert next_state(PanelTimeoutError(), 0) is AttemptState.RETRYING

    def test_timeouts_after_first_candidate_exhaust(self):
        assert next_state(NavigationTimeoutError(), 1) is AttemptState.EXHAUSTED
        assert next_state(PanelTimeoutError(), 2) is AttemptState.EXHAUSTED

    def test_consent_wall_is_terminal(self):
        assert next_state(ConsentWallError(), 0) is AttemptState.EXHAUSTED

    def test_other_failures_are_terminal(self):
        assert next_state(AttemptFailedError(), 0) is AttemptState.EXHAUSTED

    def test_classify_failure(self):
        assert isinstance(classify_failure(ConsentWallError()), ConsentWallError)
        assert isinstance(
            classify_failure(PlaywrightTimeoutError("Timeout 3000ms exceeded.")), PanelTimeoutError
        )
        failure = classify_failure(RuntimeError("Target closed\nstack..."))
        assert isinstance(failure, AttemptFailedError)
        assert "Target closed" in failure.message
        assert "stack" not in failure.message


class TestCandidateRunner:
    @pytest.mark.asyncio
    async def test_success_on_first_candidate(self, browser):
        driver = ScriptedDriver(RECORD)
        runner = CandidateRunner(browser, FAST_TIMING, sleep=no_sleep, driver=driver)
        outcome = await runner.run(CANDIDATES)
        assert outcome.record == RECORD
        assert outcome.url == CANDIDATES[0]
        assert runner.state is AttemptState.SUCCEEDED
        assert driver.urls == CANDIDATES[:1]

    @pytest.mark.asyncio
    async def test_timeout_moves_to_second_candidate(self, browser):
        driver = ScriptedDriver(NavigationTimeoutError(), RECORD)
        runner = CandidateRunner(browser, FAST_TIMING, sleep=no_sleep, driver=driver)
        outcome = await runner.run(CANDIDATES)
        assert outcome.url == CANDIDATES[1]
        assert outcome.attempts == CANDIDATES[:2]

    @pytest.mark.asyncio
    async def test_second_failure_exhausts(self, browser):
        driver = ScriptedDriver(NavigationTimeoutError(), PanelTimeoutError("still nothing"))
        runner = CandidateRunner(browser, FAST_TIMING, sleep=no_sleep, driver=driver)
        with pytest.raises(ScrapeExhaustedError) as exc_info:
            await runner.run(CANDIDATES)
        assert driver.urls == CANDIDATES[:2]
        assert isinstance(exc_info.value.reason, PanelTimeoutError)
        assert exc_info.value.attempts == CANDIDATES[:2]
        assert runner.state is AttemptState.EXHAUSTED

    @pytest.mark.asyncio
    async def test_consent_wall_stops_after_one_navigation(self, launcher):
        navigations = []
        launcher.page_factory = lambda: FakePage(
            body_texts=["Before you continue to Google"], navigations=navigations
        )
        manager = BrowserManager(launcher=launcher, binary_finder=lambda: "/usr/bin/chromium")
        runner = CandidateRunner(manager, FAST_TIMING, sleep=no_sleep)
        with pytest.raises(ScrapeExhaustedError) as exc_info:
            await runner.run(CANDIDATES)
        await manager.shutdown()
        assert navigations == CANDIDATES[:1]
        assert isinstance(exc_info.value.reason, ConsentWallError)
        assert exc_info.value.to_dict()["reason"]["code"] == "consent_wall"

    @pytest.mark.asyncio
    async def test_unclassified_failure_is_not_retried(self, browser):
        driver = ScriptedDriver(RuntimeError("Target page crashed"))
        runner = CandidateRunner(browser, FAST_TIMING, sleep=no_sleep, driver=driver)
        with pytest.raises(ScrapeExhaustedError) as exc_info:
            await runner.run(CANDIDATES)
        assert driver.urls == CANDIDATES[:1]
        assert isinstance(exc_info.value.reason, AttemptFailedError)

    @pytest.mark.asyncio
    async def test_each_attempt_gets_a_fresh_session(self, browser, launcher):
        driver = ScriptedDriver(NavigationTimeoutError(), RECORD)
        runner = CandidateRunner(browser, FAST_TIMING, sleep=no_sleep, driver=driver)
        await runner.run(CANDIDATES)
        contexts = launcher.launches[0].contexts
        assert len(contexts) == 2
        assert all(c.closed for c in contexts)


class TestProfileStatsService:
    @pytest.mark.asyncio
    async def test_end_to_end_with_real_driver(self, launcher):
        launcher.page_factory = lambda: FakePage(
            body_texts=["Jane Doe\nLocal Guide · Level 7\n1,234 points\n"],
            panel_rows=[[{"label": "Reviews", "value": "42"}]],
        )
        manager = BrowserManager(launcher=launcher, binary_finder=lambda: "/usr/bin/chromium")
        service = make_service(manager)

        result = await service.fetch(PROFILE_ID)
        await manager.shutdown()

        payload = result.payload
        assert result.cache_hit is False
        assert payload["name"] == "Jane Doe"
        assert payload["level"] == 7
        assert payload["points"] == 1234
        assert payload["reviews"] == 42
        assert payload["photos"] == 0
        assert payload["roadsAdded"] == 0
        assert payload["contribUrl"] == CANDIDATES[0]
        assert payload["mode"] == "normal"
        assert payload["fetchedAt"]

    @pytest.mark.asyncio
    async def test_second_fetch_is_served_from_cache(self, browser):
        service = make_service(browser, driver=ScriptedDriver(RECORD))
        first = await service.fetch(PROFILE_ID)
        second = await service.fetch(f"https://www.google.com/maps/contrib/{PROFILE_ID}/reviews")
        assert second.cache_hit is True
        assert second.payload == first.payload
        assert service.executions == 1

    @pytest.mark.asyncio
    async def test_expired_entry_triggers_a_new_scrape(self, browser):
        now = [1000.0]
        cache = ResultCache(ttl=300, clock=lambda: now[0], enabled=True)
        service = make_service(browser, driver=ScriptedDriver(RECORD), cache=cache)

        await service.fetch(PROFILE_ID)
        now[0] += 299
        assert (await service.fetch(PROFILE_ID)).cache_hit is True
        now[0] += 2
        assert (await service.fetch(PROFILE_ID)).cache_hit is False
        assert service.executions == 2

    @pytest.mark.asyncio
    async def test_modes_are_cached_separately(self, browser):
        service = make_service(browser, driver=ScriptedDriver(RECORD))
        await service.fetch(PROFILE_ID, ScrapeMode.NORMAL)
        result = await service.fetch(PROFILE_ID, "slow")
        assert result.cache_hit is False
        assert result.payload["mode"] == "slow"
        assert service.executions == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, browser):
        driver = ScriptedDriver(ConsentWallError(), RECORD)
        service = make_service(browser, driver=driver)
        with pytest.raises(ScrapeExhaustedError):
            await service.fetch(PROFILE_ID)
        result = await service.fetch(PROFILE_ID)
        assert result.cache_hit is False
        assert result.payload["reviews"] == 42

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_execution(self, browser):
        gate = asyncio.Event()

        async def driver(page, url, timing, sleep=None):
            await gate.wait()
            return RECORD

        service = make_service(browser, driver=driver)
        callers = [asyncio.create_task(service.fetch(PROFILE_ID)) for _ in range(3)]
        await asyncio.sleep(0.01)
        gate.set()
        results = await asyncio.gather(*callers)

        assert service.executions == 1
        assert all(r.payload == results[0].payload for r in results)
        assert len({id(r.payload) for r in results}) == 3

    @pytest.mark.asyncio
    async def test_cached_payload_is_not_affected_by_caller_mutation(self, browser):
        service = make_service(browser, driver=ScriptedDriver(RECORD))
        first = await service.fetch(PROFILE_ID)
        first.payload["reviews"] = 999

        second = await service.fetch(PROFILE_ID)
        assert second.cache_hit is True
        assert second.payload["reviews"] == 42
        assert second.payload is not first.payload

        second.payload.clear()
        third = await service.fetch(PROFILE_ID)
        assert third.payload["name"] == "Jane Doe"

    @pytest.mark.asyncio
    async def test_concurrency_stays_within_limit(self, browser):
        active = 0
        peak = 0

        async def driver(page, url, timing, sleep=None):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return RECORD

        service = make_service(browser, driver=driver, limit=2)
        ids = [f"1234567890{i:02d}" for i in range(6)]
        await asyncio.gather(*(service.fetch(i) for i in ids))

        assert service.executions == 6
        assert peak <= 2
        assert service.limiter.peak_count <= 2

    @pytest.mark.asyncio
    async def test_deadline_releases_the_session(self, browser):
        async def driver(page, url, timing, sleep=None):
            await asyncio.Event().wait()

        timing = TimingProfile(1_000, 100, 50, 0, 0, deadline_s=0.05)
        service = make_service(
            browser,
            driver=driver,
            timing_profiles={ScrapeMode.NORMAL: timing, ScrapeMode.SLOW: timing},
        )
        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await service.fetch(PROFILE_ID)
        assert exc_info.value.status_code == 504
        assert browser.active_sessions == 0
        assert service.limiter.active_count == 0

    @pytest.mark.asyncio
    async def test_invalid_identifier_touches_nothing(self, browser, launcher):
        service = make_service(browser, driver=ScriptedDriver(RECORD))
        with pytest.raises(InvalidIdentifierError):
            await service.fetch("not-a-profile")
        assert service.executions == 0
        assert launcher.launches == []

    @pytest.mark.asyncio
    async def test_missing_binary_fails_before_a_slot_is_taken(self):
        launcher = FakeLauncher()
        manager = BrowserManager(launcher=launcher, binary_finder=lambda: None)
        service = make_service(manager, driver=ScriptedDriver(RECORD))
        with pytest.raises(BinaryNotFoundError):
            await service.fetch(PROFILE_ID)
        assert service.executions == 0
        assert service.limiter.peak_count == 0
        assert launcher.launches == []

    @pytest.mark.asyncio
    async def test_debug_sample(self, launcher):
        launcher.page_factory = lambda: FakePage(body_texts=["x" * 5000], panel_ready=False)
        manager = BrowserManager(launcher=launcher, binary_finder=lambda: "/usr/bin/chromium")
        service = make_service(manager)

        sample = await service.debug_sample(PROFILE_ID)
        await manager.shutdown()

        assert sample["url"] == CANDIDATES[0]
        assert sample["panel_opened"] is False
        assert len(sample["sample"]) == 2000
        assert len(service.cache) == 0

    @pytest.mark.asyncio
    async def test_debug_sample_honours_the_deadline(self, launcher):
        class StalledPage(FakePage):
            async def goto(self, url, wait_until=None, timeout=None):
                await asyncio.Event().wait()

        launcher.page_factory = StalledPage
        manager = BrowserManager(launcher=launcher, binary_finder=lambda: "/usr/bin/chromium")
        timing = TimingProfile(1_000, 100, 50, 0, 0, deadline_s=0.05)
        service = make_service(
            manager, timing_profiles={ScrapeMode.NORMAL: timing, ScrapeMode.SLOW: timing}
        )

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await service.debug_sample(PROFILE_ID)
        await manager.shutdown()

        assert exc_info.value.status_code == 504
        assert manager.active_sessions == 0
        assert service.limiter.active_count == 0
        assert all(c.closed for c in launcher.launches[0].contexts)
