"""
Search session state machine - one keyword attempt, end to end.

    init -> landing_loaded -> consent_resolved -> landing_block_checked
         -> query_box_ready -> query_typed -> submitted
         -> result_block_checked -> result_page_verified -> extracted

A state is entered only once its checkpoint passed, so the trace recorded on
the outcome stops at the last state that was actually reached. Every exit is
an AttemptOutcome; browser exceptions become TRANSIENT_ERROR. Nothing is
retried here - retry belongs to the worker orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from search_automation.models import AttemptOutcome, AttemptStatus, ResultHit, SessionState
from search_automation.providers import PageSnapshot, SearchProvider

logger = logging.getLogger(__name__)

Range = Tuple[int, int]


@dataclass(frozen=True)
class Pacing:
    """Human-like pauses (milliseconds, inclusive ranges) and step timeouts"""

    settle: Range = (800, 1500)
    consent_before: Range = (600, 1200)
    consent_click: Range = (20, 60)
    consent_after: Range = (1200, 1800)
    before_box_click: Range = (1200, 2400)
    box_click: Range = (20, 60)
    after_box_click: Range = (500, 1000)
    keystroke: Range = (70, 120)
    after_typing: Range = (800, 1400)
    after_submit: Range = (1200, 2200)
    before_extract: Range = (1200, 2200)
    poll_interval_ms: int = 300
    navigation_timeout_ms: int = 60000
    title_attempts: int = 3
    title_retry_ms: int = 800

    @classmethod
    def instant(cls) -> "Pacing":
        """Zero-length pauses; keeps timeouts and poll interval."""
        zero = (0, 0)
        return cls(
            settle=zero,
            consent_before=zero,
            consent_click=zero,
            consent_after=zero,
            before_box_click=zero,
            box_click=zero,
            after_box_click=zero,
            keystroke=zero,
            after_typing=zero,
            after_submit=zero,
            before_extract=zero,
            title_retry_ms=0,
        )


class SearchSessionStateMachine:
    """Drives one attempt of one keyword against one provider"""

    def __init__(
        self,
        page,
        provider: SearchProvider,
        *,
        result_limit: int = 5,
        pacing: Pacing = Pacing(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        label: str = "",
    ):
        self.page = page
        self.provider = provider
        self.result_limit = result_limit
        self.pacing = pacing
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self._label = label or provider.name
        self._states: List[SessionState] = []

    @property
    def states(self) -> List[SessionState]:
        return list(self._states)

    # === Helpers ===

    def _enter(self, state: SessionState) -> None:
        self._states.append(state)
        logger.debug("%s: -> %s", self._label, state.value)

    async def _pause(self, bounds: Range) -> None:
        low, high = bounds
        ms = self._rng.randint(low, high) if high > low else low
        if ms > 0:
            await self._sleep(ms / 1000)

    async def _safe_title(self) -> str:
        for attempt in range(self.pacing.title_attempts):
            try:
                return await self.page.title()
            except Exception:
                logger.debug("%s: title read failed (try %d)", self._label, attempt + 1, exc_info=True)
                if self.pacing.title_retry_ms > 0:
                    await self._sleep(self.pacing.title_retry_ms / 1000)
        return "N/A"

    def _safe_url(self) -> str:
        try:
            return self.page.current_url()
        except Exception:
            return ""

    async def _finish(
        self,
        status: AttemptStatus,
        *,
        url: Optional[str] = None,
        title: Optional[str] = None,
        results: Optional[List[ResultHit]] = None,
        error: Optional[str] = None,
    ) -> AttemptOutcome:
        if url is None:
            url = self._safe_url()
        if title is None:
            title = await self._safe_title()
        return AttemptOutcome(
            status=status,
            url=url,
            title=title,
            results=results or [],
            states=list(self._states),
            error=error,
        )

    async def _snapshot(self) -> PageSnapshot:
        selector = self.provider.challenge_selector
        return PageSnapshot(
            url=self.page.current_url(),
            text=await self.page.evaluate_text(),
            has_challenge_frame=bool(selector) and await self.page.has_element(selector),
        )

    async def _is_blocked(self, checkpoint: str) -> bool:
        reason = self.provider.block_reason(await self._snapshot())
        if reason:
            logger.info("%s: blocked at %s (%s)", self._label, checkpoint, reason)
            return True
        return False

    async def _resolve_consent(self) -> Optional[str]:
        """Click the first consent control present; returns its selector or None."""
        for selector in self.provider.consent_candidates:
            try:
                if not await self.page.has_element(selector):
                    continue
                await self._pause(self.pacing.consent_before)
                low, high = self.pacing.consent_click
                if not await self.page.click(selector, delay_ms=self._rng.randint(low, high)):
                    continue
                await self._pause(self.pacing.consent_after)
                logger.info("%s: consent dismissed via %s", self._label, selector)
                return selector
            except Exception:
                logger.debug("%s: consent candidate %s failed", self._label, selector, exc_info=True)
        return None

    async def _wait_for_query_box(self) -> bool:
        """Poll for the query box until found or the provider timeout has fully elapsed."""
        selector = self.provider.query_box_selector
        deadline = self._clock() + self.provider.query_box_timeout_ms / 1000
        interval = self.pacing.poll_interval_ms / 1000
        while True:
            if await self.page.has_element(selector):
                return True
            if self._clock() >= deadline:
                return False
            await self._sleep(interval)

    async def _best_effort_press(self, key: str) -> None:
        try:
            await self.page.press(key)
        except Exception:
            logger.debug("%s: key %s failed", self._label, key, exc_info=True)

    async def _type_query(self, keyword: str) -> None:
        selector = self.provider.query_box_selector
        await self._pause(self.pacing.before_box_click)
        low, high = self.pacing.box_click
        await self.page.click(selector, delay_ms=self._rng.randint(low, high))
        await self._pause(self.pacing.after_box_click)

        await self._best_effort_press("Control+A")
        await self._best_effort_press("Backspace")

        for char in keyword:
            await self.page.type_text(char)
            await self._pause(self.pacing.keystroke)
        await self._pause(self.pacing.after_typing)

    # === Run ===

    async def run(self, keyword: str) -> AttemptOutcome:
        """Run the whole state sequence once for `keyword`."""
        self._states = []
        try:
            return await self._drive(keyword)
        except Exception as exc:
            logger.warning("%s: attempt aborted by browser error: %s", self._label, exc)
            return await self._finish(
                AttemptStatus.TRANSIENT_ERROR,
                error=f"{type(exc).__name__}: {exc}",
            )

    async def _drive(self, keyword: str) -> AttemptOutcome:
        self._enter(SessionState.INIT)

        await self.page.navigate(self.provider.home_url, timeout_ms=self.pacing.navigation_timeout_ms)
        await self._pause(self.pacing.settle)
        self._enter(SessionState.LANDING_LOADED)

        await self._resolve_consent()
        self._enter(SessionState.CONSENT_RESOLVED)

        if await self._is_blocked("landing"):
            return await self._finish(AttemptStatus.BLOCKED_ON_LANDING)
        self._enter(SessionState.LANDING_BLOCK_CHECKED)

        if not await self._wait_for_query_box():
            logger.info("%s: query box %r not found", self._label, self.provider.query_box_selector)
            return await self._finish(AttemptStatus.SEARCH_BOX_NOT_FOUND)
        self._enter(SessionState.QUERY_BOX_READY)

        await self._type_query(keyword)
        self._enter(SessionState.QUERY_TYPED)

        navigated = await self.page.submit("Enter", timeout_ms=self.pacing.navigation_timeout_ms)
        if not navigated:
            logger.info("%s: no navigation after submit, inspecting current page", self._label)
        await self._pause(self.pacing.after_submit)
        self._enter(SessionState.SUBMITTED)

        current_url = self.page.current_url()
        title = await self._safe_title()

        if await self._is_blocked("results"):
            return await self._finish(AttemptStatus.BLOCKED_AFTER_SEARCH, url=current_url, title=title)
        self._enter(SessionState.RESULT_BLOCK_CHECKED)

        if not self.provider.is_results_url(current_url):
            return await self._finish(AttemptStatus.NOT_SEARCH_PAGE, url=current_url, title=title)
        self._enter(SessionState.RESULT_PAGE_VERIFIED)

        await self._pause(self.pacing.before_extract)
        html = await self.page.content()
        results = self.provider.extract_results(html, limit=self.result_limit, base_url=current_url)
        self._enter(SessionState.EXTRACTED)
        return await self._finish(AttemptStatus.SUCCESS, url=current_url, title=title, results=results)
