"""
Worker orchestration - one proxy identity, one browser session, one keyword.

Each worker builds its own identity, opens its own browser session, and runs
the search state machine up to max_retries times with backoff in between.
Workers never raise: every failure ends up on the WorkerReport, so one worker
running out of retries never disturbs its siblings.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from functools import partial
from pathlib import Path
from typing import AsyncContextManager, Awaitable, Callable, List, Optional

from search_automation.backoff import BackoffPolicy
from search_automation.browser import BrowserSession
from search_automation.config_loader import RunSettings
from search_automation.ip_check import fetch_ip_info_async
from search_automation.models import IpInfo, ProxyIdentity, WorkerReport
from search_automation.providers import get_provider
from search_automation.proxy_manager import ProxyIdentityBuilder
from search_automation.state_machine import Pacing, SearchSessionStateMachine

logger = logging.getLogger(__name__)

SessionFactory = Callable[[ProxyIdentity, RunSettings, int], AsyncContextManager]
IpLookup = Callable[[ProxyIdentity], Awaitable[Optional[IpInfo]]]


def _browser_session(identity: ProxyIdentity, settings: RunSettings, worker_id: int) -> BrowserSession:
    return BrowserSession(identity, settings, worker_id=worker_id)


def screenshot_path(settings: RunSettings, worker_id: int, attempt: int) -> Path:
    return Path(settings.screenshot_dir) / f"debug_worker{worker_id}_attempt{attempt}.png"


class WorkerOrchestrator:
    """Runs the bounded retry loop for one worker at a time; safe to share across workers"""

    def __init__(
        self,
        settings: RunSettings,
        *,
        identity_builder: Optional[ProxyIdentityBuilder] = None,
        backoff: Optional[BackoffPolicy] = None,
        session_factory: SessionFactory = _browser_session,
        ip_lookup: Optional[IpLookup] = None,
        pacing: Pacing = Pacing(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.identity_builder = identity_builder or ProxyIdentityBuilder.from_settings(settings)
        self.backoff = backoff or BackoffPolicy.from_settings(settings)
        self.session_factory = session_factory
        self.ip_lookup = ip_lookup or partial(
            fetch_ip_info_async,
            url=settings.ip_check_url,
            timeout_seconds=settings.ip_check_timeout,
        )
        self.pacing = pacing
        self._sleep = sleep
        self._clock = clock

    async def _check_ip(self, worker_id: int, identity: ProxyIdentity) -> Optional[IpInfo]:
        if not self.settings.ip_check_enabled:
            return None
        info = await self.ip_lookup(identity)
        if info is None:
            logger.info("Worker %s: IP check failed", worker_id)
        else:
            logger.info("Worker %s: %s", worker_id, info)
        return info

    async def _save_screenshot(self, page, worker_id: int, attempt: int) -> Optional[Path]:
        saved = await page.screenshot(screenshot_path(self.settings, worker_id, attempt))
        if saved is not None:
            logger.info("Worker %s: saved debug screenshot %s", worker_id, saved)
        return saved

    async def run(self, worker_id: int, keyword: Optional[str] = None) -> WorkerReport:
        """Work one keyword to success or exhaustion. Never raises."""
        settings = self.settings
        keyword = keyword or settings.keyword_for(worker_id)
        report = WorkerReport(worker_id=worker_id, keyword=keyword)

        try:
            provider = get_provider(settings.provider)
            identity = self.identity_builder.build(
                worker_id,
                settings.proxy_mode,
                settings.proxy_country,
                settings.proxy_lifetime_minutes,
            )

            async with self.session_factory(identity, settings, worker_id) as page:
                report.ip_info = await self._check_ip(worker_id, identity)
                machine = SearchSessionStateMachine(
                    page,
                    provider,
                    result_limit=settings.result_limit,
                    pacing=self.pacing,
                    sleep=self._sleep,
                    clock=self._clock,
                    label=f"Worker {worker_id}",
                )

                for attempt in range(settings.max_retries):
                    logger.info("Worker %s: Keyword: %s | Attempt: %d", worker_id, keyword, attempt + 1)
                    outcome = await machine.run(keyword)
                    report.attempts += 1
                    report.outcomes.append(outcome)
                    report.final_status = outcome.status
                    logger.info("Worker %s: CURRENT URL: %s", worker_id, outcome.url)

                    if outcome.ok:
                        logger.info("Worker %s: Search page reached", worker_id)
                        logger.info("Worker %s: Title: %s", worker_id, outcome.title)
                        logger.info(
                            "Worker %s: Top results: %s",
                            worker_id,
                            json.dumps([hit.model_dump() for hit in outcome.results], indent=2, ensure_ascii=False),
                        )
                        return report

                    logger.info("Worker %s: Run ended: %s", worker_id, outcome.status.value)
                    await self._save_screenshot(page, worker_id, attempt + 1)

                    if attempt + 1 < settings.max_retries:
                        await self.backoff.wait(attempt, sleep=self._sleep)

            logger.warning("Worker %s: Max retries reached for keyword: %s", worker_id, keyword)
        except Exception as exc:
            logger.error("Worker %s error: %s", worker_id, exc)
            logger.debug("Worker %s traceback", worker_id, exc_info=True)
            report.error = f"{type(exc).__name__}: {exc}"

        return report


async def run_all(settings: RunSettings, **orchestrator_kwargs) -> List[WorkerReport]:
    """
    Launch settings.worker_count independent workers and wait for all of them.

    No fail-fast: every worker settles on its own. Reports come back in worker
    order.
    """
    orchestrator = WorkerOrchestrator(settings, **orchestrator_kwargs)
    worker_ids = list(range(1, settings.worker_count + 1))
    logger.info("Launching %d worker(s) against %s", len(worker_ids), settings.provider)

    settled = await asyncio.gather(
        *(orchestrator.run(worker_id, settings.keyword_for(worker_id)) for worker_id in worker_ids),
        return_exceptions=True,
    )

    reports: List[WorkerReport] = []
    for worker_id, result in zip(worker_ids, settled):
        if isinstance(result, BaseException):
            logger.error("Worker %s error: %s", worker_id, result)
            result = WorkerReport(
                worker_id=worker_id,
                keyword=settings.keyword_for(worker_id),
                error=f"{type(result).__name__}: {result}",
            )
        reports.append(result)
    return reports
