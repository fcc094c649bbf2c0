"""
Browser capability - Playwright-backed page driver and per-worker session.

BrowserPage is the narrow surface the state machine drives (navigate, click,
type, read text/url/title/html, screenshot). BrowserSession owns one isolated
browser (or persistent context) bound to one proxy identity and guarantees it
is closed on every exit path.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)
from playwright_stealth import Stealth

from search_automation.models import ProxyIdentity

logger = logging.getLogger(__name__)

# Launch args that hide the most common automation tells
STEALTH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-site-isolation-trials",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-infobars",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-breakpad",
    "--disable-default-apps",
    "--disable-features=TranslateUI",
    "--disable-popup-blocking",
    "--disable-sync",
    "--force-color-profile=srgb",
    "--metrics-recording-only",
    "--no-first-run",
    "--password-store=basic",
    "--use-mock-keychain",
]

BODY_TEXT_SCRIPT = "() => (document.body && document.body.innerText) || ''"


def _looks_like_proxy_failure(message: str) -> bool:
    msg = (message or "").lower()
    markers = (
        "err_proxy_connection_failed",
        "err_tunnel_connection_failed",
        "proxy authentication",
        "authentication required",
        "proxy",
        "407",
    )
    return any(marker in msg for marker in markers)


class BrowserPage:
    """Thin async driver over one Playwright page"""

    def __init__(self, page: Page):
        self.page = page

    async def navigate(self, url: str, timeout_ms: int = 60000) -> None:
        await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        await self.page.wait_for_load_state("domcontentloaded")

    async def has_element(self, selector: str) -> bool:
        return await self.page.query_selector(selector) is not None

    async def click(self, selector: str, delay_ms: int = 0) -> bool:
        """Click the first element matching selector; False when absent."""
        element = await self.page.query_selector(selector)
        if element is None:
            return False
        await element.click(delay=delay_ms)
        return True

    async def press(self, key: str) -> None:
        await self.page.keyboard.press(key)

    async def type_text(self, text: str, delay_ms: int = 0) -> None:
        await self.page.keyboard.type(text, delay=delay_ms)

    async def submit(self, key: str = "Enter", timeout_ms: int = 60000) -> bool:
        """
        Press `key` while awaiting the navigation it triggers.

        Returns False when no navigation completed in time; the page is left
        in whatever state it reached.
        """
        try:
            async with self.page.expect_navigation(wait_until="domcontentloaded", timeout=timeout_ms):
                await self.page.keyboard.press(key)
        except PlaywrightTimeoutError:
            logger.debug("No navigation within %sms after pressing %s", timeout_ms, key)
            return False
        return True

    async def evaluate_text(self) -> str:
        return await self.page.evaluate(BODY_TEXT_SCRIPT) or ""

    def current_url(self) -> str:
        return self.page.url or ""

    async def title(self) -> str:
        await self.page.wait_for_load_state("domcontentloaded")
        return await self.page.title()

    async def content(self) -> str:
        return await self.page.content()

    async def screenshot(self, path: Path) -> Optional[Path]:
        """Best-effort full-page screenshot; None when capture failed."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(path), full_page=True)
            return path
        except (PlaywrightError, OSError):
            logger.debug("Screenshot failed: %s", path, exc_info=True)
            return None


class BrowserSession:
    """
    One isolated browser bound to one proxy identity.

    Usage:
        async with BrowserSession(identity, settings, worker_id=1) as page:
            await page.navigate("https://www.bing.com/")
    """

    def __init__(self, identity: ProxyIdentity, settings, *, worker_id: int):
        self.identity = identity
        self.settings = settings
        self.worker_id = worker_id
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[BrowserPage] = None

    @property
    def profile_dir(self) -> Optional[Path]:
        root = self.settings.profile_dir
        if not root:
            return None
        return Path(root) / f"worker_{self.worker_id}"

    def _context_kwargs(self) -> Dict[str, Any]:
        return dict(
            viewport={"width": self.settings.viewport_width, "height": self.settings.viewport_height},
            locale=self.settings.locale,
        )

    async def start(self) -> BrowserPage:
        logger.info("Worker %s: starting browser via %s", self.worker_id, self.identity)
        self.playwright = await async_playwright().start()
        proxy = self.identity.to_playwright_proxy()
        launch_kwargs: Dict[str, Any] = dict(
            headless=self.settings.headless,
            args=STEALTH_ARGS,
            proxy=proxy,
        )

        try:
            if self.profile_dir is not None:
                # Persistent context reuses cookies and consent state across runs.
                self.profile_dir.mkdir(parents=True, exist_ok=True)
                logger.info("Worker %s: using persistent profile %s", self.worker_id, self.profile_dir)
                self.context = await self.playwright.chromium.launch_persistent_context(
                    str(self.profile_dir),
                    **launch_kwargs,
                    **self._context_kwargs(),
                )
            else:
                self.browser = await self.playwright.chromium.launch(**launch_kwargs)
                self.context = await self.browser.new_context(**self._context_kwargs())
        except PlaywrightError as exc:
            if _looks_like_proxy_failure(str(exc)):
                logger.error(
                    "Worker %s: proxy connection/auth failed for %s. Check credentials and connectivity.",
                    self.worker_id,
                    proxy.get("server"),
                )
            raise

        page = await self.context.new_page()
        page.set_default_timeout(self.settings.page_timeout_ms)
        page.set_default_navigation_timeout(self.settings.navigation_timeout_ms)

        if self.settings.use_stealth:
            try:
                await Stealth().apply_stealth_async(page)
                logger.info("Worker %s: playwright stealth enabled", self.worker_id)
            except Exception as exc:
                logger.warning("Worker %s: failed to enable stealth mode: %s", self.worker_id, exc)

        self.page = BrowserPage(page)
        return self.page

    async def close(self) -> None:
        """Clean up browser resources"""
        try:
            if self.context:
                await self.context.close()
        except PlaywrightError:
            logger.debug("Browser context close failed", exc_info=True)
        try:
            if self.browser:
                await self.browser.close()
        except PlaywrightError:
            logger.debug("Browser close failed", exc_info=True)
        try:
            if self.playwright:
                await self.playwright.stop()
        except PlaywrightError:
            logger.debug("Playwright stop failed", exc_info=True)
        self.context = None
        self.browser = None
        self.playwright = None
        logger.info("Worker %s: browser closed", self.worker_id)

    async def __aenter__(self) -> BrowserPage:
        try:
            return await self.start()
        except BaseException:
            await self.close()
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
