"""
Search providers - per-engine capability sets.

Each provider bundles everything the session state machine needs to know
about one search engine:
- where to land and which consent controls to try,
- where the query box lives and how long to wait for it,
- how to tell a challenge page from a real page (BlockDetector),
- how to read organic results off a results page (ResultExtractor).

A provider is picked once per worker via get_provider() and never branched
on inline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Type
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from search_automation.models import ResultHit

logger = logging.getLogger(__name__)

RECAPTCHA_FRAME = 'iframe[src*="recaptcha"]'


@dataclass(frozen=True)
class PageSnapshot:
    """What block detection gets to see of a loaded page"""

    url: str
    text: str
    has_challenge_frame: bool = False


@dataclass(frozen=True)
class BlockDetector:
    """
    Heuristic union of challenge markers. Any single marker firing classifies
    the page as blocked. Matching is exact (lowercased substring), never fuzzy.
    """

    url_markers: Tuple[str, ...] = ()
    text_markers: Tuple[str, ...] = ()
    challenge_selector: Optional[str] = RECAPTCHA_FRAME

    def reason(self, snapshot: PageSnapshot) -> Optional[str]:
        """Name of the first marker that fired, or None for a clear page."""
        url = (snapshot.url or "").lower()
        for marker in self.url_markers:
            if marker in url:
                return f"url:{marker}"

        text = (snapshot.text or "").lower()
        for marker in self.text_markers:
            if marker in text:
                return f"text:{marker}"

        if self.challenge_selector and snapshot.has_challenge_frame:
            return f"selector:{self.challenge_selector}"
        return None

    def is_blocked(self, snapshot: PageSnapshot) -> bool:
        return self.reason(snapshot) is not None


def _element_text(element) -> str:
    if element is None:
        return ""
    return " ".join(element.get_text(" ", strip=True).split())


@dataclass(frozen=True)
class ResultExtractor:
    """
    Reads organic result blocks out of rendered results-page HTML.

    container_selector: one element per result block (document order)
    link_selector: anchor carrying the result URL
    title_selector: element carrying the title; None means use the link text
    snippet_selectors: tried in order, first hit wins; snippet is optional
    """

    container_selector: str
    link_selector: str
    title_selector: Optional[str] = None
    snippet_selectors: Tuple[str, ...] = ()

    def _snippet(self, block) -> Optional[str]:
        for selector in self.snippet_selectors:
            node = block.select_one(selector)
            if node is not None:
                return _element_text(node)
        return None

    def extract(self, html: str, limit: int = 5, base_url: str = "") -> List[ResultHit]:
        """
        Parse up to `limit` hits in page rank order.

        Blocks missing a link or a title are skipped. Malformed markup yields a
        short or empty list, never an exception.
        """
        if limit <= 0 or not html:
            return []

        soup = BeautifulSoup(html, "html.parser")
        hits: List[ResultHit] = []
        for block in soup.select(self.container_selector):
            link = block.select_one(self.link_selector)
            if link is None:
                continue
            href = (link.get("href") or "").strip()
            if not href:
                continue

            title_node = block.select_one(self.title_selector) if self.title_selector else link
            title = _element_text(title_node)
            if not title:
                continue

            url = urljoin(base_url, href) if base_url else href
            hits.append(ResultHit(title=title, url=url, snippet=self._snippet(block)))
            if len(hits) >= limit:
                break

        logger.debug("Extracted %d result(s) (limit=%d)", len(hits), limit)
        return hits


class SearchProvider:
    """
    Capability set for one search engine.

    Subclasses fill in the class attributes; behavior lives here so the state
    machine only ever talks to this interface.
    """

    name: str = ""
    home_url: str = ""
    consent_candidates: Tuple[str, ...] = ()
    query_box_selector: str = ""
    query_box_timeout_ms: int = 20000
    results_url_markers: Tuple[str, ...] = ("/search", "q=")
    block_detector: BlockDetector = BlockDetector()
    result_extractor: ResultExtractor = ResultExtractor(container_selector="", link_selector="")

    @property
    def challenge_selector(self) -> Optional[str]:
        return self.block_detector.challenge_selector

    def is_blocked(self, snapshot: PageSnapshot) -> bool:
        return self.block_detector.is_blocked(snapshot)

    def block_reason(self, snapshot: PageSnapshot) -> Optional[str]:
        return self.block_detector.reason(snapshot)

    def is_results_url(self, url: str) -> bool:
        # Loose on purpose: localized engines vary their paths.
        url = url or ""
        return any(marker in url for marker in self.results_url_markers)

    def extract_results(self, html: str, limit: int = 5, base_url: str = "") -> List[ResultHit]:
        return self.result_extractor.extract(html, limit=limit, base_url=base_url)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class GoogleProvider(SearchProvider):
    name = "google"
    home_url = "https://www.google.com/"
    consent_candidates = (
        "button#L2AGLb",
        "button:has-text('Accept all')",
        "button:has-text('I agree')",
        "button:has-text('Accept')",
    )
    query_box_selector = "textarea[name='q'], input[name='q']"
    query_box_timeout_ms = 20000
    block_detector = BlockDetector(
        url_markers=("/sorry/",),
        text_markers=(
            "unusual traffic",
            "our systems have detected unusual traffic",
            "to continue, please type the characters",
        ),
    )
    # Google DOM changes often, hence the alternates.
    result_extractor = ResultExtractor(
        container_selector="div.g, div.MjjYud, .tF2Cxc",
        link_selector="a[href^='http']",
        title_selector="h3",
        snippet_selectors=(".VwiC3b", ".IsZvec", ".aCOpRe"),
    )


class BingProvider(SearchProvider):
    name = "bing"
    home_url = "https://www.bing.com/"
    consent_candidates = (
        "button#bnp_btn_accept",
        "button#bnp_btn_agree",
        "button:has-text('Accept')",
        "button:has-text('I agree')",
        "button:has-text('Agree')",
    )
    query_box_selector = "#sb_form_q"
    query_box_timeout_ms = 25000
    block_detector = BlockDetector(
        url_markers=("captcha", "blocked"),
        text_markers=(
            "unusual traffic",
            "verify you are human",
            "complete the security check",
        ),
    )
    result_extractor = ResultExtractor(
        container_selector="li.b_algo",
        link_selector="h2 a[href]",
        title_selector=None,
        snippet_selectors=(".b_caption p", ".b_paractl", "p"),
    )


PROVIDERS: Dict[str, Type[SearchProvider]] = {
    GoogleProvider.name: GoogleProvider,
    BingProvider.name: BingProvider,
}


def available_providers() -> List[str]:
    return sorted(PROVIDERS)


def get_provider(name: str) -> SearchProvider:
    """Instantiate the provider registered under `name` (case-insensitive)."""
    key = (name or "").strip().lower()
    try:
        return PROVIDERS[key]()
    except KeyError:
        raise ValueError(
            f"Unknown search provider {name!r}; expected one of {', '.join(available_providers())}"
        ) from None
