"""
Web search providers returning company-shaped results.

Two interchangeable backends share ``search(query, limit)``:

- DuckDuckGoSearch: renders the DDG HTML endpoint in headless Chromium and
  parses the result anchors with a selector cascade.
- GoogleCustomSearch: Custom Search JSON API over httpx.

Neither raises on provider trouble; an empty list means "zero results".
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional, Protocol
from urllib.parse import parse_qs, quote_plus, unquote, urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from leadgen.browser import open_page
from leadgen.heuristics import heuristics
from leadgen.models import SearchResult
from leadgen.normalize import normalize_domain
from leadgen.settings import (
    GOOGLE_SEARCH_API_KEY,
    GOOGLE_SEARCH_CX,
    GOOGLE_SEARCH_TIMEOUT_S,
    SEARCH_PROVIDER,
    SERP_MAX_RESULTS,
    SETTLE_DELAY_MS,
)

logger = logging.getLogger(__name__)

DDG_HTML_URL = "https://html.duckduckgo.com/html/?q="
DDG_BASE = "https://duckduckgo.com"
GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"

# Tried in order until one yields results; DDG markup drifts.
DDG_RESULT_SELECTORS = (
    "a.result__a",
    "article h2 a",
    ".result__title a",
    'a[href*="http"]',
)


class WebSearchProvider(Protocol):
    event_type: str

    async def search(self, query: str, limit: int = ...) -> List[SearchResult]:
        ...


def _is_search_engine(host: str) -> bool:
    return any(b in host for b in heuristics()["search_engine_hosts"])


def result_domain(url: str) -> Optional[str]:
    """Company domain for a result URL, or ``None`` for excluded/non-company hosts."""
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return None
    if not host:
        return None
    if host.startswith("www."):
        host = host[4:]
    if _is_search_engine(host):
        return None
    if any(p in host for p in heuristics()["excluded_search_domains"]):
        return None
    return normalize_domain(host)


def _unwrap_ddg_href(href: str) -> str:
    href_abs = urljoin(DDG_BASE, href.strip())
    u = urlsplit(href_abs)
    host = (u.hostname or "").lower()
    # DDG redirect pattern: /l/?uddg=<encoded target>
    if host.endswith("duckduckgo.com") and u.path.startswith("/l/"):
        target = parse_qs(u.query).get("uddg", [None])[0]
        if target:
            return unquote(str(target))
    return href_abs


def parse_ddg_results(raw_html: str, limit: int = SERP_MAX_RESULTS) -> List[SearchResult]:
    soup = BeautifulSoup(raw_html or "", "html.parser")
    cap = max(0, min(limit, SERP_MAX_RESULTS))
    extracted: List[tuple[str, str]] = []
    for selector in DDG_RESULT_SELECTORS:
        for a in soup.select(selector)[:SERP_MAX_RESULTS]:
            href = a.get("href") or ""
            if not href:
                continue
            target = _unwrap_ddg_href(href)
            if not target.startswith(("http://", "https://")):
                continue
            if _is_search_engine((urlsplit(target).hostname or "").lower()):
                continue
            extracted.append((a.get_text(" ", strip=True), target))
        if extracted:
            break

    out: List[SearchResult] = []
    for title, url in extracted:
        domain = result_domain(url)
        if not domain:
            continue
        out.append(SearchResult(title=title, url=url, snippet=None, domain=domain))
        if len(out) >= cap:
            break
    return out


class DuckDuckGoSearch:
    event_type = "serp"

    def __init__(self, *, settle_ms: int = SETTLE_DELAY_MS, page_factory: Callable = open_page):
        self._settle_s = settle_ms / 1000.0
        self._page_factory = page_factory

    async def search(self, query: str, limit: int = SERP_MAX_RESULTS) -> List[SearchResult]:
        url = DDG_HTML_URL + quote_plus(query)
        try:
            async with self._page_factory() as page:
                await page.goto(url, wait_until="domcontentloaded")
                if self._settle_s > 0:
                    await asyncio.sleep(self._settle_s)
                raw_html = await page.content()
        except Exception as exc:
            logger.warning("DDG search error for %r: %s", query, exc)
            return []
        results = parse_ddg_results(raw_html, limit)
        logger.info("ddg query=%r results=%s", query, len(results))
        return results


class GoogleCustomSearch:
    event_type = "google_search"

    def __init__(
        self,
        api_key: Optional[str] = None,
        cx: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = GOOGLE_SEARCH_TIMEOUT_S,
    ):
        self.api_key = api_key if api_key is not None else GOOGLE_SEARCH_API_KEY
        self.cx = cx if cx is not None else GOOGLE_SEARCH_CX
        self._client = client
        self._timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.cx)

    async def _get(self, params: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(GOOGLE_CSE_URL, params=params)
        async with httpx.AsyncClient(timeout=self._timeout_s) as client:
            return await client.get(GOOGLE_CSE_URL, params=params)

    async def search(self, query: str, limit: int = 10) -> List[SearchResult]:
        if not self.configured:
            logger.warning(
                "Google Custom Search not configured; set GOOGLE_SEARCH_API_KEY and GOOGLE_SEARCH_CX"
            )
            return []
        params = {"key": self.api_key, "cx": self.cx, "q": query, "num": max(1, min(limit, 10))}
        try:
            resp = await self._get(params)
        except httpx.HTTPError as exc:
            logger.error("Google Custom Search error for %r: %s", query, exc)
            return []
        if resp.status_code >= 400:
            logger.error("Google Search API error: %s - %s", resp.status_code, resp.text[:500])
            return []
        try:
            data = resp.json()
        except ValueError as exc:
            logger.error("Google Search API returned non-JSON body: %s", exc)
            return []

        out: List[SearchResult] = []
        for item in data.get("items") or []:
            link = (item or {}).get("link") or ""
            domain = result_domain(link)
            if not domain:
                continue
            out.append(
                SearchResult(
                    title=item.get("title") or "",
                    url=link,
                    snippet=item.get("snippet") or "",
                    domain=domain,
                )
            )
        return out


def get_search_provider(name: Optional[str] = None) -> WebSearchProvider:
    choice = (name or SEARCH_PROVIDER or "duckduckgo").strip().lower()
    if choice in ("google", "google_search", "cse"):
        return GoogleCustomSearch()
    if choice not in ("duckduckgo", "ddg", "serp"):
        logger.warning("unknown SEARCH_PROVIDER=%s; using duckduckgo", choice)
    return DuckDuckGoSearch()
