"""
Page extraction: render a URL and pull structured signals from the DOM.

``PageExtractor.extract`` loads one page; ``PageExtractor.crawl`` also visits
the site's most promising about/team/contact pages. Neither raises; navigation
trouble is reported via ``PageExtraction.error`` so callers can count the
failure and move on.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from leadgen.browser import open_page
from leadgen.contacts import decode_email_candidates, should_ignore_email
from leadgen.heuristics import heuristics
from leadgen.models import PageExtraction, SocialLinks, TargetingProfile
from leadgen.settings import (
    CRAWL_MAX_PAGES,
    CRAWL_PAGE_TIMEOUT_MS,
    NAV_TIMEOUT_MS,
    SETTLE_DELAY_MS,
    SITEMAP_TIMEOUT_MS,
)

logger = logging.getLogger(__name__)

MAX_EMAILS = 10
MAX_PHONES = 5
MAX_DESCRIPTION_CHARS = 500
MAX_TEXT_CHARS = 6000

EMAIL_RE = re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", re.I)
PHONE_RE = re.compile(r"(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}")


class NavigationError(RuntimeError):
    """The page answered, but with an HTTP error status."""


def _meta(soup: BeautifulSoup, *, name: Optional[str] = None, prop: Optional[str] = None) -> Optional[str]:
    attrs = {"name": name} if name else {"property": prop}
    tag = soup.find("meta", attrs=attrs)
    if not tag:
        return None
    content = (tag.get("content") or "").strip()
    return content or None


def _dedupe_capped(values: List[str], cap: int) -> List[str]:
    out: List[str] = []
    seen: set[str] = set()
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
        if len(out) >= cap:
            break
    return out


def detect_tech_stack(raw_html: str) -> List[str]:
    low = (raw_html or "").lower()
    found = []
    for tech, indicators in heuristics()["tech_fingerprints"].items():
        if any(str(ind).lower() in low for ind in indicators):
            found.append(tech)
    return found


def parse_page_html(raw_html: str, url: Optional[str] = None) -> PageExtraction:
    soup = BeautifulSoup(raw_html or "", "html.parser")

    title = soup.title.get_text(strip=True) if soup.title else None
    meta_description = _meta(soup, name="description")
    og_description = _meta(soup, prop="og:description")
    og_title = _meta(soup, prop="og:title")
    keywords_raw = _meta(soup, name="keywords")
    keywords = [k.strip() for k in keywords_raw.split(",") if k.strip()] if keywords_raw else []

    h1 = soup.find("h1")
    h1_text = h1.get_text(" ", strip=True) if h1 else None
    company_name_guess = og_title or h1_text or title or None

    description = meta_description or og_description
    if not description:
        p = soup.find("p")
        if p:
            description = p.get_text(" ", strip=True) or None
    if description:
        description = description[:MAX_DESCRIPTION_CHARS]

    body = soup.body or soup
    text = body.get_text(" ", strip=True)

    hrefs = [(a.get("href") or "").strip() for a in soup.find_all("a", href=True)]
    mailtos = []
    for href in hrefs:
        if href.lower().startswith("mailto:"):
            addr = href[len("mailto:"):].split("?")[0].strip()
            if addr:
                mailtos.append(addr)
    email_candidates = [e.lower() for e in EMAIL_RE.findall(text)] + [m.lower() for m in mailtos]
    email_candidates += decode_email_candidates(text, hrefs)
    emails = _dedupe_capped([e for e in email_candidates if not should_ignore_email(e)[0]], MAX_EMAILS)

    links = []
    for href in hrefs:
        absolute = urljoin(url, href) if url else href
        if urlsplit(absolute).scheme in ("http", "https"):
            links.append(absolute.split("#")[0])

    phones = _dedupe_capped([m.strip() for m in PHONE_RE.findall(text)], MAX_PHONES)

    socials = {}
    patterns = {k: re.compile(v, re.I) for k, v in heuristics()["social_patterns"].items()}
    for a in soup.find_all("a", href=True):
        href = a["href"]
        for network, rx in patterns.items():
            if network not in socials and rx.search(href):
                socials[network] = href
                break

    return PageExtraction(
        url=url,
        title=title,
        meta_description=meta_description,
        og_description=og_description,
        company_name_guess=company_name_guess,
        description_guess=description,
        keywords=keywords,
        emails=emails,
        phones=phones,
        tech_stack=detect_tech_stack(raw_html),
        social_links=SocialLinks(**socials),
        text=text[:MAX_TEXT_CHARS],
        links=list(dict.fromkeys(links)),
    )


# ---------------------------------------------------------------------------
# Site crawl
# ---------------------------------------------------------------------------

_STATIC_ASSET_RE = re.compile(r"\.(pdf|jpe?g|png|gif|svg|webp|ico|css|js|zip|rar|7z|mp4|mp3|woff2?)(?:$|\?)", re.I)
_ROBOTS_SITEMAP_RE = re.compile(r"^\s*sitemap:\s*(\S+)", re.I | re.M)
_LOC_RE = re.compile(r"<loc>\s*([^<\s]+)\s*</loc>", re.I)
SITEMAP_FALLBACKS = ("/sitemap.xml", "/sitemap_index.xml", "/sitemap/sitemap.xml")
MAX_SITEMAP_URLS = 200


def _host(url: str) -> str:
    host = (urlsplit(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def _canonical(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path.rstrip("/") or "/"
    return f"{_host(url)}{path}" + (f"?{parts.query}" if parts.query else "")


def parse_sitemap_urls(content: str) -> List[str]:
    """Page URLs listed in a sitemap; nested ``.xml`` sitemaps are skipped."""
    locs = _LOC_RE.findall(html.unescape(content or ""))
    return [u for u in locs if not urlsplit(u).path.lower().endswith(".xml")][:MAX_SITEMAP_URLS]


def link_score(url: str, profile: Optional[TargetingProfile] = None) -> int:
    """Heuristic value of a same-site link for finding people and contact details."""
    parts = urlsplit(url)
    path = f"{parts.path}?{parts.query}".lower()
    if _STATIC_ASSET_RE.search(parts.path):
        return -25
    score = 0
    for rule in heuristics()["link_scores"]:
        if any(p in path for p in rule["patterns"]):
            score += int(rule["score"])
    if profile is not None:
        for value in [*profile.geos, *profile.industries]:
            token = re.sub(r"\s+", "-", value.strip().lower())
            if token and token in path:
                score += 2
    return score


def rank_links(
    urls: Sequence[str],
    domain: str,
    *,
    visited: Sequence[str] = (),
    profile: Optional[TargetingProfile] = None,
    limit: int = CRAWL_MAX_PAGES,
) -> List[str]:
    """Best-first same-site links worth a visit; visited, off-site and negative links drop out."""
    seen = {_canonical(u) for u in visited}
    scored = []
    for url in urls:
        if urlsplit(url).scheme not in ("http", "https") or _host(url) != domain:
            continue
        key = _canonical(url)
        if key in seen:
            continue
        seen.add(key)
        score = link_score(url, profile)
        if score > 0:
            scored.append((score, url))
    # sorted() is stable, so ties keep discovery order
    return [u for _, u in sorted(scored, key=lambda s: -s[0])][:limit]


def merge_extractions(pages: Sequence[PageExtraction]) -> PageExtraction:
    """Fold per-page results into one; the first page supplies titles and descriptions."""
    first = pages[0]
    # every page gets an equal slice of the text budget
    share = MAX_TEXT_CHARS // len(pages)
    socials: Dict[str, str] = {}
    for p in pages:
        for network, href in p.social_links.model_dump().items():
            if href and network not in socials:
                socials[network] = href
    return first.model_copy(
        update={
            "keywords": _dedupe_capped([k for p in pages for k in p.keywords], 50),
            "emails": _dedupe_capped([e for p in pages for e in p.emails], MAX_EMAILS * 2),
            "phones": _dedupe_capped([ph for p in pages for ph in p.phones], MAX_PHONES * 2),
            "tech_stack": _dedupe_capped([t for p in pages for t in p.tech_stack], 50),
            "social_links": SocialLinks(**socials),
            "text": " ".join((p.text or "")[:share] for p in pages),
            "links": [],
            "pages_visited": [p.url for p in pages if p.url],
        }
    )


class PageExtractor:
    def __init__(
        self,
        *,
        nav_timeout_ms: int = NAV_TIMEOUT_MS,
        settle_ms: int = SETTLE_DELAY_MS,
        crawl_timeout_ms: int = CRAWL_PAGE_TIMEOUT_MS,
        sitemap_timeout_ms: int = SITEMAP_TIMEOUT_MS,
        page_factory: Callable = open_page,
    ):
        self._nav_timeout_ms = nav_timeout_ms
        self._settle_s = settle_ms / 1000.0
        self._crawl_timeout_ms = crawl_timeout_ms
        self._sitemap_timeout_ms = sitemap_timeout_ms
        self._page_factory = page_factory

    async def _fetch(self, page, url: str, timeout_ms: int, *, settle: bool = True) -> str:
        resp = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        if resp is not None and resp.status >= 400:
            raise NavigationError(f"HTTP {resp.status}")
        if settle and self._settle_s > 0:
            await asyncio.sleep(self._settle_s)
        return await page.content()

    async def _load(self, page, url: str, timeout_ms: int) -> PageExtraction:
        try:
            raw_html = await self._fetch(page, url, timeout_ms)
        except Exception as exc:
            logger.info("extract failed url=%s err=%s", url, exc)
            return PageExtraction(url=url, error=str(exc) or type(exc).__name__)
        return parse_page_html(raw_html, url)

    async def extract(self, url: str) -> PageExtraction:
        try:
            async with self._page_factory() as page:
                return await self._load(page, url, self._nav_timeout_ms)
        except Exception as exc:
            logger.info("extract failed url=%s err=%s", url, exc)
            return PageExtraction(url=url, error=str(exc) or type(exc).__name__)

    async def discover_sitemap(self, page, domain: str) -> List[str]:
        """Page URLs from the first sitemap that lists any (robots.txt entries first)."""
        base = f"https://{domain}"
        candidates: List[str] = []
        try:
            robots = await self._fetch(page, f"{base}/robots.txt", self._sitemap_timeout_ms, settle=False)
            candidates.extend(_ROBOTS_SITEMAP_RE.findall(html.unescape(robots)))
        except Exception as exc:
            logger.debug("robots.txt unavailable domain=%s err=%s", domain, exc)
        candidates.extend(base + path for path in SITEMAP_FALLBACKS)
        for sitemap_url in dict.fromkeys(candidates):
            try:
                content = await self._fetch(page, sitemap_url, self._sitemap_timeout_ms, settle=False)
            except Exception as exc:
                logger.debug("sitemap unavailable url=%s err=%s", sitemap_url, exc)
                continue
            urls = parse_sitemap_urls(content)
            if urls:
                return urls
        return []

    async def crawl(
        self,
        url: str,
        *,
        max_pages: int = CRAWL_MAX_PAGES,
        profile: Optional[TargetingProfile] = None,
    ) -> PageExtraction:
        """Homepage plus the best-ranked about/team/contact pages, merged into one extraction.

        Candidate links come from the homepage anchors, the sitemap and a fixed
        list of common paths. One browser serves the whole crawl. Never raises,
        and a homepage failure ends the crawl as the extraction error.
        """
        domain = _host(url)
        pages: List[PageExtraction] = []
        errors: List[str] = []
        try:
            async with self._page_factory() as page:
                home = await self._load(page, url, self._nav_timeout_ms)
                if home.error:
                    errors.append(f"{url}: {home.error}")
                    return PageExtraction(url=url, error=home.error, page_errors=errors)
                pages.append(home)
                if domain:
                    sitemap = await self.discover_sitemap(page, domain)
                    guessed = [f"https://{domain}{path}" for path in heuristics()["crawl_paths"]]
                    targets = rank_links(
                        [*home.links, *sitemap, *guessed],
                        domain,
                        visited=[url],
                        profile=profile,
                        limit=max_pages,
                    )
                    for target in targets:
                        sub = await self._load(page, target, self._crawl_timeout_ms)
                        if sub.error:
                            errors.append(f"{target}: {sub.error}")
                        else:
                            pages.append(sub)
        except Exception as exc:
            logger.info("crawl failed url=%s err=%s", url, exc)
            message = str(exc) or type(exc).__name__
            if not pages:
                return PageExtraction(url=url, error=message, page_errors=[f"{url}: {message}"])
            errors.append(f"{url}: {message}")

        logger.info("crawl url=%s pages=%d errors=%d", url, len(pages), len(errors))
        return merge_extractions(pages).model_copy(update={"page_errors": errors})
