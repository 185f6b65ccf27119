"""
SERP discovery: targeting profile -> search queries -> unique company domains
-> global companies and pool candidates.

Queries run through an ordered tuple of search strategies. Each later
strategy is tried only while fewer than ``min(10, max_companies)`` unique
domains have been found.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from leadgen.ai import AIEnrichmentService
from leadgen.companies import record_company_sighting
from leadgen.job_log import JobLogSink
from leadgen.models import LeadSourceEvent, TargetingProfile
from leadgen.normalize import normalize_domain
from leadgen.repositories.base import Repositories
from leadgen.search import WebSearchProvider, get_search_provider
from leadgen.settings import SCRAPER_QUERY_DELAY_MS, SERP_MAX_RESULTS

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES = [
    "site:linkedin.com/company {industry} {geo}",
    "site:crunchbase.com/organization {industry} {geo}",
    "{industry} companies in {geo} using {tech}",
]

MAX_VALUES_PER_FIELD = 3
DROP_TECH_MAX_QUERIES = 15

NO_RESULTS_MESSAGE = (
    "No companies found after all search attempts. This may indicate: "
    "(1) ICP criteria too narrow, (2) Search engine blocking, (3) No matching companies exist. "
    "Try broader ICP criteria or check logs for search errors."
)


def max_template_queries(max_companies: int) -> int:
    return min(30, max(5, math.ceil(max_companies / 3)))


def ai_query_count(max_companies: int) -> int:
    return min(15, math.ceil(max_companies / 5))


def build_queries(templates: Sequence[str], profile: TargetingProfile, max_queries: int) -> List[str]:
    """Expand templates over the Cartesian product of (at most 3 of each) profile values."""

    def vals(values: List[str]) -> List[str]:
        return values[:MAX_VALUES_PER_FIELD] if values else [""]

    out: List[str] = []
    combos = itertools.product(
        vals(profile.industries),
        vals(profile.geos),
        vals(profile.tech_stack),
        vals(profile.titles),
        vals(profile.languages),
    )
    for industry, geo, tech, title, language in combos:
        for template in templates:
            q = (
                template.replace("{industry}", industry)
                .replace("{geo}", geo)
                .replace("{tech}", tech)
                .replace("{title}", title)
                .replace("{language}", language)
            )
            q = re.sub(r"\s+", " ", q).strip()
            if q:
                out.append(q)
            if len(out) >= max_queries:
                return list(dict.fromkeys(out))
    return list(dict.fromkeys(out))


def generic_queries(profile: TargetingProfile) -> List[str]:
    industry = profile.industries[0] if profile.industries else "companies"
    geo = profile.geos[0] if profile.geos else "United States"
    return [
        f"{industry} companies",
        f"{industry} startups",
        f"{industry} businesses in {geo}",
        f"top {industry} companies",
        f"best {industry} firms",
    ]


@dataclass
class SearchContext:
    profile: TargetingProfile
    templates: List[str]
    ai: Optional[AIEnrichmentService]
    use_ai: bool
    log: JobLogSink


@dataclass(frozen=True)
class Strict:
    """Full profile; model-written queries when enabled, templates otherwise."""

    async def queries(self, ctx: SearchContext) -> List[str]:
        max_companies = ctx.profile.limits.max_companies
        if ctx.use_ai and ctx.ai is not None:
            ctx.log.info("Generating AI-powered search queries...")
            queries = await ctx.ai.generate_search_queries(ctx.profile, ai_query_count(max_companies))
            if queries:
                ctx.log.info(f"Generated {len(queries)} AI queries")
                return queries
        return build_queries(ctx.templates, ctx.profile, max_template_queries(max_companies))


@dataclass(frozen=True)
class DropTechStack:
    async def queries(self, ctx: SearchContext) -> List[str]:
        loosened = ctx.profile.model_copy(update={"tech_stack": []})
        return build_queries(ctx.templates, loosened, DROP_TECH_MAX_QUERIES)


@dataclass(frozen=True)
class GenericFallback:
    async def queries(self, ctx: SearchContext) -> List[str]:
        return generic_queries(ctx.profile)


SEARCH_STRATEGIES = (Strict(), DropTechStack(), GenericFallback())


@dataclass
class SerpRunResult:
    created_candidates: int = 0
    source_events: int = 0
    unique_domains: List[str] = field(default_factory=list)


def _excluded(domain: str, exclude: List[str]) -> bool:
    return any(x and x in domain for x in exclude)


async def run_serp_scraper_for_job(
    job_id: str,
    user_id: Optional[str] = None,
    *,
    repos: Repositories,
    search: Optional[WebSearchProvider] = None,
    ai: Optional[AIEnrichmentService] = None,
    query_delay_s: float = SCRAPER_QUERY_DELAY_MS / 1000.0,
    log: Optional[JobLogSink] = None,
    strategies: Sequence = SEARCH_STRATEGIES,
) -> SerpRunResult:
    job = await repos.jobs.get(job_id)
    if job is None:
        raise LookupError(f"Job not found: {job_id}")
    owns_log = log is None
    log = log or JobLogSink(job_id, repos.jobs)
    try:
        return await _discover(job, repos, search, ai, query_delay_s, log, strategies, user_id)
    finally:
        if owns_log:
            await log.flush()


async def _discover(
    job,
    repos: Repositories,
    search: Optional[WebSearchProvider],
    ai: Optional[AIEnrichmentService],
    query_delay_s: float,
    log: JobLogSink,
    strategies: Sequence,
    user_id: Optional[str],
) -> SerpRunResult:
    job_id = job.id
    profile = await repos.jobs.get_targeting_profile(job.pool_id)
    search = search or get_search_provider()
    use_ai = job.providers.ai_queries
    if use_ai and ai is None:
        ai = AIEnrichmentService(user_id=user_id or job.user_id)

    max_companies = max(1, profile.limits.max_companies)
    threshold = min(10, max_companies)
    exclude = [d for d in (normalize_domain(x) or (x or "").lower() for x in profile.exclude_domains) if d]
    ctx = SearchContext(
        profile=profile,
        templates=job.query_templates or list(DEFAULT_TEMPLATES),
        ai=ai,
        use_ai=use_ai,
        log=log,
    )

    result = SerpRunResult()
    found: Dict[str, str] = {}  # domain -> query that first surfaced it
    executed: Set[str] = set()
    queries_run = 0
    total = len(strategies)

    for attempt, strategy in enumerate(strategies, start=1):
        if attempt > 1:
            if len(found) >= threshold:
                break
            log.info(f"Loosening search criteria (attempt {attempt}/{total})...")
        else:
            log.info(f"Starting {type(search).__name__} search...")
        queries = await strategy.queries(ctx)
        for q in queries:
            if len(found) >= max_companies:
                break
            # looser strategies regenerate many of the stricter queries
            if q in executed:
                continue
            executed.add(q)
            if queries_run > 0 and query_delay_s > 0:
                await asyncio.sleep(query_delay_s)
            queries_run += 1
            try:
                hits = await search.search(q, SERP_MAX_RESULTS)
            except Exception as exc:
                log.warn(f'SERP error for "{q}": {exc}')
                hits = []
            domains = []
            for hit in hits:
                d = normalize_domain(hit.domain)
                if d and not _excluded(d, exclude) and d not in domains:
                    domains.append(d)
            try:
                await repos.jobs.add_source_event(
                    LeadSourceEvent(
                        job_id=job_id,
                        type=getattr(search, "event_type", "serp"),
                        query=q,
                        url=hits[0].url if hits else None,
                        metadata={
                            "note": "SERP query results",
                            "domains": domains[:20],
                            "totalResults": len(hits),
                            "snippets": [h.snippet for h in hits[:3] if h.snippet],
                        },
                    )
                )
                result.source_events += 1
            except Exception as exc:
                logger.warning("source event write failed job=%s query=%r err=%s", job_id, q, exc)
            for d in domains:
                found.setdefault(d, q)
            await log.flush_if_needed()

    if not found:
        log.error(NO_RESULTS_MESSAGE)
        return result

    unique = list(found)[:max_companies]
    result.unique_domains = unique
    for d in unique:
        try:
            _, created = await record_company_sighting(
                repos,
                job.pool_id,
                d,
                source=getattr(search, "event_type", "serp"),
                job_id=job_id,
                details={"query": found[d]},
            )
            if created:
                result.created_candidates += 1
        except Exception as exc:
            logger.warning("sighting failed job=%s domain=%s err=%s", job_id, d, exc)
    log.info(f"SERP discovery: {len(unique)} unique domains, {result.created_candidates} new candidates.")
    return result
