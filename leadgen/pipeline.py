"""
Job runner: one lead-generation job from QUEUED to SUCCESS/FAILED.

Chooses the agentic loop or the fixed SERP -> enrichment path from the job's
providers, rescores the pool against the ICP, writes counters and drains the
job log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from leadgen.agentic import run_agentic_scraper_for_job
from leadgen.ai import AIEnrichmentService
from leadgen.enrichment import enrich_companies_for_job
from leadgen.extractor import PageExtractor
from leadgen.icp_scoring import calculate_company_icp_score
from leadgen.job_log import JobLogSink
from leadgen.llm import LLMUnavailable
from leadgen.repositories.base import Repositories
from leadgen.search import WebSearchProvider
from leadgen.serp import run_serp_scraper_for_job
from leadgen.settings import ENRICH_DELAY_S, ENRICH_MAX_COMPANIES, SCRAPER_QUERY_DELAY_MS

logger = logging.getLogger(__name__)

ICP_WEIGHT = 0.6


@dataclass
class PipelineResult:
    mode: str = "fixed"
    created_candidates: int = 0
    created_contacts: int = 0
    counters: Dict[str, int] = field(default_factory=dict)


def blend_score(icp_score: int, existing: int) -> int:
    """60/40 ICP/enrichment blend that never lowers an existing score."""
    blended = int(icp_score * ICP_WEIGHT + existing * (1 - ICP_WEIGHT) + 0.5)
    return max(existing, blended)


async def rescore_pool(repos: Repositories, pool_id: str, log: Optional[JobLogSink] = None) -> int:
    profile = await repos.jobs.get_targeting_profile(pool_id)
    updated = 0
    for candidate in await repos.candidates.list_for_pool(pool_id):
        try:
            icp = calculate_company_icp_score(candidate, profile)
            final = blend_score(icp, candidate.score or 0)
            if final != candidate.score:
                await repos.candidates.update(candidate.id, score=final)
                updated += 1
        except Exception as exc:
            logger.warning("icp rescoring failed candidate=%s err=%s", candidate.id, exc)
    if log is not None:
        log.info(f"ICP scoring: {updated} candidate score(s) raised.")
    return updated


async def _run_agentic(job_id, user_id, repos, log, **deps) -> PipelineResult:
    res = await run_agentic_scraper_for_job(job_id, user_id, repos=repos, log=log, **deps)
    log.info(f"Agentic AI complete: {res['companies_saved']} companies, {res['contacts_saved']} contacts")
    return PipelineResult(
        mode="agentic",
        created_candidates=res["companies_saved"],
        created_contacts=res["contacts_saved"],
        counters={
            "companiesFound": res["companies_saved"],
            "candidatesCreated": res["companies_saved"],
            "contactsCreated": res["contacts_saved"],
            "agentIterations": res["iterations"],
        },
    )


async def _run_fixed(job, user_id, repos, log, *, search, extractor, ai, query_delay_s, enrich_delay_s) -> PipelineResult:
    created = 0
    events = 0
    domains = 0
    enriched = 0
    enrich_failed = 0
    contacts = 0

    if job.providers.serp:
        try:
            serp = await run_serp_scraper_for_job(
                job.id, user_id, repos=repos, search=search, ai=ai, query_delay_s=query_delay_s, log=log
            )
            created = serp.created_candidates
            events = serp.source_events
            domains = len(serp.unique_domains)
        except Exception as exc:
            logger.exception("serp step failed job=%s", job.id)
            log.error(f"SERP scraping failed: {exc}")
        await log.flush()

    if job.providers.crawler and created > 0:
        try:
            res = await enrich_companies_for_job(
                job.id,
                ENRICH_MAX_COMPANIES,
                user_id,
                repos=repos,
                extractor=extractor,
                ai=ai,
                delay_s=enrich_delay_s,
                log=log,
            )
            enriched = res["enriched"]
            enrich_failed = res["failed"]
            contacts = res.get("contacts", 0)
        except Exception as exc:
            logger.exception("enrichment step failed job=%s", job.id)
            log.error(f"Company enrichment failed: {exc}")
        await log.flush()

    await rescore_pool(repos, job.pool_id, log)
    log.info(
        f"LeadGen pipeline complete: domains={domains}, candidates={created}, enriched={enriched}, "
        f"contacts={contacts}, sourceEvents={events}."
    )
    return PipelineResult(
        mode="fixed",
        created_candidates=created,
        created_contacts=contacts,
        counters={
            "companiesFound": domains,
            "candidatesCreated": created,
            "contactsCreated": contacts,
            "sourceEvents": events,
            "companiesEnriched": enriched,
            "enrichmentFailed": enrich_failed,
        },
    )


def _accumulate(previous: Dict[str, int], current: Dict[str, int]) -> Dict[str, int]:
    out = dict(previous or {})
    for key, value in current.items():
        out[key] = int(out.get(key, 0) or 0) + int(value or 0)
    return out


async def run_lead_gen_pipeline(
    job_id: str,
    user_id: Optional[str] = None,
    *,
    repos: Repositories,
    llm: Any = None,
    search: Optional[WebSearchProvider] = None,
    extractor: Optional[PageExtractor] = None,
    ai: Optional[AIEnrichmentService] = None,
    query_delay_s: float = SCRAPER_QUERY_DELAY_MS / 1000.0,
    enrich_delay_s: float = ENRICH_DELAY_S,
) -> PipelineResult:
    job = await repos.jobs.get(job_id)
    if job is None:
        raise LookupError(f"Job not found: {job_id}")
    user_id = user_id or job.user_id
    log = JobLogSink(job_id, repos.jobs)
    await repos.jobs.update_status(job_id, "RUNNING", started=True)
    logger.info("job start id=%s pool=%s agentic=%s", job_id, job.pool_id, job.providers.agentic_ai)

    try:
        result = None
        if job.providers.agentic_ai:
            try:
                result = await _run_agentic(
                    job_id, user_id, repos, log, llm=llm, search=search, extractor=extractor, ai=ai
                )
            except LLMUnavailable as exc:
                log.warn(f"Agentic mode unavailable ({exc}); running the standard pipeline.")
        if result is None:
            result = await _run_fixed(
                job,
                user_id,
                repos,
                log,
                search=search,
                extractor=extractor,
                ai=ai,
                query_delay_s=query_delay_s,
                enrich_delay_s=enrich_delay_s,
            )
        counters = _accumulate(job.counters, result.counters)
        await log.flush()
        await repos.jobs.update_status(job_id, "SUCCESS", counters=counters, finished=True)
        result.counters = counters
        return result
    except Exception as exc:
        logger.exception("job failed id=%s", job_id)
        log.error(f"Lead generation failed: {exc}")
        await repos.jobs.update_status(job_id, "FAILED", finished=True)
        raise
    finally:
        await log.flush()
