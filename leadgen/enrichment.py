"""
Company enrichment: visit each pool candidate's homepage, infer what the
company does and write the result back to the global registry and the pool.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from leadgen.ai import AIEnrichmentService
from leadgen.companies import save_contacts
from leadgen.extractor import MAX_DESCRIPTION_CHARS, PageExtractor
from leadgen.heuristics import heuristics
from leadgen.job_log import JobLogSink
from leadgen.models import CompanyAnalysis, PageExtraction, ProvenanceEntry, SocialLinks
from leadgen.normalize import calculate_company_confidence, normalize_company_name, normalize_domain
from leadgen.repositories.base import Repositories
from leadgen.settings import ENRICH_DELAY_S, ENRICH_MAX_COMPANIES

logger = logging.getLogger(__name__)


@dataclass
class CompanyEnrichment:
    domain: str
    company_name: Optional[str]
    description: Optional[str]
    industry: Optional[str]
    tech_stack: List[str] = field(default_factory=list)
    social_links: SocialLinks = field(default_factory=SocialLinks)
    emails: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    confidence: int = 0
    error: Optional[str] = None


def infer_industry(
    company_name: Optional[str] = None,
    description: Optional[str] = None,
    keywords: Optional[List[str]] = None,
    tech_stack: Optional[List[str]] = None,
) -> Optional[str]:
    """Industry whose keyword list has the most hits in the combined text, or None."""
    text = " ".join([company_name or "", description or "", *(keywords or []), *(tech_stack or [])]).lower()
    best, best_score = None, 0
    for industry, words in heuristics()["industry_keywords"].items():
        score = sum(1 for w in words if w in text)
        if score > best_score:
            best, best_score = industry, score
    return best


async def enrich_company(domain: str, extractor: PageExtractor) -> Optional[CompanyEnrichment]:
    d = normalize_domain(domain)
    if not d:
        return None
    extraction: PageExtraction = await extractor.extract(f"https://{d}")
    if extraction.error:
        return CompanyEnrichment(domain=d, company_name=None, description=None, industry=None, error=extraction.error)

    company_name = normalize_company_name(extraction.company_name_guess or extraction.title or d.split(".")[0])
    description = extraction.description_guess or extraction.meta_description or extraction.og_description
    if description:
        description = description[:MAX_DESCRIPTION_CHARS]
    industry = infer_industry(company_name, description, extraction.keywords, extraction.tech_stack)
    confidence = calculate_company_confidence(
        has_domain=True,
        has_website=True,
        has_description=bool(description),
        has_tech_stack=bool(extraction.tech_stack),
        has_industry=bool(industry),
        source="crawler",
    )
    return CompanyEnrichment(
        domain=d,
        company_name=company_name,
        description=description or None,
        industry=industry,
        tech_stack=list(extraction.tech_stack),
        social_links=extraction.social_links,
        emails=list(extraction.emails),
        phones=list(extraction.phones),
        confidence=confidence,
    )


def _ai_summary(analysis: Optional[CompanyAnalysis]) -> Optional[Dict[str, Any]]:
    if analysis is None:
        return None
    return {
        "confidence": analysis.confidence,
        "businessModel": analysis.business_model,
        "targetMarket": analysis.target_market,
    }


async def enrich_companies_for_job(
    job_id: str,
    max_enrichments: int = ENRICH_MAX_COMPANIES,
    user_id: Optional[str] = None,
    *,
    repos: Repositories,
    extractor: Optional[PageExtractor] = None,
    ai: Optional[AIEnrichmentService] = None,
    delay_s: float = ENRICH_DELAY_S,
    log: Optional[JobLogSink] = None,
) -> Dict[str, int]:
    """Returns ``{"enriched", "failed", "contacts"}`` counts; raises LookupError for an unknown job."""
    job = await repos.jobs.get(job_id)
    if job is None:
        raise LookupError(f"Job not found: {job_id}")
    extractor = extractor or PageExtractor()
    use_ai = job.providers.ai_analysis
    if use_ai and ai is None:
        ai = AIEnrichmentService(user_id=user_id or job.user_id)
    profile = await repos.jobs.get_targeting_profile(job.pool_id)
    contact_cap = profile.limits.max_contacts_per_company

    candidates = await repos.candidates.list_needing_enrichment(job.pool_id, max_enrichments)
    logger.info("enrichment job=%s candidates=%d", job_id, len(candidates))

    enriched = 0
    failed = 0
    contacts = 0
    for i, candidate in enumerate(candidates):
        if not candidate.domain:
            continue
        if i > 0 and delay_s > 0:
            await asyncio.sleep(delay_s)
        try:
            data = await enrich_company(candidate.domain, extractor)
            if data is None or data.error:
                failed += 1
                logger.info("enrichment skipped domain=%s err=%s", candidate.domain, data.error if data else "bad domain")
                continue

            analysis: Optional[CompanyAnalysis] = None
            if use_ai and ai is not None and data.description:
                analysis = await ai.classify_company(data.domain, data.description)
                if analysis.confidence <= 0 and not analysis.industry:
                    analysis = None

            final_industry = (analysis.industry if analysis else None) or data.industry
            final_tech = list(dict.fromkeys([*data.tech_stack, *(analysis.tech_stack if analysis else [])]))
            prov = ProvenanceEntry(
                source="crawler",
                job_id=job_id,
                details={"confidence": data.confidence, "aiAnalysis": _ai_summary(analysis)},
            )
            await repos.companies.apply_enrichment(
                data.domain,
                prov,
                company_name=data.company_name,
                description=data.description,
                industry=final_industry,
                tech_stack=final_tech,
                homepage_url=f"https://{data.domain}",
            )
            score = max(candidate.score or 0, data.confidence, analysis.confidence if analysis else 0)
            updated = await repos.candidates.update(
                candidate.id,
                provenance=prov,
                company_name=data.company_name,
                description=data.description,
                industry=final_industry,
                tech_stack=final_tech,
                score=score,
            )
            page_contacts = [{"email": e} for e in data.emails] + [{"phone": p} for p in data.phones]
            if page_contacts and updated is not None:
                contacts += await save_contacts(
                    repos, updated, page_contacts, source="company-website", job_id=job_id, limit=contact_cap
                )
            enriched += 1
        except Exception as exc:
            logger.warning("enrichment failed candidate=%s domain=%s err=%s", candidate.id, candidate.domain, exc)
            failed += 1

    if log is not None:
        log.info(f"Company enrichment: {enriched} enriched, {failed} failed.")
    return {"enriched": enriched, "failed": failed, "contacts": contacts}
