"""
AI enrichment operations.

Every operation is one JSON-mode chat completion guarded by ``with_fallback``:
missing credentials, transport errors and malformed output all degrade to a
typed, non-AI default so callers never need their own try/except.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from leadgen.llm import LLMUnavailable, complete_json, get_chat_model
from leadgen.models import (
    CompanyAnalysis,
    CompanySummary,
    DuplicateVerdict,
    ExtractedContact,
    FitScore,
    OutreachDraft,
    ParsedTargetingProfile,
    TargetingProfile,
)
from leadgen.normalize import derive_company_name
from leadgen.retry import with_fallback

logger = logging.getLogger(__name__)

MAX_EXTRACTED_CONTACTS = 10


def _join(values: List[str], default: str) -> str:
    return ", ".join(values) if values else default


# ---------------------------------------------------------------------------
# Fallbacks (same signature as the operation they stand in for)
# ---------------------------------------------------------------------------


def _fallback_profile(self, prompt: str) -> ParsedTargetingProfile:
    return ParsedTargetingProfile(notes=prompt)


def fallback_queries(profile: TargetingProfile) -> List[str]:
    industry = profile.industries[0] if profile.industries else "technology"
    geo = profile.geos[0] if profile.geos else "United States"
    tech = profile.tech_stack[0] if profile.tech_stack else ""
    queries = [
        f"site:linkedin.com/company {industry} {geo}",
        f"site:crunchbase.com/organization {industry} {geo}",
        f"{industry} companies in {geo}",
        f"{industry} startups {geo}",
        f"top {industry} companies",
    ]
    if tech:
        queries.append(f"{industry} companies using {tech}")
    return queries


def _fallback_queries(self, profile: TargetingProfile, count: int = 10) -> List[str]:
    return fallback_queries(profile)


def _fallback_summary(self, domain: str, signals: Optional[Mapping[str, Any]] = None,
                      profile: Optional[TargetingProfile] = None) -> CompanySummary:
    industries = profile.industries if profile else []
    return CompanySummary(
        company_name=derive_company_name(domain),
        description=f"Business website: {domain}",
        industry=industries[0] if industries else "General Business",
    )


def _fallback_outreach(self, contact: Mapping[str, Any], profile: Optional[TargetingProfile] = None) -> OutreachDraft:
    name = contact.get("name") or "there"
    company = contact.get("company_name") or "your company"
    return OutreachDraft(
        subject=f"Connecting with {company}",
        body=f"Hi {name},\n\nI came across {company} and wanted to reach out.\n\nBest regards",
    )


_QUIET = (LLMUnavailable,)


class AIEnrichmentService:
    def __init__(self, llm: Any = None, user_id: Optional[str] = None):
        self.llm = llm if llm is not None else get_chat_model()
        self.user_id = user_id

    @property
    def available(self) -> bool:
        return self.llm is not None

    async def _ask(self, system: str, user: str) -> Dict[str, Any]:
        return await complete_json(self.llm, system, user)

    # ------------------------------------------------------------------
    # Targeting profile
    # ------------------------------------------------------------------

    @with_fallback(_fallback_profile, label="parse_targeting_prompt", quiet=_QUIET)
    async def parse_targeting_prompt(self, prompt: str) -> ParsedTargetingProfile:
        system = (
            "You are an expert B2B sales strategist. Use your knowledge to complete ALL ideal "
            "customer profile fields. Never leave fields empty; reason about what makes sense."
        )
        user = f"""Build a complete ideal customer profile for this lead-generation request:
"{prompt}"

Fill every field with reasoned values, not only literal mentions:
- industries: 3-5 specific and broader industry categories
- companySizes: ranges such as "1-10", "10-50", "50-200", "200-500", "500-1000", "1000+"
- geos: keep any state or city the user names; do not widen it to a country
- techStack: 3-5 tools these companies typically use
- titles: 4-6 decision-maker titles
- languages: default ["English"] unless the region suggests otherwise
- notes: the request restated with your assumptions

Return ONLY a JSON object with keys industries, companySizes, geos, techStack, titles, languages, notes."""
        data = await self._ask(system, user)
        parsed = ParsedTargetingProfile.model_validate(
            {k: v for k, v in data.items() if v not in (None, [], "")}
        )
        if not parsed.notes:
            parsed.notes = prompt
        return parsed

    @with_fallback(_fallback_queries, label="generate_search_queries", quiet=_QUIET)
    async def generate_search_queries(self, profile: TargetingProfile, count: int = 10) -> List[str]:
        system = (
            "You craft search queries for B2B lead generation. Generate diverse, effective "
            "queries that find real company websites."
        )
        notes = f"\nAdditional notes: {profile.notes}" if profile.notes else ""
        user = f"""Generate {count} search queries to find companies matching this profile:

Industries: {_join(profile.industries, "Any")}
Geographies: {_join(profile.geos, "Global")}
Tech stack: {_join(profile.tech_stack, "Any")}
Company sizes: {_join(profile.company_sizes, "Any")}
Target titles: {_join(profile.titles, "Any")}{notes}

Mix site: operators (LinkedIn, Crunchbase, directories) with open-web phrasing and
industry-specific terms. Return JSON: {{"queries": ["..."]}}"""
        data = await self._ask(system, user)
        raw = data.get("queries") or data.get("items") or []
        out: List[str] = []
        for q in raw if isinstance(raw, list) else []:
            q = re.sub(r"^\s*\d+[.)]\s*", "", str(q)).strip().strip("\"'").strip()
            if q and q not in out:
                out.append(q)
        if not out:
            logger.info("model returned no usable queries; using template fallback")
            return fallback_queries(profile)
        return out[:count]

    # ------------------------------------------------------------------
    # Company analysis
    # ------------------------------------------------------------------

    @with_fallback(CompanyAnalysis(), label="classify_company", quiet=_QUIET)
    async def classify_company(self, domain: str, description: str) -> CompanyAnalysis:
        system = "You are a B2B company analyst. Analyze companies and return structured JSON data."
        user = f"""Analyze this company:
Domain: {domain}
Description: {description}

Return JSON with:
industry (e.g. "Software & Technology", "E-commerce", "Healthcare"),
companyType (e.g. "SaaS", "Marketplace", "Agency", "Product"),
techStack (array, max 5), businessModel (B2B, B2C, B2B2C ...),
targetMarket, confidence (0-100)."""
        data = await self._ask(system, user)
        # An answer without a confidence still counts as a middling one
        data.setdefault("confidence", 50)
        return CompanyAnalysis.model_validate(data)

    @with_fallback(_fallback_summary, label="summarize_company", quiet=_QUIET)
    async def summarize_company(
        self,
        domain: str,
        signals: Optional[Mapping[str, Any]] = None,
        profile: Optional[TargetingProfile] = None,
    ) -> CompanySummary:
        signals = signals or {}
        profile = profile or TargetingProfile()
        system = "You are an expert at analyzing company websites."
        user = f"""Extract structured business information for this website.

DOMAIN: {domain}
WEBSITE TITLE: {signals.get("title") or "N/A"}
META DESCRIPTION: {signals.get("description") or "N/A"}
FOUND EMAILS: {_join(list(signals.get("emails") or []), "N/A")}
FOUND PHONES: {_join(list(signals.get("phones") or []), "N/A")}
DETECTED TECH: {_join(list(signals.get("tech_stack") or []), "N/A")}

TARGET PROFILE:
- Industries: {_join(profile.industries, "Any")}
- Geographies: {_join(profile.geos, "Any")}

Return JSON with companyName, description (1-2 sentences) and industry."""
        data = await self._ask(system, user)
        fallback = _fallback_summary(self, domain, signals, profile)
        return CompanySummary(
            company_name=str(data.get("companyName") or "").strip() or fallback.company_name,
            description=str(data.get("description") or "").strip() or fallback.description,
            industry=str(data.get("industry") or "").strip() or fallback.industry,
        )

    @with_fallback(FitScore(reasoning="AI scoring unavailable"), label="score_fit", quiet=_QUIET)
    async def score_fit(self, company: Mapping[str, Any], profile: TargetingProfile) -> FitScore:
        system = (
            "You are a B2B sales intelligence analyst. Evaluate company fit against an ideal "
            "customer profile and give actionable recommendations."
        )
        notes = f"\n- Additional: {profile.notes}" if profile.notes else ""
        user = f"""Evaluate how well this company fits the ideal customer profile.

COMPANY:
- Domain: {company.get("domain")}
- Name: {company.get("company_name") or "Unknown"}
- Description: {company.get("description") or "No description"}
- Industry: {company.get("industry") or "Unknown"}
- Tech stack: {json.dumps(list(company.get("tech_stack") or []))}

PROFILE:
- Target industries: {_join(profile.industries, "Any")}
- Target geos: {_join(profile.geos, "Any")}
- Required tech: {_join(profile.tech_stack, "Any")}
- Company sizes: {_join(profile.company_sizes, "Any")}
- Target titles: {_join(profile.titles, "Any")}{notes}

Return JSON with score (0-100), reasoning (1-2 sentences) and recommendations (2-3 next steps)."""
        data = await self._ask(system, user)
        return FitScore.model_validate(data)

    # ------------------------------------------------------------------
    # Contacts and entity resolution
    # ------------------------------------------------------------------

    @with_fallback([], label="extract_contacts", quiet=_QUIET)
    async def extract_contacts(self, text: str, domain: str) -> List[ExtractedContact]:
        system = (
            "You extract structured contact information from unstructured text. Return valid JSON."
        )
        user = f"""Extract people from this text about {domain}:

{(text or "")[:2000]}

Return JSON: {{"contacts": [{{"name": "...", "title": "...", "email": "...",
"phone": "...", "linkedin": "...", "confidence": 0-100}}]}}. Use an empty list when none."""
        data = await self._ask(system, user)
        raw = data.get("contacts")
        if raw is None:
            raw = data.get("items") or []
        out: List[ExtractedContact] = []
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict):
                continue
            try:
                out.append(ExtractedContact.model_validate(item))
            except ValidationError as exc:
                logger.debug("dropping malformed contact %r: %s", item, exc)
            if len(out) >= MAX_EXTRACTED_CONTACTS:
                break
        return out

    @with_fallback(DuplicateVerdict(reasoning="Analysis failed"), label="resolve_duplicates", quiet=_QUIET)
    async def resolve_duplicates(self, a: Mapping[str, Any], b: Mapping[str, Any]) -> DuplicateVerdict:
        system = "You are an expert at entity resolution. Decide whether two company records are the same entity."
        user = f"""Are these the same company?

COMPANY A:
- Domain: {a.get("domain")}
- Name: {a.get("company_name") or "Unknown"}
- Description: {a.get("description") or "N/A"}

COMPANY B:
- Domain: {b.get("domain")}
- Name: {b.get("company_name") or "Unknown"}
- Description: {b.get("description") or "N/A"}

Return JSON: {{"areSame": true/false, "confidence": 0-100, "reasoning": "..."}}"""
        data = await self._ask(system, user)
        return DuplicateVerdict.model_validate(data)

    @with_fallback(_fallback_outreach, label="draft_outreach", quiet=_QUIET)
    async def draft_outreach(self, contact: Mapping[str, Any], profile: Optional[TargetingProfile] = None) -> OutreachDraft:
        profile = profile or TargetingProfile()
        system = "You are an expert B2B sales professional. Write personalized, effective outreach emails."
        user = f"""Write a personalized B2B outreach email.

TO:
- Name: {contact.get("name") or "there"}
- Title: {contact.get("title") or "Team Member"}
- Company: {contact.get("company_name") or "your company"}
- About: {contact.get("company_description") or ""}

CONTEXT:
- We target: {_join(profile.industries, "technology companies")}
- In: {_join(profile.geos, "global markets")}

Keep it professional and concise (3-4 short paragraphs), reference their company,
state a clear value proposition and end with a call to action.
Return JSON: {{"subject": "...", "body": "..."}}"""
        data = await self._ask(system, user)
        fallback = _fallback_outreach(self, contact, profile)
        return OutreachDraft(
            subject=str(data.get("subject") or "").strip() or fallback.subject,
            body=str(data.get("body") or ""),
        )
