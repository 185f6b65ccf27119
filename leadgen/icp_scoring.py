"""
Deterministic ICP fit scoring for companies and contacts.

Scores are points earned over points available, scaled to 0-100. Inputs may
be pydantic models or plain mappings (snake_case or camelCase keys).
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from leadgen.models import TargetingProfile

SENIOR_KEYWORDS = (
    "ceo", "cto", "cfo", "vp", "vice president", "director", "head", "chief", "founder", "owner", "president",
)
FREEMAIL_MARKERS = ("gmail", "yahoo", "hotmail", "outlook")

COMPANY_EXCLUDE_BELOW = 30
CONTACT_EXCLUDE_BELOW = 40


def _round(value: float) -> int:
    return int(math.floor(value + 0.5))


def _get(obj: Any, name: str, camel: Optional[str] = None) -> Any:
    if obj is None:
        return None
    if isinstance(obj, BaseModel):
        return getattr(obj, name, None)
    if isinstance(obj, Mapping):
        value = obj.get(name)
        if value is None and camel:
            value = obj.get(camel)
        return value
    return getattr(obj, name, None)


def _as_profile(icp: Any) -> TargetingProfile:
    if isinstance(icp, TargetingProfile):
        return icp
    return TargetingProfile.model_validate(icp or {})


def _low(value: Any) -> str:
    return str(value or "").lower()


def calculate_company_icp_score(company: Any, icp: Any) -> int:
    profile = _as_profile(icp)
    score = 0.0
    max_score = 0

    max_score += 30
    industry = _low(_get(company, "industry"))
    if profile.industries and industry:
        if any(t.lower() in industry or industry in t.lower() for t in profile.industries):
            score += 30

    max_score += 25
    tech = [str(t).lower() for t in (_get(company, "tech_stack", "techStack") or [])]
    if profile.tech_stack and tech:
        matches = [t for t in profile.tech_stack if any(t.lower() in ct for ct in tech)]
        score += min(25.0, len(matches) / len(profile.tech_stack) * 25)

    domain = _low(_get(company, "domain"))
    description = _low(_get(company, "description"))
    name = _low(_get(company, "company_name", "companyName"))

    max_score += 20
    if profile.geos:
        if any(g.lower() in domain or g.lower() in description or g.lower() in name for g in profile.geos):
            score += 20

    max_score += 15
    if name:
        score += 3
    if description:
        score += 4
    if industry:
        score += 3
    if tech:
        score += 3
    contact_info = _get(company, "contact_info", "contactInfo") or {}
    if _get(company, "email") or (isinstance(contact_info, Mapping) and contact_info.get("email")):
        score += 2

    max_score += 10
    if profile.company_sizes:
        if any(s.lower() in description or s.lower() in name for s in profile.company_sizes):
            score += 10

    return _round(score / max_score * 100) if max_score else 0


def calculate_contact_icp_score(contact: Any, icp: Any) -> int:
    profile = _as_profile(icp)
    score = 0
    max_score = 0

    max_score += 40
    title = _low(_get(contact, "title"))
    if profile.titles and title:
        if any(t.lower() in title or title in t.lower() for t in profile.titles):
            score += 40 if any(k in title for k in SENIOR_KEYWORDS) else 30

    max_score += 20
    if _get(contact, "linkedin_url", "linkedinUrl"):
        score += 20

    max_score += 20
    email = _low(_get(contact, "email"))
    if email:
        score += 10 if any(m in email for m in FREEMAIL_MARKERS) else 20

    max_score += 10
    full_name = str(_get(contact, "full_name", "fullName") or "").strip()
    if full_name:
        score += 10 if len(full_name.split()) >= 2 else 5

    max_score += 10
    if _get(contact, "company_domain", "companyDomain"):
        score += 10

    return _round(score / max_score * 100) if max_score else 0


def should_exclude_company(company: Any, icp: Any) -> bool:
    profile = _as_profile(icp)
    domain = _low(_get(company, "domain"))
    if domain and any(d and d.lower() in domain for d in profile.exclude_domains):
        return True
    return calculate_company_icp_score(company, profile) < COMPANY_EXCLUDE_BELOW


def should_exclude_contact(contact: Any, icp: Any) -> bool:
    if not _get(contact, "title") and not _get(contact, "email"):
        return True
    return calculate_contact_icp_score(contact, icp) < CONTACT_EXCLUDE_BELOW


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, BaseModel):
        return obj.model_dump()
    return dict(obj)


def rank_companies_by_icp(companies: Sequence[Any], icp: Any) -> List[Dict[str, Any]]:
    """Companies that pass ``should_exclude_company``, best first, each with ``icp_score``."""
    profile = _as_profile(icp)
    ranked = []
    for c in companies:
        if should_exclude_company(c, profile):
            continue
        ranked.append({**_as_dict(c), "icp_score": calculate_company_icp_score(c, profile)})
    return sorted(ranked, key=lambda r: r["icp_score"], reverse=True)


def rank_contacts_by_icp(contacts: Sequence[Any], icp: Any) -> List[Dict[str, Any]]:
    profile = _as_profile(icp)
    ranked = []
    for c in contacts:
        if should_exclude_contact(c, profile):
            continue
        ranked.append({**_as_dict(c), "icp_score": calculate_contact_icp_score(c, profile)})
    return sorted(ranked, key=lambda r: r["icp_score"], reverse=True)


def _plural(n: int, one: str, many: str) -> str:
    return one if n == 1 else many


def generate_icp_insights(icp: Any) -> Dict[str, List[str]]:
    profile = _as_profile(icp)
    strengths: List[str] = []
    weaknesses: List[str] = []
    recommendations: List[str] = []

    n = len(profile.industries)
    if n:
        strengths.append(f"Targeting {n} specific {_plural(n, 'industry', 'industries')}")
    else:
        weaknesses.append("No industry targeting specified")
        recommendations.append("Add target industries to improve lead quality")

    n = len(profile.titles)
    if n:
        strengths.append(f"Targeting {n} specific job {_plural(n, 'title', 'titles')}")
    else:
        weaknesses.append("No job titles specified")
        recommendations.append("Add target job titles (e.g., CEO, CTO, Marketing Director)")

    n = len(profile.tech_stack)
    if n:
        strengths.append(f"Filtering by {n} {_plural(n, 'technology', 'technologies')}")
    else:
        recommendations.append("Consider adding tech stack requirements for more precise targeting")

    if profile.geos:
        strengths.append(f"Geographic targeting: {', '.join(profile.geos)}")
    else:
        recommendations.append("Add geographic targeting to focus on specific markets")

    if not profile.exclude_domains:
        recommendations.append("Add competitor domains to exclude list")

    return {"strengths": strengths, "weaknesses": weaknesses, "recommendations": recommendations}
