"""
Shared persistence steps for companies, pool candidates and their contacts.

Used by the SERP pipeline, enrichment and the agentic tools so all three apply
the same sighting, merge and contact-dedupe rules.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from leadgen.contacts import sanitize_contact
from leadgen.models import ContactCandidate, LeadCandidate, ProvenanceEntry
from leadgen.normalize import (
    calculate_email_confidence,
    calculate_person_confidence,
    derive_company_name,
    generate_company_dedupe_key,
    generate_person_dedupe_key,
    normalize_domain,
)
from leadgen.repositories.base import Repositories

logger = logging.getLogger(__name__)


async def record_company_sighting(
    repos: Repositories,
    pool_id: str,
    domain: str,
    *,
    source: str,
    job_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    company_name: Optional[str] = None,
    score: int = 50,
) -> Tuple[Optional[LeadCandidate], bool]:
    """Upsert the global company and make sure the pool has a candidate for it.

    Returns ``(candidate, created)``; ``(None, False)`` when the domain does not
    normalize.
    """
    d = normalize_domain(domain)
    if not d:
        return None, False
    name = company_name or derive_company_name(d)
    homepage = f"https://{d}"
    prov = ProvenanceEntry(source=source, job_id=job_id, details=dict(details or {}))
    await repos.companies.record_sighting(d, prov, company_name=name, homepage_url=homepage)
    candidate = LeadCandidate(
        pool_id=pool_id,
        domain=d,
        dedupe_key=generate_company_dedupe_key(d),
        company_name=name,
        homepage_url=homepage,
        score=score,
        status="NEW",
        provenance=[prov],
    )
    return await repos.candidates.create_if_absent(candidate)


def _contact_confidence(c: Dict[str, Any], source: str) -> int:
    person = calculate_person_confidence(
        has_email=bool(c.get("email")),
        has_phone=bool(c.get("phone")),
        has_linkedin=bool(c.get("linkedin")),
        has_title=bool(c.get("title")),
        has_name=bool(c.get("name")),
        source=source,
    )
    if c.get("email"):
        return max(person, calculate_email_confidence(c["email"], source))
    return person


async def save_contacts(
    repos: Repositories,
    candidate: LeadCandidate,
    raw_contacts: Iterable[Dict[str, Any]],
    *,
    source: str,
    job_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> int:
    """Persist contacts that carry an email or phone; returns how many rows were created.

    Rows sharing ``(candidate, dedupe_key)`` are merged by filling empty
    fields; confidence keeps the higher value.
    """
    created = 0
    kept: List[Dict[str, Any]] = []
    for raw in raw_contacts or []:
        c = sanitize_contact(raw)
        if not c or not (c.get("email") or c.get("phone")):
            continue
        kept.append(c)
    if limit is not None:
        kept = kept[: max(0, int(limit))]

    for c in kept:
        full_name = c.get("name") or "Direct"
        key = generate_person_dedupe_key(
            email=c.get("email"),
            name=c.get("name"),
            company_domain=candidate.domain,
            title=c.get("title"),
        )
        confidence = _contact_confidence(c, source)
        prov = ProvenanceEntry(source=source, job_id=job_id, details={"emailClass": c.get("email_class")})
        try:
            existing = await repos.contacts.find(candidate.id, key)
            if existing is not None:
                fill = {}
                for field, value in (
                    ("title", c.get("title")),
                    ("email", c.get("email")),
                    ("phone", c.get("phone")),
                    ("linkedin_url", c.get("linkedin")),
                ):
                    if value and not getattr(existing, field):
                        fill[field] = value
                if existing.full_name == "Direct" and c.get("name"):
                    fill["full_name"] = c["name"]
                fill["confidence"] = max(existing.confidence, confidence)
                await repos.contacts.update(existing.id, provenance=prov, **fill)
                continue
            await repos.contacts.create(
                ContactCandidate(
                    lead_candidate_id=candidate.id,
                    full_name=full_name,
                    title=c.get("title"),
                    email=c.get("email"),
                    phone=c.get("phone"),
                    linkedin_url=c.get("linkedin"),
                    dedupe_key=key,
                    confidence=confidence,
                    provenance=[prov],
                )
            )
            created += 1
        except Exception as exc:
            logger.warning("contact save failed candidate=%s err=%s", candidate.id, exc)
    return created
