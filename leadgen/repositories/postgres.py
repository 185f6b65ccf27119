"""
asyncpg-backed repositories over the tables in ``migrations/001_leadgen_core.sql``.

JSONB columns are written as ``json.dumps(...)::jsonb`` and decoded on read.
Provenance columns are only ever extended with ``||``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from leadgen.database import get_pg_pool
from leadgen.models import (
    ContactCandidate,
    GlobalCompany,
    JobLogEntry,
    LeadCandidate,
    LeadGenJob,
    LeadSourceEvent,
    ProvenanceEntry,
    TargetingProfile,
    new_id,
)
from leadgen.normalize import generate_company_dedupe_key
from leadgen.repositories.base import (
    CandidateRepository,
    CompanyRepository,
    ContactRepository,
    JobRepository,
    Repositories,
)

logger = logging.getLogger(__name__)

_JSON_COLUMNS = {"tech_stack", "provenance", "providers", "query_templates", "counters", "logs", "metadata", "icp_config"}

_CANDIDATE_COLUMNS = {"company_name", "description", "industry", "tech_stack", "homepage_url", "score", "status"}
_CONTACT_COLUMNS = {"full_name", "title", "email", "phone", "linkedin_url", "confidence", "status"}


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _prov(entry: ProvenanceEntry) -> str:
    return _dumps([entry.model_dump(mode="json")])


def _row(record) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in dict(record).items():
        if key in _JSON_COLUMNS and isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                value = None
        out[key] = value
    return out


def _set_clause(fields: Dict[str, Any], allowed: set, start: int) -> tuple[List[str], List[Any]]:
    parts: List[str] = []
    args: List[Any] = []
    for key, value in fields.items():
        if key not in allowed:
            raise ValueError(f"column not updatable: {key}")
        idx = start + len(args)
        if key in _JSON_COLUMNS:
            parts.append(f"{key} = ${idx}::jsonb")
            args.append(_dumps(value))
        else:
            parts.append(f"{key} = ${idx}")
            args.append(value)
    return parts, args


class _PgRepository:
    def __init__(self, pool=None):
        self._pool = pool

    async def _get_pool(self):
        if self._pool is None:
            self._pool = await get_pg_pool()
        return self._pool


class PgCompanyRepository(_PgRepository, CompanyRepository):
    async def get_by_domain(self, domain: str) -> Optional[GlobalCompany]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow(
                "SELECT * FROM global_companies WHERE dedupe_key = $1",
                generate_company_dedupe_key(domain),
            )
        return GlobalCompany.model_validate(_row(rec)) if rec else None

    async def _upsert(self, domain: str, provenance: ProvenanceEntry, fields: Dict[str, Any], overwrite: bool) -> GlobalCompany:
        if overwrite:
            on_conflict = """
                company_name = COALESCE(EXCLUDED.company_name, global_companies.company_name),
                homepage_url = COALESCE(EXCLUDED.homepage_url, global_companies.homepage_url),
                description = COALESCE(EXCLUDED.description, global_companies.description),
                industry = COALESCE(EXCLUDED.industry, global_companies.industry),
                tech_stack = CASE WHEN jsonb_array_length(EXCLUDED.tech_stack) > 0
                                  THEN EXCLUDED.tech_stack ELSE global_companies.tech_stack END
            """
        else:
            on_conflict = """
                company_name = COALESCE(global_companies.company_name, EXCLUDED.company_name),
                homepage_url = COALESCE(global_companies.homepage_url, EXCLUDED.homepage_url),
                description = COALESCE(global_companies.description, EXCLUDED.description),
                industry = COALESCE(global_companies.industry, EXCLUDED.industry),
                tech_stack = CASE WHEN jsonb_array_length(global_companies.tech_stack) = 0
                                  THEN EXCLUDED.tech_stack ELSE global_companies.tech_stack END
            """
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow(
                f"""
                INSERT INTO global_companies
                  (id, domain, dedupe_key, company_name, homepage_url, description, industry,
                   tech_stack, first_seen, last_seen, status, provenance)
                VALUES ($1, $2, $3, $4, $5, $6, $7, COALESCE($8::jsonb, '[]'::jsonb), now(), now(), 'ACTIVE', $9::jsonb)
                ON CONFLICT (dedupe_key) DO UPDATE SET
                  {on_conflict},
                  last_seen = now(),
                  status = 'ACTIVE',
                  provenance = global_companies.provenance || EXCLUDED.provenance
                RETURNING *
                """,
                new_id(),
                domain,
                generate_company_dedupe_key(domain),
                fields.get("company_name"),
                fields.get("homepage_url"),
                fields.get("description"),
                fields.get("industry"),
                _dumps(fields["tech_stack"]) if fields.get("tech_stack") is not None else None,
                _prov(provenance),
            )
        return GlobalCompany.model_validate(_row(rec))

    async def record_sighting(self, domain: str, provenance: ProvenanceEntry, **defaults: Any) -> GlobalCompany:
        return await self._upsert(domain, provenance, defaults, overwrite=False)

    async def apply_enrichment(self, domain: str, provenance: ProvenanceEntry, **fields: Any) -> GlobalCompany:
        return await self._upsert(domain, provenance, fields, overwrite=True)


class PgCandidateRepository(_PgRepository, CandidateRepository):
    async def get(self, pool_id: str, domain: str) -> Optional[LeadCandidate]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow(
                "SELECT * FROM lead_candidates WHERE pool_id = $1 AND domain = $2", pool_id, domain
            )
        return LeadCandidate.model_validate(_row(rec)) if rec else None

    async def get_by_id(self, candidate_id: str) -> Optional[LeadCandidate]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow("SELECT * FROM lead_candidates WHERE id = $1", candidate_id)
        return LeadCandidate.model_validate(_row(rec)) if rec else None

    async def create_if_absent(self, candidate: LeadCandidate) -> tuple[LeadCandidate, bool]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow(
                """
                INSERT INTO lead_candidates
                  (id, pool_id, domain, dedupe_key, company_name, description, industry, tech_stack,
                   homepage_url, score, status, provenance, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9, $10, $11, $12::jsonb, now(), now())
                ON CONFLICT (pool_id, domain) DO NOTHING
                RETURNING *
                """,
                candidate.id,
                candidate.pool_id,
                candidate.domain,
                candidate.dedupe_key,
                candidate.company_name,
                candidate.description,
                candidate.industry,
                _dumps(candidate.tech_stack),
                candidate.homepage_url,
                candidate.score,
                candidate.status,
                _dumps([p.model_dump(mode="json") for p in candidate.provenance]),
            )
            if rec is not None:
                return LeadCandidate.model_validate(_row(rec)), True
            rec = await conn.fetchrow(
                "SELECT * FROM lead_candidates WHERE pool_id = $1 AND domain = $2",
                candidate.pool_id,
                candidate.domain,
            )
        return LeadCandidate.model_validate(_row(rec)), False

    async def update(self, candidate_id: str, *, provenance: Optional[ProvenanceEntry] = None,
                     **fields: Any) -> Optional[LeadCandidate]:
        parts, args = _set_clause(fields, _CANDIDATE_COLUMNS, start=2)
        if provenance is not None:
            parts.append(f"provenance = provenance || ${2 + len(args)}::jsonb")
            args.append(_prov(provenance))
        parts.append("updated_at = now()")
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow(
                f"UPDATE lead_candidates SET {', '.join(parts)} WHERE id = $1 RETURNING *",
                candidate_id,
                *args,
            )
        return LeadCandidate.model_validate(_row(rec)) if rec else None

    async def list_needing_enrichment(self, pool_id: str, limit: int) -> List[LeadCandidate]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM lead_candidates
                WHERE pool_id = $1 AND (description IS NULL OR industry IS NULL)
                ORDER BY created_at ASC
                LIMIT $2
                """,
                pool_id,
                limit,
            )
        return [LeadCandidate.model_validate(_row(r)) for r in rows]

    async def list_for_pool(self, pool_id: str) -> List[LeadCandidate]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM lead_candidates WHERE pool_id = $1 ORDER BY created_at ASC", pool_id
            )
        return [LeadCandidate.model_validate(_row(r)) for r in rows]


class PgContactRepository(_PgRepository, ContactRepository):
    async def find(self, lead_candidate_id: str, dedupe_key: Optional[str]) -> Optional[ContactCandidate]:
        if not dedupe_key:
            return None
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow(
                "SELECT * FROM contact_candidates WHERE lead_candidate_id = $1 AND dedupe_key = $2",
                lead_candidate_id,
                dedupe_key,
            )
        return ContactCandidate.model_validate(_row(rec)) if rec else None

    async def create(self, contact: ContactCandidate) -> ContactCandidate:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow(
                """
                INSERT INTO contact_candidates
                  (id, lead_candidate_id, full_name, title, email, phone, linkedin_url,
                   dedupe_key, confidence, status, provenance, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb, now(), now())
                RETURNING *
                """,
                contact.id,
                contact.lead_candidate_id,
                contact.full_name,
                contact.title,
                contact.email,
                contact.phone,
                contact.linkedin_url,
                contact.dedupe_key,
                contact.confidence,
                contact.status,
                _dumps([p.model_dump(mode="json") for p in contact.provenance]),
            )
        return ContactCandidate.model_validate(_row(rec))

    async def update(self, contact_id: str, *, provenance: Optional[ProvenanceEntry] = None,
                     **fields: Any) -> Optional[ContactCandidate]:
        parts, args = _set_clause(fields, _CONTACT_COLUMNS, start=2)
        if provenance is not None:
            parts.append(f"provenance = provenance || ${2 + len(args)}::jsonb")
            args.append(_prov(provenance))
        parts.append("updated_at = now()")
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow(
                f"UPDATE contact_candidates SET {', '.join(parts)} WHERE id = $1 RETURNING *",
                contact_id,
                *args,
            )
        return ContactCandidate.model_validate(_row(rec)) if rec else None

    async def list_for_candidate(self, lead_candidate_id: str) -> List[ContactCandidate]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM contact_candidates WHERE lead_candidate_id = $1 ORDER BY created_at ASC",
                lead_candidate_id,
            )
        return [ContactCandidate.model_validate(_row(r)) for r in rows]


class PgJobRepository(_PgRepository, JobRepository):
    async def get(self, job_id: str) -> Optional[LeadGenJob]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rec = await conn.fetchrow("SELECT * FROM lead_gen_jobs WHERE id = $1", job_id)
        if not rec:
            return None
        data = _row(rec)
        for key in ("logs", "counters"):
            if data.get(key) is None:
                data.pop(key, None)
        return LeadGenJob.model_validate(data)

    async def get_targeting_profile(self, pool_id: str) -> TargetingProfile:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            raw = await conn.fetchval("SELECT icp_config FROM lead_pools WHERE id = $1", pool_id)
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.warning("lead pool %s has unparseable icp_config", pool_id)
                raw = None
        return TargetingProfile.model_validate(raw or {})

    async def append_logs(self, job_id: str, entries: Sequence[JobLogEntry]) -> None:
        if not entries:
            return
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                "UPDATE lead_gen_jobs SET logs = COALESCE(logs, '[]'::jsonb) || $2::jsonb WHERE id = $1",
                job_id,
                _dumps([e.model_dump(mode="json") for e in entries]),
            )

    async def add_source_event(self, event: LeadSourceEvent) -> LeadSourceEvent:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO lead_source_events (id, job_id, type, query, url, fetched_at, metadata)
                VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
                """,
                event.id,
                event.job_id,
                event.type,
                event.query,
                event.url,
                event.fetched_at,
                _dumps(event.metadata),
            )
        return event

    async def list_source_events(self, job_id: str) -> List[LeadSourceEvent]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM lead_source_events WHERE job_id = $1 ORDER BY fetched_at ASC", job_id
            )
        return [LeadSourceEvent.model_validate(_row(r)) for r in rows]

    async def update_status(self, job_id: str, status: str, *, counters: Optional[dict] = None,
                            started: bool = False, finished: bool = False) -> None:
        parts = ["status = $2"]
        args: List[Any] = [status]
        if counters is not None:
            args.append(_dumps(counters))
            parts.append(f"counters = COALESCE(counters, '{{}}'::jsonb) || ${1 + len(args)}::jsonb")
        if started:
            parts.append("started_at = now()")
        if finished:
            parts.append("finished_at = now()")
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(f"UPDATE lead_gen_jobs SET {', '.join(parts)} WHERE id = $1", job_id, *args)


def build_postgres_repositories(pool=None) -> Repositories:
    return Repositories(
        companies=PgCompanyRepository(pool),
        candidates=PgCandidateRepository(pool),
        contacts=PgContactRepository(pool),
        jobs=PgJobRepository(pool),
    )
