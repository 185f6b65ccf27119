"""In-process repositories for tests and ``--dry-run`` jobs."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from leadgen.models import (
    ContactCandidate,
    GlobalCompany,
    JobLogEntry,
    LeadCandidate,
    LeadGenJob,
    LeadSourceEvent,
    ProvenanceEntry,
    TargetingProfile,
    utcnow,
)
from leadgen.normalize import generate_company_dedupe_key
from leadgen.repositories.base import (
    CandidateRepository,
    CompanyRepository,
    ContactRepository,
    JobRepository,
    Repositories,
)


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


class MemoryCompanyRepository(CompanyRepository):
    def __init__(self):
        self.rows: Dict[str, GlobalCompany] = {}  # dedupe_key -> row

    async def get_by_domain(self, domain: str) -> Optional[GlobalCompany]:
        return _copy(self.rows.get(generate_company_dedupe_key(domain)))

    async def record_sighting(self, domain: str, provenance: ProvenanceEntry, **defaults: Any) -> GlobalCompany:
        key = generate_company_dedupe_key(domain)
        row = self.rows.get(key)
        if row is None:
            row = GlobalCompany(domain=domain, dedupe_key=key, provenance=[provenance],
                                **{k: v for k, v in defaults.items() if v is not None})
            self.rows[key] = row
            return _copy(row)
        for k, v in defaults.items():
            if v is not None and _is_empty(getattr(row, k)):
                setattr(row, k, v)
        row.last_seen = utcnow()
        row.status = "ACTIVE"
        row.provenance.append(provenance)
        return _copy(row)

    async def apply_enrichment(self, domain: str, provenance: ProvenanceEntry, **fields: Any) -> GlobalCompany:
        key = generate_company_dedupe_key(domain)
        row = self.rows.get(key)
        if row is None:
            return await self.record_sighting(domain, provenance, **fields)
        for k, v in fields.items():
            if v is not None and not (k == "tech_stack" and not v):
                setattr(row, k, v)
        row.last_seen = utcnow()
        row.provenance.append(provenance)
        return _copy(row)


class MemoryCandidateRepository(CandidateRepository):
    def __init__(self):
        self.rows: Dict[str, LeadCandidate] = {}

    def _find(self, pool_id: str, domain: str) -> Optional[LeadCandidate]:
        for row in self.rows.values():
            if row.pool_id == pool_id and row.domain == domain:
                return row
        return None

    async def get(self, pool_id: str, domain: str) -> Optional[LeadCandidate]:
        return _copy(self._find(pool_id, domain))

    async def get_by_id(self, candidate_id: str) -> Optional[LeadCandidate]:
        return _copy(self.rows.get(candidate_id))

    async def create_if_absent(self, candidate: LeadCandidate) -> tuple[LeadCandidate, bool]:
        existing = self._find(candidate.pool_id, candidate.domain)
        if existing is not None:
            return _copy(existing), False
        self.rows[candidate.id] = _copy(candidate)
        return _copy(candidate), True

    async def update(self, candidate_id: str, *, provenance: Optional[ProvenanceEntry] = None,
                     **fields: Any) -> Optional[LeadCandidate]:
        row = self.rows.get(candidate_id)
        if row is None:
            return None
        for k, v in fields.items():
            setattr(row, k, v)
        if provenance is not None:
            row.provenance.append(provenance)
        row.updated_at = utcnow()
        return _copy(row)

    async def list_needing_enrichment(self, pool_id: str, limit: int) -> List[LeadCandidate]:
        out = [r for r in self.rows.values()
               if r.pool_id == pool_id and (r.description is None or r.industry is None)]
        out.sort(key=lambda r: r.created_at)
        return [_copy(r) for r in out[:limit]]

    async def list_for_pool(self, pool_id: str) -> List[LeadCandidate]:
        return [_copy(r) for r in self.rows.values() if r.pool_id == pool_id]


class MemoryContactRepository(ContactRepository):
    def __init__(self):
        self.rows: Dict[str, ContactCandidate] = {}

    async def find(self, lead_candidate_id: str, dedupe_key: Optional[str]) -> Optional[ContactCandidate]:
        if not dedupe_key:
            return None
        for row in self.rows.values():
            if row.lead_candidate_id == lead_candidate_id and row.dedupe_key == dedupe_key:
                return _copy(row)
        return None

    async def create(self, contact: ContactCandidate) -> ContactCandidate:
        self.rows[contact.id] = _copy(contact)
        return _copy(contact)

    async def update(self, contact_id: str, *, provenance: Optional[ProvenanceEntry] = None,
                     **fields: Any) -> Optional[ContactCandidate]:
        row = self.rows.get(contact_id)
        if row is None:
            return None
        for k, v in fields.items():
            setattr(row, k, v)
        if provenance is not None:
            row.provenance.append(provenance)
        return _copy(row)

    async def list_for_candidate(self, lead_candidate_id: str) -> List[ContactCandidate]:
        return [_copy(r) for r in self.rows.values() if r.lead_candidate_id == lead_candidate_id]


class MemoryJobRepository(JobRepository):
    def __init__(self):
        self.jobs: Dict[str, LeadGenJob] = {}
        self.pools: Dict[str, TargetingProfile] = {}
        self.events: List[LeadSourceEvent] = []

    def add_pool(self, pool_id: str, profile: TargetingProfile | dict) -> None:
        if isinstance(profile, dict):
            profile = TargetingProfile.model_validate(profile)
        self.pools[pool_id] = profile

    def add_job(self, job: LeadGenJob) -> LeadGenJob:
        self.jobs[job.id] = job
        return job

    async def get(self, job_id: str) -> Optional[LeadGenJob]:
        return _copy(self.jobs.get(job_id))

    async def get_targeting_profile(self, pool_id: str) -> TargetingProfile:
        return _copy(self.pools.get(pool_id)) or TargetingProfile()

    async def append_logs(self, job_id: str, entries: Sequence[JobLogEntry]) -> None:
        job = self.jobs.get(job_id)
        if job is not None:
            job.logs.extend(_copy(e) for e in entries)

    async def add_source_event(self, event: LeadSourceEvent) -> LeadSourceEvent:
        self.events.append(_copy(event))
        return event

    async def list_source_events(self, job_id: str) -> List[LeadSourceEvent]:
        return [_copy(e) for e in self.events if e.job_id == job_id]

    async def update_status(self, job_id: str, status: str, *, counters: Optional[dict] = None,
                            started: bool = False, finished: bool = False) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            return
        job.status = status
        if counters is not None:
            job.counters = {**job.counters, **counters}
        if started:
            job.started_at = utcnow()
        if finished:
            job.finished_at = utcnow()


def build_memory_repositories() -> Repositories:
    return Repositories(
        companies=MemoryCompanyRepository(),
        candidates=MemoryCandidateRepository(),
        contacts=MemoryContactRepository(),
        jobs=MemoryJobRepository(),
    )
