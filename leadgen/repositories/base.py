"""
Typed repository interfaces, one per persisted entity.

Implementations: ``leadgen.repositories.postgres`` (asyncpg) and
``leadgen.repositories.memory`` (tests and dry runs). Provenance is always
appended, never replaced.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from leadgen.models import (
    ContactCandidate,
    GlobalCompany,
    JobLogEntry,
    LeadCandidate,
    LeadGenJob,
    LeadSourceEvent,
    ProvenanceEntry,
    TargetingProfile,
)


class CompanyRepository(ABC):
    @abstractmethod
    async def get_by_domain(self, domain: str) -> Optional[GlobalCompany]:
        ...

    @abstractmethod
    async def record_sighting(self, domain: str, provenance: ProvenanceEntry, **defaults: Any) -> GlobalCompany:
        """Create the company or refresh ``last_seen``.

        ``defaults`` only fill fields that are still empty on an existing row.
        """

    @abstractmethod
    async def apply_enrichment(self, domain: str, provenance: ProvenanceEntry, **fields: Any) -> GlobalCompany:
        """Create or overwrite descriptive fields (non-None values in ``fields`` win)."""


class CandidateRepository(ABC):
    @abstractmethod
    async def get(self, pool_id: str, domain: str) -> Optional[LeadCandidate]:
        ...

    @abstractmethod
    async def get_by_id(self, candidate_id: str) -> Optional[LeadCandidate]:
        ...

    @abstractmethod
    async def create_if_absent(self, candidate: LeadCandidate) -> tuple[LeadCandidate, bool]:
        """Insert unless ``(pool_id, domain)`` exists; returns ``(row, created)``."""

    @abstractmethod
    async def update(
        self, candidate_id: str, *, provenance: Optional[ProvenanceEntry] = None, **fields: Any
    ) -> Optional[LeadCandidate]:
        ...

    @abstractmethod
    async def list_needing_enrichment(self, pool_id: str, limit: int) -> List[LeadCandidate]:
        """Candidates of the pool whose ``description`` or ``industry`` is missing."""

    @abstractmethod
    async def list_for_pool(self, pool_id: str) -> List[LeadCandidate]:
        ...


class ContactRepository(ABC):
    @abstractmethod
    async def find(self, lead_candidate_id: str, dedupe_key: Optional[str]) -> Optional[ContactCandidate]:
        ...

    @abstractmethod
    async def create(self, contact: ContactCandidate) -> ContactCandidate:
        ...

    @abstractmethod
    async def update(
        self, contact_id: str, *, provenance: Optional[ProvenanceEntry] = None, **fields: Any
    ) -> Optional[ContactCandidate]:
        ...

    @abstractmethod
    async def list_for_candidate(self, lead_candidate_id: str) -> List[ContactCandidate]:
        ...


class JobRepository(ABC):
    @abstractmethod
    async def get(self, job_id: str) -> Optional[LeadGenJob]:
        ...

    @abstractmethod
    async def get_targeting_profile(self, pool_id: str) -> TargetingProfile:
        ...

    @abstractmethod
    async def append_logs(self, job_id: str, entries: Sequence[JobLogEntry]) -> None:
        ...

    @abstractmethod
    async def add_source_event(self, event: LeadSourceEvent) -> LeadSourceEvent:
        ...

    @abstractmethod
    async def list_source_events(self, job_id: str) -> List[LeadSourceEvent]:
        ...

    @abstractmethod
    async def update_status(
        self,
        job_id: str,
        status: str,
        *,
        counters: Optional[dict] = None,
        started: bool = False,
        finished: bool = False,
    ) -> None:
        ...


@dataclass
class Repositories:
    companies: CompanyRepository
    candidates: CandidateRepository
    contacts: ContactRepository
    jobs: JobRepository
