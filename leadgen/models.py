"""
Pydantic models for pipeline entities and AI/provider responses.

Python attributes are snake_case; every model also accepts the camelCase
aliases used in stored tenant JSON and in model responses (``techStack``,
``maxCompanies`` ...). Score fields are clamped to 0..100 instead of failing
validation so partial LLM output still parses.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


def clamp_score(value: Any, default: int = 0) -> int:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return int(max(0, min(100, round(v))))


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return []


# ---------------------------------------------------------------------------
# Targeting profile (tenant ICP configuration)
# ---------------------------------------------------------------------------


class TargetingLimits(_Model):
    max_companies: int = 100
    max_contacts_per_company: int = 5


class TargetingProfile(_Model):
    industries: List[str] = Field(default_factory=list)
    company_sizes: List[str] = Field(default_factory=list)
    geos: List[str] = Field(default_factory=list)
    tech_stack: List[str] = Field(default_factory=list)
    titles: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    exclude_domains: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    limits: TargetingLimits = Field(default_factory=TargetingLimits)

    @field_validator(
        "industries", "company_sizes", "geos", "tech_stack", "titles", "languages", "exclude_domains",
        mode="before",
    )
    @classmethod
    def _lists(cls, v):
        return _str_list(v)

    @field_validator("limits", mode="before")
    @classmethod
    def _limits(cls, v):
        return v or {}


class ParsedTargetingProfile(_Model):
    """Targeting profile expanded from a free-text prompt; arrays are never empty (tech_stack may be)."""

    industries: List[str] = Field(default_factory=lambda: ["General Business"])
    company_sizes: List[str] = Field(default_factory=lambda: ["10-50", "50-200"])
    geos: List[str] = Field(default_factory=lambda: ["United States"])
    tech_stack: List[str] = Field(default_factory=list)
    titles: List[str] = Field(default_factory=lambda: ["CEO", "Founder", "Owner"])
    languages: List[str] = Field(default_factory=lambda: ["English"])
    notes: str = ""

    @field_validator("industries", "company_sizes", "geos", "tech_stack", "titles", "languages", mode="before")
    @classmethod
    def _lists(cls, v, info: ValidationInfo):
        values = _str_list(v)
        if not values and info.field_name != "tech_stack":
            return cls.model_fields[info.field_name].default_factory()
        return values

    @field_validator("notes", mode="before")
    @classmethod
    def _notes(cls, v):
        return "" if v is None else str(v).strip()

    def to_targeting_profile(self, **limits: int) -> TargetingProfile:
        data = self.model_dump()
        if limits:
            data["limits"] = limits
        return TargetingProfile.model_validate(data)


# ---------------------------------------------------------------------------
# Provider value types
# ---------------------------------------------------------------------------


class SearchResult(_Model):
    title: str = ""
    url: str
    snippet: Optional[str] = None
    domain: str


class SocialLinks(_Model):
    linkedin: Optional[str] = None
    twitter: Optional[str] = None
    facebook: Optional[str] = None
    instagram: Optional[str] = None


class PageExtraction(_Model):
    url: Optional[str] = None
    title: Optional[str] = None
    meta_description: Optional[str] = None
    og_description: Optional[str] = None
    company_name_guess: Optional[str] = None
    description_guess: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    emails: List[str] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)
    tech_stack: List[str] = Field(default_factory=list)
    social_links: SocialLinks = Field(default_factory=SocialLinks)
    text: Optional[str] = Field(default=None, exclude=True)
    links: List[str] = Field(default_factory=list, exclude=True)
    pages_visited: List[str] = Field(default_factory=list)
    page_errors: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.error


# ---------------------------------------------------------------------------
# AI response types
# ---------------------------------------------------------------------------


class CompanyAnalysis(_Model):
    industry: Optional[str] = None
    company_type: Optional[str] = None
    tech_stack: List[str] = Field(default_factory=list)
    business_model: Optional[str] = None
    target_market: Optional[str] = None
    confidence: int = 0

    @field_validator("tech_stack", mode="before")
    @classmethod
    def _tech(cls, v):
        return _str_list(v)[:5]

    @field_validator("confidence", mode="before")
    @classmethod
    def _conf(cls, v):
        return clamp_score(v, default=50)


class CompanySummary(_Model):
    company_name: str
    description: str
    industry: str


class FitScore(_Model):
    score: int = 50
    reasoning: str = "Analysis unavailable"
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, v):
        return clamp_score(v, default=50)

    @field_validator("recommendations", mode="before")
    @classmethod
    def _recs(cls, v):
        return _str_list(v)[:3]


class ExtractedContact(_Model):
    name: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin: Optional[str] = None
    confidence: int = 0

    @field_validator("confidence", mode="before")
    @classmethod
    def _conf(cls, v):
        return clamp_score(v)


class DuplicateVerdict(_Model):
    are_same: bool = False
    confidence: int = 0
    reasoning: str = "Analysis unavailable"

    @field_validator("confidence", mode="before")
    @classmethod
    def _conf(cls, v):
        return clamp_score(v)


class OutreachDraft(_Model):
    subject: str
    body: str = ""


# ---------------------------------------------------------------------------
# Persisted entities
# ---------------------------------------------------------------------------


class ProvenanceEntry(_Model):
    source: str
    job_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)


class GlobalCompany(_Model):
    id: str = Field(default_factory=new_id)
    domain: str
    dedupe_key: str
    company_name: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    tech_stack: List[str] = Field(default_factory=list)
    homepage_url: Optional[str] = None
    first_seen: datetime = Field(default_factory=utcnow)
    last_seen: datetime = Field(default_factory=utcnow)
    status: str = "ACTIVE"
    provenance: List[ProvenanceEntry] = Field(default_factory=list)


class LeadCandidate(_Model):
    id: str = Field(default_factory=new_id)
    pool_id: str
    domain: str
    dedupe_key: str
    company_name: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    tech_stack: List[str] = Field(default_factory=list)
    homepage_url: Optional[str] = None
    score: int = 50
    status: str = "NEW"
    provenance: List[ProvenanceEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("score", mode="before")
    @classmethod
    def _score(cls, v):
        return clamp_score(v)


class ContactCandidate(_Model):
    id: str = Field(default_factory=new_id)
    lead_candidate_id: str
    full_name: str = "Direct"
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    dedupe_key: Optional[str] = None
    confidence: int = 0
    status: str = "NEW"
    provenance: List[ProvenanceEntry] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _conf(cls, v):
        return clamp_score(v)


class JobProviders(_Model):
    ai_queries: bool = True
    ai_analysis: bool = True
    serp: bool = True
    crawler: bool = True
    agentic_ai: bool = Field(default=False, alias="agenticAI")


LogLevel = Literal["INFO", "WARN", "ERROR"]


class JobLogEntry(_Model):
    ts: datetime = Field(default_factory=utcnow)
    level: LogLevel = "INFO"
    msg: str


class LeadGenJob(_Model):
    id: str = Field(default_factory=new_id)
    pool_id: str
    user_id: Optional[str] = None
    status: str = "QUEUED"
    providers: JobProviders = Field(default_factory=JobProviders)
    query_templates: List[str] = Field(default_factory=list)
    counters: Dict[str, int] = Field(default_factory=dict)
    logs: List[JobLogEntry] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @field_validator("providers", mode="before")
    @classmethod
    def _providers(cls, v):
        return v or {}

    @field_validator("query_templates", mode="before")
    @classmethod
    def _templates(cls, v):
        # Stored as either a bare list or {"base": [...]}
        if isinstance(v, dict):
            v = v.get("base")
        return _str_list(v)


SourceEventType = Literal["serp", "google_search"]


class LeadSourceEvent(_Model):
    id: str = Field(default_factory=new_id)
    job_id: str
    type: SourceEventType = "serp"
    query: str
    url: Optional[str] = None
    fetched_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)
