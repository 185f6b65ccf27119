"""
Agentic discovery: a tool-calling chat model drives search, page visits and
saves through a small LangGraph loop.

    agent --(tool calls)--> tools --(under caps)--> agent
      |                        |
      +--(no tool calls)--> END <--(cap reached)--+

Tools run in this process, never inside the model. ``save_company`` is the
only writer and refuses companies without a contact that has an email or a
phone.
"""

from __future__ import annotations

import json
import logging
import operator
import time
from typing import Annotated, Any, Dict, List, Optional, TypedDict

from langchain_core.messages import HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import tool
from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph
from pydantic import BaseModel, Field

from leadgen.ai import AIEnrichmentService
from leadgen.companies import save_contacts
from leadgen.contacts import sanitize_contact
from leadgen.extractor import PageExtractor
from leadgen.job_log import JobLogSink
from leadgen.llm import TRANSIENT_ERRORS, LLMUnavailable, get_chat_model
from leadgen.models import LeadCandidate, LeadSourceEvent, ProvenanceEntry, TargetingProfile
from leadgen.normalize import derive_company_name, generate_company_dedupe_key, normalize_domain, normalize_url
from leadgen.repositories.base import Repositories
from leadgen.retry import with_retry
from leadgen.search import WebSearchProvider, get_search_provider
from leadgen.settings import (
    AGENT_MAX_ITERATIONS,
    AGENT_MAX_RUNTIME_S,
    AGENT_SEARCH_MAX_RESULTS,
    AGENT_STALL_THRESHOLD,
)

logger = logging.getLogger(__name__)

STALL_NUDGE = (
    "No progress detected. Refine search now: diversify queries (synonyms, broader/narrower), "
    "broaden geos, include directories (LinkedIn, Crunchbase, ProductHunt), and prioritize "
    "/about, /team, /contact pages before continuing."
)


# ---------------------------------------------------------------------------
# Tool argument schemas
# ---------------------------------------------------------------------------


class SearchCompaniesArgs(BaseModel):
    query: str = Field(description="Search query, e.g. 'SaaS companies in San Francisco'")
    count: int = Field(default=20, description="Number of results to return (1-50)")


class VisitWebsiteArgs(BaseModel):
    url: str = Field(description="The URL to visit")


class AnalyzeCompanyFitArgs(BaseModel):
    domain: str = Field(description="Company domain")
    company_data: Dict[str, Any] = Field(default_factory=dict, description="Information gathered about the company")


class ContactArg(BaseModel):
    name: str = Field(default="", description="Contact name, empty if unknown")
    title: str = Field(default="", description="Job title, 'Contact' if unknown")
    email: str = Field(default="", description="Email address")
    phone: str = Field(default="", description="Phone number, empty if unknown")
    linkedin: str = Field(default="", description="LinkedIn profile URL")


class SaveCompanyArgs(BaseModel):
    domain: str = Field(description="Company domain")
    company_name: str = Field(default="", description="Company name")
    description: str = Field(default="", description="Company description")
    industry: str = Field(default="", description="Primary industry")
    tech_stack: List[str] = Field(default_factory=list, description="Detected technologies")
    contacts: List[ContactArg] = Field(default_factory=list, description="Contacts with at least one email or phone")


class RefineSearchStrategyArgs(BaseModel):
    current_results: int = Field(description="Number of qualified companies found so far")
    target_results: int = Field(description="Target number of companies")
    reasoning: str = Field(default="", description="Why the strategy should or should not change")


class AgentState(TypedDict):
    messages: Annotated[list, operator.add]
    iterations: int
    stall: int
    failed: bool


def _as_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    return dict(value or {})


def company_quality_score(contacts: List[Dict[str, Any]], tech_stack: List[str], description: str) -> int:
    """50 base plus points for reachable contacts and descriptive fields, capped at 95."""
    with_channel = [c for c in contacts if c.get("email") or c.get("phone")]
    emails = [c for c in contacts if c.get("email")]
    score = 50 + min(10 * len(with_channel), 30)
    if len(emails) >= 2:
        score += 10
    if tech_stack:
        score += 5
    if description and len(description) > 50:
        score += 5
    return min(score, 95)


def _join(values: List[str]) -> str:
    return ", ".join(values) if values else "Any"


def build_system_prompt(profile: TargetingProfile, max_companies: int) -> str:
    notes = f"\n- Additional notes: {profile.notes}" if profile.notes else ""
    return f"""You are a B2B lead generation agent. Find and qualify {max_companies} companies that fit the
ideal customer profile below, each with real contact information.

ICP:
- Industries: {_join(profile.industries)}
- Geographies: {_join(profile.geos)}
- Tech stack: {_join(profile.tech_stack)}
- Target titles: {_join(profile.titles)}{notes}

Rules:
1. Never call save_company without at least one contact that has an email or a phone number.
2. Save every email you find as its own contact; leave the name empty when unknown.
3. Check /contact, /about and /team pages, not only the homepage.
4. Prefer real company websites over directories and marketplaces.

Tools:
- search_companies: web search for candidate companies
- visit_website: extract details and contacts from a site (homepage plus about/team/contact pages)
- analyze_company_fit: score a company against the ICP
- save_company: store a qualified company with its contacts
- refine_search_strategy: record your reasoning when results are thin

Stop calling tools once {max_companies} companies are saved."""


def build_kickoff_message(max_companies: int) -> str:
    return f"""Begin lead generation. Find {max_companies} companies matching the ICP.

Workflow:
1. search_companies to find relevant companies
2. visit_website on the promising URLs
3. save_company as soon as a site yields at least one email or phone
4. When company details are thin, save anyway; missing fields are filled in for you
5. Repeat until {max_companies} companies are saved

Start by searching for companies."""


class AgenticScraper:
    def __init__(
        self,
        job_id: str,
        pool_id: str,
        profile: TargetingProfile,
        *,
        repos: Repositories,
        llm: Any,
        search: WebSearchProvider,
        extractor: PageExtractor,
        ai: AIEnrichmentService,
        log: JobLogSink,
        max_iterations: int = AGENT_MAX_ITERATIONS,
        max_runtime_s: float = AGENT_MAX_RUNTIME_S,
        stall_threshold: int = AGENT_STALL_THRESHOLD,
        clock=time.monotonic,
    ):
        self.job_id = job_id
        self.pool_id = pool_id
        self.profile = profile
        self.repos = repos
        self.search = search
        self.extractor = extractor
        self.ai = ai
        self.log = log
        self.max_companies = max(1, profile.limits.max_companies)
        self.max_iterations = max(1, int(max_iterations))
        self.max_runtime_s = float(max_runtime_s)
        self.stall_threshold = max(1, int(stall_threshold))
        self._clock = clock
        self._started = clock()
        self._saved_domains: set[str] = set()
        self.contacts_saved = 0
        self._exclude = [d for d in (normalize_domain(x) or (x or "").lower() for x in profile.exclude_domains) if d]

        self.tools = self._build_tools()
        self._tools_by_name = {t.name: t for t in self.tools}
        self._model = llm.bind_tools(self.tools)

    @property
    def companies_saved(self) -> int:
        return len(self._saved_domains)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _build_tools(self):
        @tool("search_companies", args_schema=SearchCompaniesArgs)
        async def search_companies(query: str, count: int = 20) -> Dict[str, Any]:
            """Search the web for companies. Returns company websites matching the query."""
            return await self.search_companies(query, count)

        @tool("visit_website", args_schema=VisitWebsiteArgs)
        async def visit_website(url: str) -> Dict[str, Any]:
            """Visit a company website plus its about, team and contact pages; return details and contacts."""
            return await self.visit_website(url)

        @tool("analyze_company_fit", args_schema=AnalyzeCompanyFitArgs)
        async def analyze_company_fit(domain: str, company_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
            """Score how well a company matches the ICP."""
            return await self.analyze_company_fit(domain, company_data)

        @tool("save_company", args_schema=SaveCompanyArgs)
        async def save_company(
            domain: str,
            company_name: str = "",
            description: str = "",
            industry: str = "",
            tech_stack: Optional[List[str]] = None,
            contacts: Optional[List[Any]] = None,
        ) -> Dict[str, Any]:
            """Save a qualified company and its contacts to the lead pool."""
            return await self.save_company(domain, company_name, description, industry, tech_stack, contacts)

        @tool("refine_search_strategy", args_schema=RefineSearchStrategyArgs)
        async def refine_search_strategy(current_results: int, target_results: int, reasoning: str = "") -> Dict[str, Any]:
            """Record whether the search strategy should change given results so far."""
            return await self.refine_search_strategy(current_results, target_results, reasoning)

        return [search_companies, visit_website, analyze_company_fit, save_company, refine_search_strategy]

    async def search_companies(self, query: str, count: int = 20) -> Dict[str, Any]:
        limit = max(1, min(int(count or 20), AGENT_SEARCH_MAX_RESULTS))
        try:
            hits = await self.search.search(query, limit)
        except Exception as exc:
            self.log.warn(f'search_companies("{query}") failed: {exc}')
            hits = []
        results = []
        for h in hits:
            d = normalize_domain(h.domain)
            if not d or any(x in d for x in self._exclude):
                continue
            results.append({"name": h.title, "url": h.url, "snippet": h.snippet, "domain": d})
        top = ", ".join(r["domain"] for r in results[:3]) or "none"
        self.log.info(f'search_companies("{query}") -> {len(results)} result(s). Top: {top}')
        try:
            await self.repos.jobs.add_source_event(
                LeadSourceEvent(
                    job_id=self.job_id,
                    type=getattr(self.search, "event_type", "serp"),
                    query=query,
                    url=results[0]["url"] if results else None,
                    metadata={
                        "note": "agent search",
                        "domains": [r["domain"] for r in results[:20]],
                        "totalResults": len(hits),
                    },
                )
            )
        except Exception as exc:
            logger.warning("source event write failed job=%s err=%s", self.job_id, exc)
        return {"success": True, "results": results, "count": len(results)}

    async def visit_website(self, url: str) -> Dict[str, Any]:
        target = normalize_url(url) or url
        extraction = await self.extractor.crawl(target, profile=self.profile)
        data = extraction.model_dump(by_alias=True)
        contacts = []
        if not extraction.error and extraction.text:
            domain = normalize_domain(target) or ""
            found = await self.ai.extract_contacts(extraction.text, domain)
            contacts = [c.model_dump(exclude_none=True) for c in found]
        data["contacts"] = contacts
        if extraction.error:
            self.log.warn(f"visit_website({target}) failed: {extraction.error}")
        return {"success": not extraction.error, "data": data, "url": target}

    async def analyze_company_fit(self, domain: str, company_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        fit = await self.ai.score_fit({"domain": domain, **_as_dict(company_data)}, self.profile)
        return {"success": True, "domain": domain, **fit.model_dump(by_alias=True)}

    async def save_company(
        self,
        domain: str,
        company_name: str = "",
        description: str = "",
        industry: str = "",
        tech_stack: Optional[List[str]] = None,
        contacts: Optional[List[Any]] = None,
    ) -> Dict[str, Any]:
        d = normalize_domain(domain)
        if not d:
            return {"success": False, "error": "Invalid domain"}
        if d not in self._saved_domains and self.companies_saved >= self.max_companies:
            return {"success": False, "error": f"Target of {self.max_companies} companies already reached"}
        raw_contacts = [_as_dict(c) for c in contacts or []]
        if not raw_contacts:
            return {"success": False, "error": "Cannot save company without contacts"}
        usable = []
        for raw in raw_contacts:
            c = sanitize_contact(raw)
            if c and (c.get("email") or c.get("phone")):
                usable.append(c)
        if not usable:
            return {"success": False, "error": "Cannot save company without at least one contact email or phone"}

        tech = list(dict.fromkeys(t.strip() for t in (tech_stack or []) if t and t.strip()))
        company_name = (company_name or "").strip()
        description = (description or "").strip()
        industry = (industry or "").strip()
        if not (company_name and description and industry):
            summary = await self.ai.summarize_company(
                d,
                {
                    "title": company_name,
                    "description": description,
                    "emails": [c["email"] for c in usable if c.get("email")],
                    "phones": [c["phone"] for c in usable if c.get("phone")],
                    "tech_stack": tech,
                },
                self.profile,
            )
            company_name = company_name or summary.company_name
            description = description or summary.description
            industry = industry or summary.industry

        score = company_quality_score(usable, tech, description)
        prov = ProvenanceEntry(
            source="agentic_ai",
            job_id=self.job_id,
            details={"qualityScore": score, "contacts": len(usable)},
        )
        try:
            await self.repos.companies.apply_enrichment(
                d,
                prov,
                company_name=company_name,
                description=description,
                industry=industry,
                tech_stack=tech,
                homepage_url=f"https://{d}",
            )
            existing = await self.repos.candidates.get(self.pool_id, d)
            if existing is not None:
                longer = description if len(description) > len(existing.description or "") else existing.description
                # a SERP sighting only carries the name guessed from the domain
                placeholder = not existing.company_name or existing.company_name == derive_company_name(d)
                candidate = await self.repos.candidates.update(
                    existing.id,
                    provenance=prov,
                    company_name=company_name if placeholder and company_name else existing.company_name,
                    industry=existing.industry or industry,
                    description=longer,
                    tech_stack=list(dict.fromkeys([*existing.tech_stack, *tech])),
                    score=max(existing.score or 0, score),
                )
            else:
                candidate, _ = await self.repos.candidates.create_if_absent(
                    LeadCandidate(
                        pool_id=self.pool_id,
                        domain=d,
                        dedupe_key=generate_company_dedupe_key(d),
                        company_name=company_name,
                        description=description,
                        industry=industry,
                        tech_stack=tech,
                        homepage_url=f"https://{d}",
                        score=score,
                        provenance=[prov],
                    )
                )
            created = await save_contacts(
                self.repos,
                candidate,
                raw_contacts,
                source="agentic_ai",
                job_id=self.job_id,
                limit=self.profile.limits.max_contacts_per_company,
            )
        except Exception as exc:
            logger.warning("save_company failed job=%s domain=%s err=%s", self.job_id, d, exc)
            return {"success": False, "error": f"Failed to save company: {exc}"}

        self._saved_domains.add(d)
        self.contacts_saved += created
        self.log.info(f"Saved {company_name} ({d}) with {created} new contact(s)")
        return {"success": True, "candidateId": candidate.id, "contactsCreated": created}

    async def refine_search_strategy(self, current_results: int, target_results: int, reasoning: str = "") -> Dict[str, Any]:
        self.log.info(f"Strategy check ({current_results}/{target_results}): {reasoning}")
        return {"success": True, "shouldContinue": int(current_results) < int(target_results)}

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def _elapsed(self) -> float:
        return self._clock() - self._started

    def stop_reason(self, state: AgentState) -> Optional[str]:
        if state.get("failed"):
            return "error"
        if self.companies_saved >= self.max_companies:
            return "max_companies"
        if state.get("iterations", 0) >= self.max_iterations:
            return "max_iterations"
        if self._elapsed() >= self.max_runtime_s:
            return "max_runtime"
        return None

    async def agent_node(self, state: AgentState) -> Dict[str, Any]:
        messages = state["messages"]

        async def _call():
            return await self._model.ainvoke(messages)

        try:
            response = await with_retry(_call, retry_on=TRANSIENT_ERRORS)
        except Exception as exc:
            self.log.error(f"Agent error: {exc}")
            return {"failed": True, "iterations": state["iterations"] + 1}
        return {"messages": [response], "iterations": state["iterations"] + 1}

    async def _execute(self, call: Dict[str, Any]) -> Dict[str, Any]:
        name = call.get("name")
        t = self._tools_by_name.get(name)
        if t is None:
            return {"success": False, "error": f"Unknown tool: {name}"}
        try:
            return await t.ainvoke(call.get("args") or {})
        except Exception as exc:
            logger.warning("tool %s failed: %s", name, exc)
            return {"success": False, "error": str(exc)}

    async def tools_node(self, state: AgentState) -> Dict[str, Any]:
        before = (self.companies_saved, self.contacts_saved)
        last = state["messages"][-1]
        out: List[Any] = []
        for call in getattr(last, "tool_calls", None) or []:
            result = await self._execute(call)
            out.append(
                ToolMessage(
                    content=json.dumps(result, default=str),
                    tool_call_id=call.get("id") or call.get("name") or "",
                    name=call.get("name"),
                )
            )
        stall = 0 if (self.companies_saved, self.contacts_saved) != before else state["stall"] + 1
        if stall >= self.stall_threshold:
            self.log.info(f"No progress for {stall} consecutive iterations. Refining search strategy and continuing.")
            out.append(HumanMessage(content=STALL_NUDGE))
            stall = 0
        await self.log.flush_if_needed()
        return {"messages": out, "stall": stall}

    def route_after_agent(self, state: AgentState) -> str:
        if state.get("failed"):
            return "end"
        last = state["messages"][-1]
        return "tools" if getattr(last, "tool_calls", None) else "end"

    def route_after_tools(self, state: AgentState) -> str:
        return "end" if self.stop_reason(state) else "agent"

    def build_graph(self):
        graph = StateGraph(AgentState)
        graph.add_node("agent", self.agent_node)
        graph.add_node("tools", self.tools_node)
        graph.set_entry_point("agent")
        graph.add_conditional_edges("agent", self.route_after_agent, {"tools": "tools", "end": END})
        graph.add_conditional_edges("tools", self.route_after_tools, {"agent": "agent", "end": END})
        return graph.compile()

    async def run(self) -> Dict[str, Any]:
        self._started = self._clock()
        graph = self.build_graph()
        state: AgentState = {
            "messages": [
                SystemMessage(content=build_system_prompt(self.profile, self.max_companies)),
                HumanMessage(content=build_kickoff_message(self.max_companies)),
            ],
            "iterations": 0,
            "stall": 0,
            "failed": False,
        }
        try:
            final = await graph.ainvoke(state, config={"recursion_limit": self.max_iterations * 2 + 5})
            reason = self.stop_reason(final) or "completed"
            iterations = final.get("iterations", 0)
        except GraphRecursionError:
            reason = "max_iterations"
            iterations = self.max_iterations
        self.log.info(
            f"Agent complete: {self.companies_saved} companies, {self.contacts_saved} contacts in {iterations} iterations"
        )
        return {
            "companies_saved": self.companies_saved,
            "contacts_saved": self.contacts_saved,
            "iterations": iterations,
            "stop_reason": reason,
        }


async def run_agentic_scraper_for_job(
    job_id: str,
    user_id: Optional[str] = None,
    *,
    repos: Repositories,
    llm: Any = None,
    search: Optional[WebSearchProvider] = None,
    extractor: Optional[PageExtractor] = None,
    ai: Optional[AIEnrichmentService] = None,
    log: Optional[JobLogSink] = None,
    max_iterations: int = AGENT_MAX_ITERATIONS,
    max_runtime_s: float = AGENT_MAX_RUNTIME_S,
) -> Dict[str, Any]:
    """Run the tool loop for one job.

    Raises LookupError for an unknown job and LLMUnavailable when no chat
    model is configured; everything below that is reported through tool
    results and the job log.
    """
    job = await repos.jobs.get(job_id)
    if job is None:
        raise LookupError(f"Job not found: {job_id}")
    llm = llm if llm is not None else get_chat_model()
    if llm is None:
        raise LLMUnavailable("agentic discovery needs a configured chat model")
    profile = await repos.jobs.get_targeting_profile(job.pool_id)
    owns_log = log is None
    log = log or JobLogSink(job_id, repos.jobs)
    scraper = AgenticScraper(
        job_id,
        job.pool_id,
        profile,
        repos=repos,
        llm=llm,
        search=search or get_search_provider(),
        extractor=extractor or PageExtractor(),
        ai=ai or AIEnrichmentService(llm=llm, user_id=user_id or job.user_id),
        log=log,
        max_iterations=max_iterations,
        max_runtime_s=max_runtime_s,
    )
    try:
        return await scraper.run()
    finally:
        if owns_log:
            await log.flush()
