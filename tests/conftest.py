import os
import sys

import pytest


def _ensure_repo_on_path() -> None:
    root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if root not in sys.path:
        sys.path.append(root)


_ensure_repo_on_path()
# Empty values win over any local .env, so no chat or search client is built
for _key in ("OPENAI_API_KEY", "AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT", "GOOGLE_SEARCH_API_KEY"):
    os.environ[_key] = ""


class FakeSearch:
    """Query -> list of domains; unknown queries return nothing."""

    event_type = "serp"

    def __init__(self, responses=None, default=None, fail_on=()):
        self.responses = dict(responses or {})
        self.default = list(default or [])
        self.fail_on = set(fail_on)
        self.queries = []

    async def search(self, query, limit=25):
        from leadgen.models import SearchResult

        self.queries.append(query)
        if query in self.fail_on:
            raise RuntimeError("blocked")
        domains = self.responses.get(query, self.default)
        return [
            SearchResult(title=d.split(".")[0].title(), url=f"https://{d}/", snippet=f"About {d}", domain=d)
            for d in domains[:limit]
        ]


class FakeExtractor:
    """Domain -> PageExtraction kwargs; anything else comes back as a load error."""

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.visited = []

    async def extract(self, url):
        from leadgen.models import PageExtraction
        from leadgen.normalize import normalize_domain

        self.visited.append(url)
        page = self.pages.get(normalize_domain(url) or "")
        if page is None:
            return PageExtraction(url=url, error="net::ERR_NAME_NOT_RESOLVED")
        return PageExtraction(url=url, **page)

    async def crawl(self, url, *, max_pages=5, profile=None):
        page = await self.extract(url)
        if page.error:
            return page
        return page.model_copy(update={"pages_visited": [url]})


@pytest.fixture
def repos():
    from leadgen.repositories.memory import build_memory_repositories

    return build_memory_repositories()


@pytest.fixture
def offline_ai():
    from leadgen.ai import AIEnrichmentService

    ai = AIEnrichmentService(llm=None)
    ai.llm = None
    return ai


@pytest.fixture
def fake_search():
    return FakeSearch


@pytest.fixture
def fake_extractor():
    return FakeExtractor


@pytest.fixture
def make_job(repos):
    """Seed a pool and a job; returns the job."""
    from leadgen.models import JobProviders, LeadGenJob, TargetingProfile

    def _make(profile=None, pool_id="pool-1", **providers):
        if not isinstance(profile, TargetingProfile):
            profile = TargetingProfile.model_validate(profile or {})
        repos.jobs.add_pool(pool_id, profile)
        return repos.jobs.add_job(
            LeadGenJob(pool_id=pool_id, user_id="user-1", providers=JobProviders(**providers))
        )

    return _make
