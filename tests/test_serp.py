import pytest

PROFILE = {
    "industries": ["Restaurants"],
    "geos": ["New Mexico"],
    "limits": {"maxCompanies": 5},
}


def test_build_queries_expands_templates():
    from leadgen.models import TargetingProfile
    from leadgen.serp import build_queries

    profile = TargetingProfile(industries=["SaaS", "Fintech"], geos=["Austin"], tech_stack=["Stripe"])
    out = build_queries(["{industry} in {geo} using {tech}", "{industry} {title}"], profile, 10)
    assert out == ["SaaS in Austin using Stripe", "SaaS", "Fintech in Austin using Stripe", "Fintech"]
    assert build_queries(["{industry} in {geo}"], profile, 1) == ["SaaS in Austin"]


def test_query_budgets():
    from leadgen.serp import ai_query_count, max_template_queries

    assert max_template_queries(5) == 5
    assert max_template_queries(60) == 20
    assert max_template_queries(500) == 30
    assert ai_query_count(5) == 1
    assert ai_query_count(500) == 15


@pytest.mark.asyncio
async def test_zero_results_logs_error_and_records_every_query(repos, make_job, fake_search, offline_ai):
    from leadgen.job_log import JobLogSink
    from leadgen.serp import NO_RESULTS_MESSAGE, run_serp_scraper_for_job

    job = make_job(PROFILE)
    search = fake_search()
    log = JobLogSink(job.id, repos.jobs)

    result = await run_serp_scraper_for_job(
        job.id, repos=repos, search=search, ai=offline_ai, query_delay_s=0, log=log
    )

    assert result.created_candidates == 0
    assert result.unique_domains == []
    assert repos.candidates.rows == {}
    events = await repos.jobs.list_source_events(job.id)
    assert len(events) == len(search.queries) == result.source_events > 0
    assert all(e.metadata["totalResults"] == 0 for e in events)
    assert log.messages("ERROR") == [NO_RESULTS_MESSAGE]
    assert "Loosening search criteria (attempt 3/3)..." in log.messages()


@pytest.mark.asyncio
async def test_loosening_reaches_generic_queries(repos, make_job, fake_search):
    from leadgen.job_log import JobLogSink
    from leadgen.serp import run_serp_scraper_for_job

    job = make_job(PROFILE, ai_queries=False)
    domains = ["a-tacos.com", "b-tacos.com", "c-tacos.com", "d-tacos.com", "e-tacos.com"]
    search = fake_search({"Restaurants companies": domains})
    log = JobLogSink(job.id, repos.jobs)

    result = await run_serp_scraper_for_job(job.id, repos=repos, search=search, query_delay_s=0, log=log)

    assert result.unique_domains == domains
    assert result.created_candidates == 5
    assert "Loosening search criteria (attempt 2/3)..." in log.messages()
    assert "Loosening search criteria (attempt 3/3)..." in log.messages()
    # the strict templates ran first
    assert search.queries[0] == "site:linkedin.com/company Restaurants New Mexico"
    # stops as soon as the cap is met
    assert search.queries[-1] == "Restaurants companies"

    candidate = await repos.candidates.get(job.pool_id, "a-tacos.com")
    assert candidate.score == 50
    assert candidate.status == "NEW"
    assert candidate.provenance[0].details == {"query": "Restaurants companies"}


@pytest.mark.asyncio
async def test_caps_at_max_companies_and_skips_loosening(repos, make_job, fake_search):
    from leadgen.job_log import JobLogSink
    from leadgen.serp import run_serp_scraper_for_job

    job = make_job({**PROFILE, "limits": {"maxCompanies": 2}}, ai_queries=False)
    search = fake_search(default=["one.com", "two.com", "three.com"])
    log = JobLogSink(job.id, repos.jobs)

    result = await run_serp_scraper_for_job(job.id, repos=repos, search=search, query_delay_s=0, log=log)

    assert result.unique_domains == ["one.com", "two.com"]
    assert len(search.queries) == 1
    assert not any(m.startswith("Loosening") for m in log.messages())
    event = (await repos.jobs.list_source_events(job.id))[0]
    assert event.type == "serp"
    assert event.metadata["domains"] == ["one.com", "two.com", "three.com"]
    assert event.metadata["note"] == "SERP query results"


@pytest.mark.asyncio
async def test_excluded_domains_and_provider_errors(repos, make_job, fake_search):
    from leadgen.job_log import JobLogSink
    from leadgen.serp import run_serp_scraper_for_job

    job = make_job({**PROFILE, "excludeDomains": ["https://www.chain.com"]}, ai_queries=False)
    first = "site:linkedin.com/company Restaurants New Mexico"
    search = fake_search(default=["chain.com", "local.com"], fail_on={first})
    log = JobLogSink(job.id, repos.jobs)

    result = await run_serp_scraper_for_job(job.id, repos=repos, search=search, query_delay_s=0, log=log)

    assert result.unique_domains == ["local.com"]
    assert log.messages("WARN") == [f'SERP error for "{first}": blocked']
    assert await repos.candidates.get(job.pool_id, "chain.com") is None


@pytest.mark.asyncio
async def test_rerun_does_not_duplicate_candidates(repos, make_job, fake_search):
    from leadgen.serp import run_serp_scraper_for_job

    job = make_job({**PROFILE, "limits": {"maxCompanies": 1}}, ai_queries=False)
    search = fake_search(default=["acme.com"])

    first = await run_serp_scraper_for_job(job.id, repos=repos, search=search, query_delay_s=0)
    second = await run_serp_scraper_for_job(job.id, repos=repos, search=search, query_delay_s=0)

    assert (first.created_candidates, second.created_candidates) == (1, 0)
    assert len(repos.candidates.rows) == 1
    company = await repos.companies.get_by_domain("acme.com")
    assert len(company.provenance) == 2


@pytest.mark.asyncio
async def test_unknown_job_raises(repos):
    from leadgen.serp import run_serp_scraper_for_job

    with pytest.raises(LookupError):
        await run_serp_scraper_for_job("missing", repos=repos, query_delay_s=0)


@pytest.mark.asyncio
async def test_looser_strategies_skip_queries_already_run(repos, make_job, fake_search):
    from leadgen.serp import run_serp_scraper_for_job

    job = make_job(PROFILE, ai_queries=False)
    search = fake_search()

    await run_serp_scraper_for_job(job.id, repos=repos, search=search, query_delay_s=0)

    assert len(search.queries) == len(set(search.queries))
    events = await repos.jobs.list_source_events(job.id)
    assert [e.query for e in events] == search.queries


@pytest.mark.asyncio
async def test_run_without_sink_persists_its_log(repos, make_job, fake_search):
    from leadgen.serp import NO_RESULTS_MESSAGE, run_serp_scraper_for_job

    job = make_job(PROFILE, ai_queries=False)

    await run_serp_scraper_for_job(job.id, repos=repos, search=fake_search(), query_delay_s=0)

    logs = (await repos.jobs.get(job.id)).logs
    assert [e.msg for e in logs if e.level == "ERROR"] == [NO_RESULTS_MESSAGE]
    assert logs[0].msg == "Starting FakeSearch search..."
