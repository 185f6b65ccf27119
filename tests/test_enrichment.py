import pytest

TACO_PAGE = {
    "title": "Taco Place",
    "company_name_guess": "Taco Place",
    "tech_stack": ["Square"],
    "emails": ["info@tacoplace.com"],
    "phones": ["(505) 555-1234"],
}


def test_infer_industry_picks_best_keyword_match():
    from leadgen.enrichment import infer_industry

    assert infer_industry("Casa Bonita", "Family restaurant with catering and dining") == "Food & Beverage"
    assert infer_industry("Zzz", "qqq") is None


@pytest.mark.asyncio
async def test_enrichment_raises_score_and_stores_page_contacts(repos, make_job, offline_ai, fake_extractor):
    from leadgen.companies import record_company_sighting
    from leadgen.enrichment import enrich_companies_for_job

    job = make_job()
    candidate, _ = await record_company_sighting(repos, job.pool_id, "tacoplace.com", source="serp", job_id=job.id)
    assert candidate.score == 50

    extractor = fake_extractor({"tacoplace.com": TACO_PAGE})
    res = await enrich_companies_for_job(job.id, repos=repos, extractor=extractor, ai=offline_ai, delay_s=0)
    assert res == {"enriched": 1, "failed": 0, "contacts": 2}

    updated = await repos.candidates.get_by_id(candidate.id)
    assert updated.score == 75
    assert updated.tech_stack == ["Square"]
    assert updated.company_name == "Taco Place"
    assert updated.provenance[-1].source == "crawler"

    company = await repos.companies.get_by_domain("tacoplace.com")
    assert company.tech_stack == ["Square"]

    contacts = await repos.contacts.list_for_candidate(candidate.id)
    assert {c.full_name for c in contacts} == {"Direct"}
    assert sorted(filter(None, (c.email for c in contacts))) == ["info@tacoplace.com"]
    assert sorted(filter(None, (c.phone for c in contacts))) == ["+15055551234"]


@pytest.mark.asyncio
async def test_unreachable_site_counts_as_failed_and_leaves_row(repos, make_job, offline_ai, fake_extractor):
    from leadgen.companies import record_company_sighting
    from leadgen.enrichment import enrich_companies_for_job
    from leadgen.job_log import JobLogSink

    job = make_job()
    candidate, _ = await record_company_sighting(repos, job.pool_id, "gone.com", source="serp")
    log = JobLogSink(job.id, repos.jobs)

    res = await enrich_companies_for_job(
        job.id, repos=repos, extractor=fake_extractor({}), ai=offline_ai, delay_s=0, log=log
    )
    assert res == {"enriched": 0, "failed": 1, "contacts": 0}
    assert log.messages() == ["Company enrichment: 0 enriched, 1 failed."]

    row = await repos.candidates.get_by_id(candidate.id)
    assert row.score == 50
    assert row.description is None
    assert len(row.provenance) == 1


@pytest.mark.asyncio
async def test_ai_classification_overrides_keyword_industry(repos, make_job, fake_extractor):
    from leadgen.companies import record_company_sighting
    from leadgen.enrichment import enrich_companies_for_job
    from leadgen.models import CompanyAnalysis

    class StubAI:
        def __init__(self):
            self.calls = []

        async def classify_company(self, domain, description):
            self.calls.append(domain)
            return CompanyAnalysis(industry="Restaurants", tech_stack=["Toast"], confidence=88)

    job = make_job()
    candidate, _ = await record_company_sighting(repos, job.pool_id, "tacoplace.com", source="serp")
    page = dict(TACO_PAGE, description_guess="Family restaurant serving New Mexican food.")
    ai = StubAI()

    await enrich_companies_for_job(job.id, repos=repos, extractor=fake_extractor({"tacoplace.com": page}), ai=ai, delay_s=0)

    row = await repos.candidates.get_by_id(candidate.id)
    assert ai.calls == ["tacoplace.com"]
    assert row.industry == "Restaurants"
    assert row.tech_stack == ["Square", "Toast"]
    assert row.score == 95


@pytest.mark.asyncio
async def test_ai_analysis_disabled_skips_model(repos, make_job, fake_extractor):
    from leadgen.companies import record_company_sighting
    from leadgen.enrichment import enrich_companies_for_job

    class ExplodingAI:
        async def classify_company(self, domain, description):
            raise AssertionError("should not be called")

    job = make_job(ai_analysis=False)
    await record_company_sighting(repos, job.pool_id, "tacoplace.com", source="serp")
    page = dict(TACO_PAGE, description_guess="Family restaurant.")
    res = await enrich_companies_for_job(
        job.id, repos=repos, extractor=fake_extractor({"tacoplace.com": page}), ai=ExplodingAI(), delay_s=0
    )
    assert res["enriched"] == 1


@pytest.mark.asyncio
async def test_unknown_job_raises(repos):
    from leadgen.enrichment import enrich_companies_for_job

    with pytest.raises(LookupError):
        await enrich_companies_for_job("missing", repos=repos, delay_s=0)
