import pytest


@pytest.mark.asyncio
async def test_repeat_sightings_keep_one_row_and_append_provenance(repos):
    from leadgen.companies import record_company_sighting

    first, created = await record_company_sighting(repos, "pool-1", "https://www.Acme.com/", source="serp", job_id="j1")
    again, created_again = await record_company_sighting(repos, "pool-1", "acme.com", source="google_search", job_id="j2")

    assert created is True and created_again is False
    assert first.id == again.id
    assert len(repos.candidates.rows) == 1

    company = await repos.companies.get_by_domain("acme.com")
    assert company.dedupe_key == "company:acme.com"
    assert company.company_name == "Acme"
    assert company.homepage_url == "https://acme.com"
    assert [p.source for p in company.provenance] == ["serp", "google_search"]


@pytest.mark.asyncio
async def test_same_company_in_two_pools(repos):
    from leadgen.companies import record_company_sighting

    a, _ = await record_company_sighting(repos, "pool-a", "acme.com", source="serp")
    b, created = await record_company_sighting(repos, "pool-b", "acme.com", source="serp")
    assert created is True
    assert a.id != b.id
    assert len(repos.companies.rows) == 1


@pytest.mark.asyncio
async def test_invalid_domain_is_skipped(repos):
    from leadgen.companies import record_company_sighting

    assert await record_company_sighting(repos, "pool-1", "not a domain", source="serp") == (None, False)
    assert repos.companies.rows == {}


@pytest.mark.asyncio
async def test_sighting_does_not_overwrite_enriched_fields(repos):
    from leadgen.companies import record_company_sighting
    from leadgen.models import ProvenanceEntry

    await record_company_sighting(repos, "pool-1", "acme.com", source="serp")
    await repos.companies.apply_enrichment(
        "acme.com", ProvenanceEntry(source="crawler"), company_name="Acme Widgets, Inc.", tech_stack=[]
    )
    await record_company_sighting(repos, "pool-1", "acme.com", source="serp")
    company = await repos.companies.get_by_domain("acme.com")
    assert company.company_name == "Acme Widgets, Inc."
    assert [p.source for p in company.provenance] == ["serp", "crawler", "serp"]


@pytest.mark.asyncio
async def test_save_contacts_requires_channel_and_dedupes(repos):
    from leadgen.companies import record_company_sighting, save_contacts

    candidate, _ = await record_company_sighting(repos, "pool-1", "acme.com", source="serp")
    created = await save_contacts(
        repos,
        candidate,
        [
            {"name": "Jane Doe", "title": "CEO", "email": "Jane@Acme.com"},
            {"name": "No Channel", "title": "CTO"},
            {"email": "noreply@acme.com"},
            {"phone": "(505) 555-1234"},
        ],
        source="company-website",
    )
    assert created == 2

    # same email again fills the missing phone instead of adding a row
    created_again = await save_contacts(
        repos, candidate, [{"email": "jane@acme.com", "phone": "505-555-9999"}], source="linkedin"
    )
    assert created_again == 0

    rows = sorted(await repos.contacts.list_for_candidate(candidate.id), key=lambda c: c.full_name)
    assert [r.full_name for r in rows] == ["Direct", "Jane Doe"]
    jane = rows[1]
    assert jane.email == "jane@acme.com"
    assert jane.phone == "+15055559999"
    assert jane.dedupe_key == "person:email:jane@acme.com"
    assert [p.source for p in jane.provenance] == ["company-website", "linkedin"]
    assert rows[0].dedupe_key is None


@pytest.mark.asyncio
async def test_save_contacts_applies_limit(repos):
    from leadgen.companies import record_company_sighting, save_contacts

    candidate, _ = await record_company_sighting(repos, "pool-1", "acme.com", source="serp")
    raw = [{"email": f"person{i}@acme.com"} for i in range(4)]
    assert await save_contacts(repos, candidate, raw, source="serp", limit=2) == 2
