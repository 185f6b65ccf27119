import json
from contextlib import asynccontextmanager

import pytest


class FakeConn:
    def __init__(self, fetchrow=None, fetchval=None, fetch=None):
        self.calls = []
        self._fetchrow = fetchrow
        self._fetchval = fetchval
        self._fetch = fetch or []

    async def fetchrow(self, sql, *args):
        self.calls.append((sql, args))
        return self._fetchrow

    async def fetchval(self, sql, *args):
        self.calls.append((sql, args))
        return self._fetchval

    async def fetch(self, sql, *args):
        self.calls.append((sql, args))
        return self._fetch

    async def execute(self, sql, *args):
        self.calls.append((sql, args))
        return "UPDATE 1"


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


@pytest.mark.asyncio
async def test_candidate_update_builds_whitelisted_set_clause():
    from leadgen.models import ProvenanceEntry
    from leadgen.repositories.postgres import PgCandidateRepository

    conn = FakeConn()
    repo = PgCandidateRepository(FakePool(conn))
    out = await repo.update("cand-1", provenance=ProvenanceEntry(source="crawler"), score=75, tech_stack=["Square"])

    assert out is None
    sql, args = conn.calls[0]
    assert "score = $2" in sql
    assert "tech_stack = $3::jsonb" in sql
    assert "provenance = provenance || $4::jsonb" in sql
    assert args[0] == "cand-1"
    assert args[1] == 75
    assert json.loads(args[2]) == ["Square"]
    assert json.loads(args[3])[0]["source"] == "crawler"

    with pytest.raises(ValueError):
        await repo.update("cand-1", pool_id="other")


@pytest.mark.asyncio
async def test_company_sighting_appends_provenance_and_decodes_json():
    from leadgen.models import ProvenanceEntry
    from leadgen.repositories.postgres import PgCompanyRepository

    row = {
        "id": "c1",
        "domain": "acme.com",
        "dedupe_key": "company:acme.com",
        "company_name": "Acme",
        "tech_stack": "[]",
        "provenance": json.dumps([{"source": "serp"}, {"source": "serp"}]),
        "status": "ACTIVE",
    }
    conn = FakeConn(fetchrow=row)
    repo = PgCompanyRepository(FakePool(conn))
    company = await repo.record_sighting("acme.com", ProvenanceEntry(source="serp"), company_name="Acme")

    sql, args = conn.calls[0]
    assert "ON CONFLICT (dedupe_key) DO UPDATE" in sql
    assert "provenance = global_companies.provenance || EXCLUDED.provenance" in sql
    assert "COALESCE(global_companies.company_name, EXCLUDED.company_name)" in sql
    assert args[2] == "company:acme.com"
    assert company.tech_stack == []
    assert len(company.provenance) == 2


@pytest.mark.asyncio
async def test_job_status_merges_counters_and_logs_append():
    from leadgen.models import JobLogEntry
    from leadgen.repositories.postgres import PgJobRepository

    conn = FakeConn()
    repo = PgJobRepository(FakePool(conn))
    await repo.update_status("job-1", "SUCCESS", counters={"candidatesCreated": 2}, finished=True)
    await repo.append_logs("job-1", [JobLogEntry(msg="hello")])
    await repo.append_logs("job-1", [])

    status_sql, status_args = conn.calls[0]
    assert "counters = COALESCE(counters, '{}'::jsonb) || $3::jsonb" in status_sql
    assert "finished_at = now()" in status_sql
    assert status_args == ("job-1", "SUCCESS", '{"candidatesCreated": 2}')

    log_sql, log_args = conn.calls[1]
    assert "COALESCE(logs, '[]'::jsonb) || $2::jsonb" in log_sql
    assert json.loads(log_args[1])[0]["msg"] == "hello"
    assert len(conn.calls) == 2


@pytest.mark.asyncio
async def test_targeting_profile_from_text_column():
    from leadgen.repositories.postgres import PgJobRepository

    conn = FakeConn(fetchval=json.dumps({"industries": ["SaaS"], "limits": {"maxCompanies": 20}}))
    profile = await PgJobRepository(FakePool(conn)).get_targeting_profile("pool-1")
    assert profile.industries == ["SaaS"]
    assert profile.limits.max_companies == 20

    missing = await PgJobRepository(FakePool(FakeConn(fetchval=None))).get_targeting_profile("pool-2")
    assert missing.limits.max_companies == 100
