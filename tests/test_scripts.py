import importlib.util
import json
import os

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def _load(name):
    path = os.path.join(ROOT, "scripts", f"{name}.py")
    spec = importlib.util.spec_from_file_location(name, path)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def test_pending_migrations_skip_applied(tmp_path):
    mod = _load("run_migrations")
    for name in ("002_b.sql", "001_a.sql", "notes.txt"):
        (tmp_path / name).write_text("-- noop\n")

    pending = mod.pending_files(str(tmp_path), {"001_a.sql"})
    assert [os.path.basename(p) for p in pending] == ["002_b.sql"]
    assert [os.path.basename(p) for p in mod.pending_files(str(tmp_path), set())] == ["001_a.sql", "002_b.sql"]


def test_shipped_migration_creates_core_tables():
    with open(os.path.join(ROOT, "migrations", "001_leadgen_core.sql"), encoding="utf-8") as fh:
        sql = fh.read()
    for table in ("lead_pools", "lead_gen_jobs", "lead_source_events", "global_companies", "lead_candidates", "contact_candidates"):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in sql


def test_dry_run_prints_candidates(monkeypatch, capsys):
    mod = _load("run_leadgen_job")

    async def fake_pipeline(job_id, user_id=None, *, repos, ai=None, **kwargs):
        from leadgen.companies import record_company_sighting
        from leadgen.pipeline import PipelineResult

        job = await repos.jobs.get(job_id)
        await record_company_sighting(repos, job.pool_id, "tacoplace.com", source="serp", job_id=job_id)
        return PipelineResult(mode="fixed", created_candidates=1, counters={"candidatesCreated": 1})

    monkeypatch.setattr(mod, "run_lead_gen_pipeline", fake_pipeline)
    code = mod.main(["--dry-run", "--prompt", "restaurants in New Mexico", "--max-companies", "3"])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["mode"] == "fixed"
    assert out["profile"]["limits"]["maxCompanies"] == 3
    assert out["profile"]["notes"] == "restaurants in New Mexico"
    assert [c["domain"] for c in out["candidates"]] == ["tacoplace.com"]


def test_real_run_requires_job_id():
    mod = _load("run_leadgen_job")
    with pytest.raises(SystemExit):
        mod.main([])
