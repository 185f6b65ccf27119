ICP = {
    "industries": ["Software"],
    "techStack": ["Stripe", "Salesforce"],
    "geos": ["Austin"],
    "companySizes": ["50-200"],
    "titles": ["CEO", "Marketing Manager"],
}

ACME = {
    "domain": "acme.com",
    "companyName": "Acme",
    "description": "SaaS platform in Austin for 50-200 person teams",
    "industry": "Software",
    "techStack": ["React", "Stripe"],
}


def test_company_score_partial_tech_match_rounds_half_up():
    from leadgen.icp_scoring import calculate_company_icp_score

    # 30 industry + 12.5 tech + 20 geo + 13 completeness + 10 size
    assert calculate_company_icp_score(ACME, ICP) == 86


def test_company_score_accepts_models():
    from leadgen.icp_scoring import calculate_company_icp_score
    from leadgen.models import LeadCandidate, TargetingProfile

    candidate = LeadCandidate(
        pool_id="p",
        domain="acme.com",
        dedupe_key="company:acme.com",
        company_name="Acme",
        description=ACME["description"],
        industry="Software",
        tech_stack=["React", "Stripe"],
    )
    assert calculate_company_icp_score(candidate, TargetingProfile.model_validate(ICP)) == 86


def test_contact_scores():
    from leadgen.icp_scoring import calculate_contact_icp_score

    senior = {
        "title": "CEO",
        "email": "jane@acme.com",
        "fullName": "Jane Doe",
        "linkedinUrl": "https://www.linkedin.com/in/jane",
        "companyDomain": "acme.com",
    }
    assert calculate_contact_icp_score(senior, ICP) == 100
    manager = {"title": "Marketing Manager", "email": "bob@gmail.com", "full_name": "Bob"}
    # 30 title + 10 freemail + 5 single-word name
    assert calculate_contact_icp_score(manager, ICP) == 45


def test_exclusion_thresholds():
    from leadgen.icp_scoring import should_exclude_company, should_exclude_contact

    assert should_exclude_company({"domain": "x.com"}, ICP) is True
    assert should_exclude_company(ACME, ICP) is False
    assert should_exclude_company(ACME, {**ICP, "excludeDomains": ["acme.com"]}) is True
    assert should_exclude_contact({"full_name": "Jane Doe"}, ICP) is True
    assert should_exclude_contact({"title": "Engineer", "email": "bob@gmail.com"}, ICP) is True


def test_rank_companies_filters_and_sorts():
    from leadgen.icp_scoring import rank_companies_by_icp

    weaker = {**ACME, "domain": "beta.com", "techStack": [], "companyName": "Beta"}
    ranked = rank_companies_by_icp([weaker, {"domain": "x.com"}, ACME], ICP)
    assert [r["domain"] for r in ranked] == ["acme.com", "beta.com"]
    assert ranked[0]["icp_score"] == 86


def test_rank_contacts():
    from leadgen.icp_scoring import rank_contacts_by_icp

    ranked = rank_contacts_by_icp(
        [
            {"title": "Marketing Manager", "email": "bob@gmail.com", "full_name": "Bob"},
            {"title": "CEO", "email": "jane@acme.com", "full_name": "Jane Doe"},
            {"full_name": "Nobody"},
        ],
        ICP,
    )
    assert [r["full_name"] for r in ranked] == ["Jane Doe", "Bob"]


def test_insights_for_empty_and_full_profiles():
    from leadgen.icp_scoring import generate_icp_insights

    empty = generate_icp_insights({})
    assert empty["strengths"] == []
    assert empty["weaknesses"] == ["No industry targeting specified", "No job titles specified"]
    assert "Add competitor domains to exclude list" in empty["recommendations"]
    assert len(empty["recommendations"]) == 5

    full = generate_icp_insights({**ICP, "excludeDomains": ["competitor.com"]})
    assert full["strengths"] == [
        "Targeting 1 specific industry",
        "Targeting 2 specific job titles",
        "Filtering by 2 technologies",
        "Geographic targeting: Austin",
    ]
    assert full["recommendations"] == []
