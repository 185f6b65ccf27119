import pytest


def test_normalize_email_is_idempotent_and_rejects_disposable():
    from leadgen.normalize import normalize_email

    once = normalize_email("  Jane.Doe@Acme.COM ")
    assert once == "jane.doe@acme.com"
    assert normalize_email(once) == once
    assert normalize_email("not-an-email") is None
    assert normalize_email("someone@mailinator.com") is None
    assert normalize_email(None) is None


@pytest.mark.parametrize(
    "raw",
    ["acme.com", "ACME.com", "https://www.acme.com/about", "http://acme.com?ref=x", "www.acme.com#top"],
)
def test_domain_variants_share_one_company_key(raw):
    from leadgen.normalize import generate_company_dedupe_key, normalize_domain

    assert normalize_domain(raw) == "acme.com"
    assert generate_company_dedupe_key(raw) == "company:acme.com"


def test_invalid_domain_has_no_key():
    from leadgen.normalize import generate_company_dedupe_key, normalize_domain

    assert normalize_domain("localhost") is None
    assert generate_company_dedupe_key("not a domain") == ""


def test_normalize_phone_defaults_country_code():
    from leadgen.normalize import normalize_phone

    assert normalize_phone("(505) 555-1234") == "+15055551234"
    assert normalize_phone("+44 20 7946 0958") == "+442079460958"
    assert normalize_phone("12") is None


def test_normalize_name_and_company_name():
    from leadgen.normalize import normalize_company_name, normalize_name

    assert normalize_name("  jANE   doe ") == "Jane Doe"
    assert normalize_company_name("  Acme   Widgets, Inc. ") == "Acme Widgets, Inc."


def test_normalize_url_drops_tracking_params():
    from leadgen.normalize import normalize_url

    out = normalize_url("http://www.Acme.com/pricing/?utm_source=x&b=2&a=1")
    assert out == "https://acme.com/pricing?a=1&b=2"


def test_person_key_prefers_email():
    from leadgen.normalize import generate_person_dedupe_key

    by_email = generate_person_dedupe_key(email="JANE@acme.com", name="Jane Doe", company_domain="acme.com")
    assert by_email == "person:email:jane@acme.com"
    by_name = generate_person_dedupe_key(name="jane doe", company_domain="www.acme.com")
    assert by_name == "person:name-company:jane-doe@acme.com"
    assert generate_person_dedupe_key(title="CEO") is None
    titled = generate_person_dedupe_key(name="Jane Doe", company_domain="acme.com", title="Chief Executive")
    assert titled == by_name


def test_confidence_scores_stay_in_range():
    from leadgen.normalize import (
        calculate_company_confidence,
        calculate_email_confidence,
        calculate_person_confidence,
    )

    assert calculate_email_confidence("bad") == 0
    personal = calculate_email_confidence("jane@acme.com", "company-website")
    generic = calculate_email_confidence("info@acme.com", "company-website")
    assert 0 < generic < personal <= 100

    full = calculate_person_confidence(
        has_email=True, has_phone=True, has_linkedin=True, has_title=True, has_name=True, source="linkedin"
    )
    assert full == 100
    assert calculate_person_confidence() == 0

    assert calculate_company_confidence(has_domain=True, has_website=True, has_tech_stack=True) == 75
    everything = calculate_company_confidence(
        has_domain=True,
        has_website=True,
        has_description=True,
        has_tech_stack=True,
        has_industry=True,
        source="crunchbase",
    )
    assert everything == 100
