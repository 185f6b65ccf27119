"""
Canonical forms, dedupe keys and confidence scores for scraped lead data.

Every normalizer is a pure function returning ``None`` for input it cannot
parse. Weights and block-lists come from ``leadgen.heuristics``.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from leadgen.heuristics import heuristics

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DOMAIN_RE = re.compile(r"^[a-z0-9]+([\-.][a-z0-9]+)*\.[a-z]{2,}$")
_SCHEME_RE = re.compile(r"^https?://", re.I)
_WWW_RE = re.compile(r"^www\.", re.I)


# ---------------------------------------------------------------------------
# Emails, phones, names
# ---------------------------------------------------------------------------


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    e = email.strip().lower()
    if not _EMAIL_RE.match(e):
        return None
    domain = e.split("@", 1)[1]
    if domain in set(heuristics()["disposable_domains"]):
        return None
    return e


def is_valid_email(email: Optional[str]) -> bool:
    return normalize_email(email) is not None


def normalize_phone(phone: Optional[str], default_country_code: str = "+1") -> Optional[str]:
    """E.164-ish canonical form: ``+`` followed by 8 to 15 digits."""
    if not phone:
        return None
    cleaned = re.sub(r"[^\d+]", "", phone)
    if not cleaned:
        return None
    if not cleaned.startswith("+"):
        cleaned = default_country_code + cleaned
    digits = cleaned[1:]
    if not digits.isdigit() or not (8 <= len(digits) <= 15):
        return None
    return cleaned


def normalize_name(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    cleaned = " ".join(unicodedata.normalize("NFC", name).split())
    if not cleaned:
        return None
    return " ".join(w[:1].upper() + w[1:].lower() for w in cleaned.split(" "))


def normalize_company_name(name: Optional[str]) -> Optional[str]:
    # Display form: legal suffixes (Inc, LLC, GmbH) are kept.
    if not name:
        return None
    cleaned = " ".join(unicodedata.normalize("NFC", name).split())
    return cleaned or None


# ---------------------------------------------------------------------------
# URLs and domains
# ---------------------------------------------------------------------------


def normalize_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    if not parts.scheme or not parts.hostname:
        return None
    host = _WWW_RE.sub("", parts.hostname.lower())
    netloc = f"{host}:{port}" if port else host
    path = re.sub(r"/+$", "", parts.path)
    tracking = set(heuristics()["tracking_params"])
    params = sorted((k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in tracking)
    return urlunsplit(("https", netloc, path, urlencode(params), parts.fragment))


def normalize_domain(domain: Optional[str]) -> Optional[str]:
    if not domain:
        return None
    d = domain.strip().lower()
    d = _SCHEME_RE.sub("", d)
    d = _WWW_RE.sub("", d)
    d = d.split("/")[0].split("?")[0].split("#")[0]
    if not _DOMAIN_RE.match(d):
        return None
    return d


def normalize_linkedin_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    if "linkedin.com" not in (parts.hostname or ""):
        return None
    path = re.sub(r"/+$", "", parts.path)
    return urlunsplit(("https", "www.linkedin.com", path, "", ""))


def derive_company_name(domain: str) -> str:
    """Best-effort display name from the first domain label (``taco-place.com`` -> ``Taco Place``)."""
    base = (domain or "").split(".")[0] or domain
    base = re.sub(r"[-_]", " ", base)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), base)


# ---------------------------------------------------------------------------
# Dedupe keys
# ---------------------------------------------------------------------------


def generate_company_dedupe_key(domain: Optional[str]) -> str:
    d = normalize_domain(domain)
    return f"company:{d}" if d else ""


def _slug(value: str) -> str:
    return re.sub(r"\s+", "-", value.strip().lower())


def generate_person_dedupe_key(
    email: Optional[str] = None,
    name: Optional[str] = None,
    company_domain: Optional[str] = None,
    title: Optional[str] = None,
) -> Optional[str]:
    """First available of email > name+domain.

    The name+title+domain tier is always preceded by name+domain, so ``title``
    never changes the key. ``None`` means the person cannot be linked across
    sightings; callers store the row unkeyed rather than treating it as an error.
    """
    e = normalize_email(email)
    if e:
        return f"person:email:{e}"
    n = normalize_name(name)
    d = normalize_domain(company_domain)
    if n and d:
        return f"person:name-company:{_slug(n)}@{d}"
    return None


# ---------------------------------------------------------------------------
# Confidence scores (0-100)
# ---------------------------------------------------------------------------


def _clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


def is_generic_local(email: Optional[str]) -> bool:
    local = (email or "").split("@", 1)[0].lower()
    return any(p in local for p in heuristics()["generic_email_locals"])


def calculate_email_confidence(email: Optional[str], source: Optional[str] = None) -> int:
    if not is_valid_email(email):
        return 0
    cfg = heuristics()["confidence"]["email"]
    score = cfg["base"] + cfg["source_bonus"].get(source or "", 0)
    if is_generic_local(email):
        score -= cfg["generic_penalty"]
    return _clamp(score)


def calculate_person_confidence(
    *,
    has_email: bool = False,
    has_phone: bool = False,
    has_linkedin: bool = False,
    has_title: bool = False,
    has_name: bool = False,
    source: Optional[str] = None,
) -> int:
    cfg = heuristics()["confidence"]["person"]
    w = cfg["weights"]
    score = 0
    score += w["email"] if has_email else 0
    score += w["phone"] if has_phone else 0
    score += w["linkedin"] if has_linkedin else 0
    score += w["title"] if has_title else 0
    score += w["name"] if has_name else 0
    score += cfg["source_bonus"].get(source or "", 0)
    return _clamp(score)


def calculate_company_confidence(
    *,
    has_domain: bool = False,
    has_website: bool = False,
    has_description: bool = False,
    has_tech_stack: bool = False,
    has_industry: bool = False,
    source: Optional[str] = None,
) -> int:
    cfg = heuristics()["confidence"]["company"]
    w = cfg["weights"]
    score = 0
    score += w["domain"] if has_domain else 0
    score += w["website"] if has_website else 0
    score += w["description"] if has_description else 0
    score += w["tech_stack"] if has_tech_stack else 0
    score += w["industry"] if has_industry else 0
    score += cfg["source_bonus"].get(source or "", 0)
    return _clamp(score)
