"""
Contact quality filters.

Drops addresses that are never worth storing (no-reply, placeholders,
disposable providers, CMS/marketing senders) and turns raw contact dicts
into normalized ones. A contact survives only with a usable channel or name.
"""

from __future__ import annotations

import base64
import binascii
import codecs
import html
import re
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple
from urllib.parse import unquote

from leadgen.heuristics import heuristics
from leadgen.normalize import normalize_linkedin_url, normalize_name, normalize_phone

EmailClass = Literal["personal", "role", "generic", "unknown"]

ROLE_LOCALS = frozenset({
    "info", "contact", "hello", "support", "help", "sales", "billing",
    "admin", "webmaster", "postmaster", "service", "cs", "customer",
    "team", "hr", "jobs", "careers", "press", "media",
    "marketing", "growth", "pr", "publicrelations", "communications",
    "editor", "editorial", "news", "newsletter", "updates", "notifications",
    "finance", "accounting", "legal", "compliance", "security",
    "recruiting", "talent", "people", "peopleops",
    "it", "ops", "operations", "supportdesk",
})

BAD_LOCALS = frozenset({
    "noreply", "no-reply", "no_reply", "do-not-reply", "donotreply", "do_not_reply",
    "noresponder", "no-responder", "nepasrepondre", "ne-pas-repondre",
    "nichtantworten", "nicht-antworten", "naoresponder", "nao-responder",
    "norispondere", "non-rispondere",
    "autoresponder", "mailerdaemon", "mailer-daemon", "bounce", "bounces",
    "test", "testing", "sample", "example", "dev", "demo",
    "newsletter", "updates", "notifications",
})

PLACEHOLDER_DOMAINS = frozenset({
    "example.com", "example.org", "example.net", "domain.com", "email.com", "placeholder.com",
})

EXTRA_DISPOSABLE_DOMAINS = frozenset({
    "temp-mail.org", "yopmail.com", "getnada.com", "dispostable.com", "maildrop.cc",
    "trashmail.io", "tempmail.dev", "tempmail.io", "sharklasers.com", "grr.la",
})

PLATFORM_SENDER_RE = re.compile(
    r"@(wix|squarespace|shopify|bigcommerce|hubspot|mailchimp|sendgrid|constantcontact|pardot|"
    r"marketo|salesforce|intercom|sendinblue|brevo|postmarkapp|postmark|mailgun|sparkpost|"
    r"amazonses|mailer|resend|mailerlite|klaviyo|convertkit|campaignmonitor|elasticemail|"
    r"mailjet|activecampaign)\.|@ses\.amazonaws\.com|@customer\.io",
    re.I,
)

# Asset filenames that the email regex picks up (logo@2x.png)
_ASSET_SUFFIX_RE = re.compile(r"\.(png|jpe?g|gif|svg|webp|css|js)$", re.I)
_EMAIL_FORMAT_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def should_ignore_email(email: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Return ``(ignore, reason)`` for a raw address."""
    if not email:
        return True, "empty"
    e = email.strip().lower()
    if not _EMAIL_FORMAT_RE.match(e) or _ASSET_SUFFIX_RE.search(e):
        return True, "invalid_format"
    local, domain = e.split("@", 1)
    local = local.replace(".", "")
    if domain in PLACEHOLDER_DOMAINS:
        return True, "placeholder_domain"
    if domain in EXTRA_DISPOSABLE_DOMAINS or domain in set(heuristics()["disposable_domains"]):
        return True, "disposable_domain"
    if local in BAD_LOCALS:
        return True, "no_reply"
    if "test" in local or "demo" in local or "example" in local:
        return True, "testing"
    if PLATFORM_SENDER_RE.search(e):
        return True, "platform_sender"
    return False, None


def classify_email(email: Optional[str]) -> EmailClass:
    e = (email or "").strip().lower()
    if not _EMAIL_FORMAT_RE.match(e):
        return "unknown"
    local = e.split("@", 1)[0]
    if local in ROLE_LOCALS:
        return "role"
    if re.search(r"[._-]", local):
        return "personal"
    return "generic"


def sanitize_contact(raw: Mapping[str, Any], *, drop_role_only: bool = False) -> Optional[Dict[str, Any]]:
    """Normalize one raw contact.

    Returns ``{name, email, email_class, phone, title, linkedin}`` with unusable
    fields set to ``None``, or ``None`` when nothing identifying remains.
    """
    name = normalize_name(str(raw.get("name") or raw.get("full_name") or "") or None)
    email_raw = str(raw.get("email") or "").strip().lower()
    ignore, _ = should_ignore_email(email_raw)
    email = None if ignore else email_raw
    phone = normalize_phone(str(raw.get("phone") or "") or None)
    title = str(raw.get("title") or "").strip() or None
    linkedin = normalize_linkedin_url(str(raw.get("linkedin") or raw.get("linkedin_url") or "") or None)

    if not email and not phone and not name:
        return None
    email_class = classify_email(email) if email else None
    if drop_role_only and email_class == "role" and not name and not phone:
        return None
    return {
        "name": name,
        "email": email,
        "email_class": email_class,
        "phone": phone,
        "title": title,
        "linkedin": linkedin,
    }


# ---------------------------------------------------------------------------
# Obfuscated addresses
# ---------------------------------------------------------------------------

_CANDIDATE_RE = re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", re.I)
_ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\u2060\ufeff]")
_HEX_ESCAPE_RE = re.compile(r"\\x([0-9a-f]{2})|\\u([0-9a-f]{4})", re.I)
_PERCENT_RE = re.compile(r"%[0-9a-f]{2}", re.I)
_AT_TOKEN_RE = re.compile(r"\s*(?:[\[({<]\s*(?:at|@)\s*[\])}>]|" "\uff20" r")\s*", re.I)
_DOT_TOKEN_RE = re.compile(r"\s*[\[({<]\s*(?:dot|\.)\s*[\])}>]\s*|(?<=\w)[" "\u00b7\u2022" r"](?=\w)", re.I)
_SPELLED_AT = r"(?:at|arroba|at-sign|atsign)"
_SPELLED_DOT = r"(?:dot|punkt|point|punto|ponto|tecka)"
# "jane at acme dot com"; needs at least one spelled dot so prose like "visit us at acme.com" stays put
_SPELLED_RE = re.compile(
    rf"\b([a-z0-9._%+-]+)\s+{_SPELLED_AT}\s+([a-z0-9-]+(?:\s+{_SPELLED_DOT}\s+[a-z0-9-]+)+)\b", re.I
)
_SPELLED_DOT_RE = re.compile(rf"\s+{_SPELLED_DOT}\s+", re.I)
_BASE64_RE = re.compile(r"[?&#=]([A-Za-z0-9+/_-]{8,}={0,2})")

# rot13 of a plain address yields a bogus one (.com -> .pbz); keep only decodes that land on a common TLD
_COMMON_TLDS = frozenset({
    "com", "org", "net", "edu", "gov", "io", "co", "us", "uk", "ca", "au", "de", "fr",
    "es", "it", "nl", "mx", "br", "in", "info", "biz", "ai", "app", "dev",
})


def _unescape(text: str) -> str:
    text = html.unescape(_ZERO_WIDTH_RE.sub("", text))
    text = _HEX_ESCAPE_RE.sub(lambda m: chr(int(m.group(1) or m.group(2), 16)), text)
    if _PERCENT_RE.search(text):
        text = unquote(text)
    return text


def _collapse_tokens(text: str) -> str:
    text = _AT_TOKEN_RE.sub("@", text)
    text = _DOT_TOKEN_RE.sub(".", text)
    return _SPELLED_RE.sub(lambda m: f"{m.group(1)}@{_SPELLED_DOT_RE.sub('.', m.group(2))}", text)


def _b64_emails(href: str) -> List[str]:
    out = []
    for chunk in _BASE64_RE.findall(href):
        try:
            decoded = base64.b64decode(chunk + "=" * (-len(chunk) % 4), altchars=b"-_", validate=False)
            decoded_text = decoded.decode("utf-8")
        except (binascii.Error, ValueError):
            continue
        if "@" in decoded_text:
            out.extend(_CANDIDATE_RE.findall(decoded_text))
    return out


def decode_email_candidates(raw_text: str, hrefs: Iterable[str] = ()) -> List[str]:
    """Addresses hidden behind entities, escapes, [at]/[dot] tokens, rot13 or base64 links.

    Returns lowercased candidates in first-seen order; quality filtering is left
    to ``should_ignore_email``.
    """
    text = _collapse_tokens(_unescape(raw_text or ""))
    found = list(_CANDIDATE_RE.findall(text))
    for email in _CANDIDATE_RE.findall(codecs.encode(text, "rot13")):
        if email.rsplit(".", 1)[-1].lower() in _COMMON_TLDS:
            found.append(email)

    for href in hrefs:
        href = _unescape(href or "").strip()
        if not href:
            continue
        if href.lower().startswith("mailto:"):
            found.extend(_CANDIDATE_RE.findall(href[len("mailto:"):].split("?")[0]))
            continue
        found.extend(_CANDIDATE_RE.findall(_collapse_tokens(href)))
        found.extend(_b64_emails(href))

    return list(dict.fromkeys(e.lower().strip(".") for e in found))
