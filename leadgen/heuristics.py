"""
Heuristic weights and keyword dictionaries used across the pipeline.

The numbers here carry no derivation of their own; they are kept as data so
they can be tuned per deployment without code changes.

- DEFAULT_CFG: built-in defaults
- load_heuristics(path): DEFAULT_CFG deep-merged with a YAML override file
- heuristics(): cached accessor used by the other modules
"""

import copy
import logging
import os
from functools import lru_cache
from typing import Any, Dict, Optional

import yaml

from leadgen.settings import HEURISTICS_CONFIG

logger = logging.getLogger(__name__)


DEFAULT_CFG: Dict[str, Any] = {
    "confidence": {
        "email": {
            "base": 50,
            "source_bonus": {"linkedin": 30, "company-website": 20, "hunter": 25, "serp": 10},
            "generic_penalty": 20,
        },
        "person": {
            "weights": {"email": 30, "phone": 15, "linkedin": 20, "title": 15, "name": 10},
            "source_bonus": {"linkedin": 10, "company-website": 5},
        },
        "company": {
            "weights": {
                "domain": 40,
                "website": 20,
                "description": 10,
                "tech_stack": 15,
                "industry": 10,
            },
            "source_bonus": {"crunchbase": 5, "linkedin": 5},
        },
    },
    "generic_email_locals": ["info", "contact", "support", "admin", "sales", "help"],
    "disposable_domains": [
        "tempmail.com",
        "guerrillamail.com",
        "10minutemail.com",
        "throwaway.email",
        "mailinator.com",
        "trashmail.com",
    ],
    "tracking_params": [
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
    ],
    # Non-company hosts dropped from search results (substring match on host)
    "excluded_search_domains": [
        "wikipedia.org",
        "youtube.com",
        "facebook.com",
        "twitter.com",
        "linkedin.com",
        "instagram.com",
        "reddit.com",
        "medium.com",
        "github.com",
        "pinterest.com",
        "tiktok.com",
        "snapchat.com",
    ],
    # Search engines never count as results
    "search_engine_hosts": [
        "duckduckgo.",
        "google.",
        "bing.",
        "brave.",
        "yahoo.",
        "yandex.",
    ],
    "industry_keywords": {
        "Software & Technology": [
            "software", "saas", "technology", "tech", "platform", "cloud", "api", "ai", "ml", "data",
        ],
        "E-commerce": ["ecommerce", "e-commerce", "shop", "store", "retail", "marketplace", "shopify"],
        "Finance & Fintech": [
            "finance", "fintech", "banking", "payment", "crypto", "blockchain", "trading", "investment",
        ],
        "Healthcare & Medical": [
            "health", "medical", "healthcare", "patient", "doctor", "hospital", "pharma", "clinic",
        ],
        "Education": [
            "education", "learning", "school", "university", "course", "student", "training", "edtech",
        ],
        "Marketing & Advertising": [
            "marketing", "advertising", "agency", "creative", "brand", "media", "campaign",
        ],
        "Consulting": ["consulting", "consultant", "advisory", "strategy", "professional services"],
        "Real Estate": ["real estate", "property", "housing", "commercial", "residential", "realty"],
        "Manufacturing": ["manufacturing", "production", "factory", "industrial", "supply chain"],
        "Food & Beverage": ["food", "beverage", "restaurant", "catering", "delivery", "dining"],
        "Transportation & Logistics": [
            "logistics", "shipping", "transportation", "delivery", "freight", "supply",
        ],
        "Entertainment & Media": [
            "entertainment", "media", "streaming", "content", "gaming", "music", "video",
        ],
        "Non-Profit": ["non-profit", "nonprofit", "charity", "foundation", "ngo", "donation"],
    },
    # Substrings looked up in the lowercased page HTML
    "tech_fingerprints": {
        "React": ["data-reactroot", "__react", "react"],
        "Vue.js": ["__vue__", "vue"],
        "Angular": ["ng-app", "ng-controller", "ng-version"],
        "WordPress": ["wp-content", "wordpress"],
        "Shopify": ["cdn.shopify.com", "shopify"],
        "Wix": ["static.wixstatic.com", "wix.com"],
        "Squarespace": ["static1.squarespace.com", "squarespace"],
        "Webflow": ["uploads-ssl.webflow.com", "webflow"],
        "Next.js": ["__next_data__", "__next"],
        "Nuxt.js": ["__nuxt__", "__nuxt"],
        "Django": ["csrfmiddlewaretoken"],
        "Rails": ["csrf-token"],
        "Laravel": ["laravel"],
        "Stripe": ["js.stripe.com", "stripe"],
        "Google Analytics": ["google-analytics", "gtag"],
        "Segment": ["analytics.js", "segment"],
        "Intercom": ["widget.intercom.io", "intercom"],
        "HubSpot": ["js.hs-scripts.com", "hubspot"],
        "Salesforce": ["salesforce"],
        "Square": ["squareup.com", "square.site"],
    },
    "social_patterns": {
        "linkedin": r"linkedin\.com/company/[^/\s\"')]+",
        "twitter": r"(?:twitter|\bx)\.com/[^/\s\"')]+",
        "facebook": r"facebook\.com/[^/\s\"')]+",
        "instagram": r"instagram\.com/[^/\s\"')]+",
    },
    # Site crawl: paths worth guessing, and score nudges for ranking candidate links
    "crawl_paths": [
        "/about", "/about-us", "/aboutus", "/team", "/our-team", "/leadership", "/people",
        "/staff", "/contact", "/contact-us", "/contactus", "/careers", "/jobs", "/join-us",
        "/work-with-us", "/company", "/company/about", "/company/team",
    ],
    "link_scores": [
        {"score": 18, "patterns": ["contact"]},
        {"score": 15, "patterns": ["team", "leadership", "people", "staff"]},
        {"score": 12, "patterns": ["about", "company", "who-we-are", "directory"]},
        {"score": 10, "patterns": ["careers", "jobs", "join-us", "work-with-us"]},
        {"score": 8, "patterns": ["press", "media", "newsroom"]},
        {"score": 5, "patterns": ["blog", "articles"]},
        {"score": 3, "patterns": ["email", "reach", "support", "helpdesk"]},
        {"score": -10, "patterns": ["login", "signin", "account", "newsletter", "subscribe", "submit"]},
        {"score": -8, "patterns": ["privacy", "terms", "cookie"]},
        {"score": -6, "patterns": ["faq"]},
        {"score": -12, "patterns": ["products", "product", "shop", "store", "catalog", "menu"]},
    ],
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _default_path() -> str:
    return HEURISTICS_CONFIG or os.path.join(
        os.path.dirname(os.path.dirname(__file__)), "config", "heuristics.yaml"
    )


def load_heuristics(path: Optional[str] = None) -> Dict[str, Any]:
    p = path or _default_path()
    if not os.path.exists(p):
        return copy.deepcopy(DEFAULT_CFG)
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("heuristics config unreadable path=%s err=%s; using defaults", p, exc)
        return copy.deepcopy(DEFAULT_CFG)
    if not isinstance(data, dict):
        logger.warning("heuristics config must be a mapping path=%s; using defaults", p)
        return copy.deepcopy(DEFAULT_CFG)
    return _deep_merge(DEFAULT_CFG, data)


@lru_cache(maxsize=1)
def heuristics() -> Dict[str, Any]:
    return load_heuristics()
