from contextlib import asynccontextmanager

import pytest

TACO_HTML = """
<html>
<head>
  <title>Taco Place | Albuquerque</title>
  <meta name="description" content="Family-owned restaurant serving New Mexican food since 1985.">
  <meta name="keywords" content="tacos, restaurant, catering">
  <meta property="og:title" content="Taco Place">
  <script src="https://js.squareup.com/v2/paymentform"></script>
</head>
<body>
  <h1>Welcome to Taco Place</h1>
  <p>Call us at (505) 555-1234 or write to info@tacoplace.com.</p>
  <p>Site by noreply@tacoplace.com</p>
  <a href="mailto:catering@tacoplace.com?subject=Order">Catering</a>
  <a href="https://www.facebook.com/tacoplace">Facebook</a>
  <a href="https://www.linkedin.com/company/tacoplace">LinkedIn</a>
</body>
</html>
"""


def test_parse_page_html_pulls_signals():
    from leadgen.extractor import parse_page_html

    page = parse_page_html(TACO_HTML, "https://tacoplace.com")
    assert page.title == "Taco Place | Albuquerque"
    assert page.company_name_guess == "Taco Place"
    assert page.description_guess.startswith("Family-owned restaurant")
    assert page.keywords == ["tacos", "restaurant", "catering"]
    assert page.emails == ["info@tacoplace.com", "catering@tacoplace.com"]
    assert page.phones == ["(505) 555-1234"]
    assert "Square" in page.tech_stack
    assert page.social_links.facebook == "https://www.facebook.com/tacoplace"
    assert page.social_links.linkedin == "https://www.linkedin.com/company/tacoplace"
    assert page.error is None


def test_parse_page_html_falls_back_to_first_paragraph():
    from leadgen.extractor import parse_page_html

    page = parse_page_html("<html><body><p>We build widgets.</p></body></html>")
    assert page.description_guess == "We build widgets."
    assert page.emails == []


def test_detect_tech_stack():
    from leadgen.extractor import detect_tech_stack

    found = detect_tech_stack('<link href="/wp-content/themes/x.css"><script src="https://js.stripe.com/v3"></script>')
    assert "WordPress" in found
    assert "Stripe" in found
    assert detect_tech_stack("") == []


class _Resp:
    def __init__(self, status):
        self.status = status


class _Page:
    def __init__(self, html, status=200):
        self._html = html
        self._status = status

    async def goto(self, url, **kwargs):
        return _Resp(self._status)

    async def content(self):
        return self._html


def _factory(page):
    @asynccontextmanager
    async def _open():
        yield page

    return _open


@pytest.mark.asyncio
async def test_extract_renders_page():
    from leadgen.extractor import PageExtractor

    extractor = PageExtractor(settle_ms=0, page_factory=_factory(_Page(TACO_HTML)))
    page = await extractor.extract("https://tacoplace.com")
    assert page.error is None
    assert page.url == "https://tacoplace.com"
    assert "info@tacoplace.com" in page.emails


@pytest.mark.asyncio
async def test_extract_reports_http_error():
    from leadgen.extractor import PageExtractor

    extractor = PageExtractor(settle_ms=0, page_factory=_factory(_Page("", status=404)))
    page = await extractor.extract("https://gone.com")
    assert page.error == "HTTP 404"


@pytest.mark.asyncio
async def test_extract_never_raises_on_navigation_failure():
    from leadgen.extractor import PageExtractor

    @asynccontextmanager
    async def _broken():
        raise TimeoutError("Timeout 15000ms exceeded")
        yield  # pragma: no cover

    page = await PageExtractor(settle_ms=0, page_factory=_broken).extract("https://slow.com")
    assert page.error == "Timeout 15000ms exceeded"
    assert page.emails == []


def test_parse_page_html_decodes_hidden_addresses_and_collects_links():
    from leadgen.extractor import parse_page_html

    html = """
    <html><body>
      <p>Bookings: events&#64;tacoplace&#46;com or maria [at] tacoplace [dot] com</p>
      <a href="/contact">Contact</a>
      <a href="https://tacoplace.com/team#owners">Team</a>
      <a href="javascript:void(0)">Menu</a>
    </body></html>
    """
    page = parse_page_html(html, "https://tacoplace.com/")
    assert page.emails == ["events@tacoplace.com", "maria@tacoplace.com"]
    assert page.links == ["https://tacoplace.com/contact", "https://tacoplace.com/team"]


def test_rank_links_prefers_contact_and_people_pages():
    from leadgen.extractor import rank_links
    from leadgen.models import TargetingProfile

    ranked = rank_links(
        [
            "https://tacoplace.com/about",
            "https://www.tacoplace.com/contact/",
            "https://tacoplace.com/contact",
            "https://other.com/team",
            "https://tacoplace.com/logo.png",
            "https://tacoplace.com/privacy",
            "https://tacoplace.com/locations/new-mexico",
            "https://tacoplace.com/team",
        ],
        "tacoplace.com",
        visited=["https://tacoplace.com/about/"],
        profile=TargetingProfile(geos=["New Mexico"]),
    )
    assert ranked == [
        "https://www.tacoplace.com/contact/",
        "https://tacoplace.com/team",
        "https://tacoplace.com/locations/new-mexico",
    ]


def test_parse_sitemap_urls_skips_nested_sitemaps():
    from leadgen.extractor import parse_sitemap_urls

    xml = (
        "<urlset><url><loc>https://tacoplace.com/team</loc></url>"
        "<url><loc>https://tacoplace.com/sitemap-posts.xml</loc></url></urlset>"
        "&lt;loc&gt;https://tacoplace.com/contact&lt;/loc&gt;"
    )
    assert parse_sitemap_urls(xml) == ["https://tacoplace.com/team", "https://tacoplace.com/contact"]


class _SitePage:
    """Serves fixed HTML per URL; anything else is a 404."""

    def __init__(self, routes):
        self.routes = routes
        self.visited = []
        self._current = ""

    async def goto(self, url, **kwargs):
        self.visited.append(url)
        if url not in self.routes:
            return _Resp(404)
        self._current = self.routes[url]
        return _Resp(200)

    async def content(self):
        return self._current


SITE = {
    "https://tacoplace.com": TACO_HTML.replace(
        "</body>",
        '<a href="/contact">Contact</a><a href="/menu">Menu</a><a href="/privacy">Privacy</a>'
        '<a href="https://www.yelp.com/biz/tacoplace">Yelp</a></body>',
    ),
    "https://tacoplace.com/robots.txt": "User-agent: *\nSitemap: https://tacoplace.com/sitemap.xml",
    "https://tacoplace.com/sitemap.xml": (
        "<urlset><url><loc>https://tacoplace.com/</loc></url>"
        "<url><loc>https://tacoplace.com/team</loc></url>"
        "<url><loc>https://tacoplace.com/catering</loc></url></urlset>"
    ),
    "https://tacoplace.com/contact": (
        "<html><body><p>Email maria [at] tacoplace [dot] com or call (505) 555-9876.</p></body></html>"
    ),
    "https://tacoplace.com/team": (
        '<html><body><h2>Maria Lopez, Owner</h2>'
        '<a href="https://www.instagram.com/tacoplace">Instagram</a></body></html>'
    ),
}


@pytest.mark.asyncio
async def test_crawl_merges_homepage_with_best_ranked_pages():
    from leadgen.extractor import PageExtractor

    site = _SitePage(SITE)
    page = await PageExtractor(settle_ms=0, page_factory=_factory(site)).crawl("https://tacoplace.com")

    assert page.error is None
    assert page.pages_visited == [
        "https://tacoplace.com",
        "https://tacoplace.com/contact",
        "https://tacoplace.com/team",
    ]
    assert site.visited[:3] == [
        "https://tacoplace.com",
        "https://tacoplace.com/robots.txt",
        "https://tacoplace.com/sitemap.xml",
    ]
    # homepage, robots, sitemap, then five ranked pages
    assert len(site.visited) == 8
    assert len(page.page_errors) == 3
    assert all(e.endswith("HTTP 404") for e in page.page_errors)

    assert page.title == "Taco Place | Albuquerque"
    assert page.emails == ["info@tacoplace.com", "catering@tacoplace.com", "maria@tacoplace.com"]
    assert page.phones == ["(505) 555-1234", "(505) 555-9876"]
    assert page.social_links.facebook == "https://www.facebook.com/tacoplace"
    assert page.social_links.instagram == "https://www.instagram.com/tacoplace"
    assert "Maria Lopez, Owner" in page.text


@pytest.mark.asyncio
async def test_crawl_stops_when_homepage_fails():
    from leadgen.extractor import PageExtractor

    site = _SitePage({})
    page = await PageExtractor(settle_ms=0, page_factory=_factory(site)).crawl("https://gone.com")

    assert page.error == "HTTP 404"
    assert page.page_errors == ["https://gone.com: HTTP 404"]
    assert site.visited == ["https://gone.com"]
