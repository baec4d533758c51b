from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from webaudit.adapters.http_analyzers import (
    HeaderSecurityAnalyzer,
    HtmlMetadataExtractor,
    PageSpeedAnalyzer,
    PlacesDirectory,
    fingerprint,
    match_place,
    parse_metadata,
    score_security_headers,
)
from webaudit.adapters.http_common import check_status, json_body
from webaudit.adapters.llm_providers import AnthropicMessagesProvider, OpenAIChatProvider, build_providers
from webaudit.domain.errors import (
    AuthenticationError,
    ParseError,
    QuotaExceededError,
    StageError,
    TransientNetworkError,
)


# -----------------------------
# Test doubles
# -----------------------------
def make_response(status: int = 200, body: Any = "", headers: Optional[Dict[str, str]] = None, url: str = "") -> requests.Response:
    r = requests.Response()
    r.status_code = status
    if not isinstance(body, (str, bytes)):
        body = json.dumps(body)
    r._content = body.encode("utf-8") if isinstance(body, str) else body
    r.headers = CaseInsensitiveDict(headers or {})
    r.encoding = "utf-8"
    r.url = url
    return r


class FakeSession:
    """Answers by URL; records every call."""

    def __init__(self, routes: Dict[str, Any]):
        self.routes = routes
        self.calls: List[Dict[str, Any]] = []

    def _answer(self, url: str):
        answer = self.routes.get(url)
        if answer is None:
            return make_response(404, url=url)
        if isinstance(answer, list):
            answer = answer.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def request(self, method: str, url: str, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        return self._answer(url)

    def get(self, url: str, timeout=None, **kwargs):
        return self.request("GET", url, timeout=timeout, **kwargs)


PAGE = """
<html><head>
<title> Acme Widgets </title>
<meta name="description" content="Widgets for every occasion">
<meta name="viewport" content="width=device-width">
<meta property="og:title" content="Acme">
<link rel="canonical" href="https://example.com/">
<script type="application/ld+json">{"@type": "Organization", "name": "Acme"}</script>
<script src="/wp-content/themes/acme/jquery.min.js"></script>
</head><body>
<h1>Welcome</h1><h2>Products</h2><h2>About</h2>
<img src="a.png" alt="logo"><img src="b.png">
</body></html>
"""


# -----------------------------
# Status mapping
# -----------------------------
@pytest.mark.parametrize(
    "status, exc",
    [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (429, QuotaExceededError),
        (503, TransientNetworkError),
        (400, StageError),
    ],
)
def test_check_status_maps_http_errors(status, exc):
    with pytest.raises(exc):
        check_status(make_response(status), "svc")


def test_check_status_ok():
    check_status(make_response(200), "svc")


def test_json_body_rejects_non_json():
    with pytest.raises(ParseError):
        json_body(make_response(200, "<html>"), "svc")
    with pytest.raises(ParseError):
        json_body(make_response(200, [1, 2]), "svc")


def test_network_errors_become_transient():
    session = FakeSession({
        "https://example.com": requests.ConnectionError("refused"),
        "http://example.com": requests.ConnectionError("refused"),
    })
    with pytest.raises(TransientNetworkError):
        HeaderSecurityAnalyzer(session=session).analyze("https://example.com", 5)


# -----------------------------
# Metadata / technology / security
# -----------------------------
def test_parse_metadata():
    data = parse_metadata(PAGE)
    assert data["title"] == "Acme Widgets"
    assert data["description"] == "Widgets for every occasion"
    assert data["h1_tags"] == ["Welcome"]
    assert data["h2_tags"] == ["Products", "About"]
    assert data["open_graph"] == {"title": "Acme"}
    assert data["schema_org"] == ["Organization"]
    assert data["canonical_url"] == "https://example.com/"
    assert data["has_viewport_meta"] is True
    assert data["images_total"] == 2
    assert data["images_missing_alt"] == 1


def test_metadata_extractor_checks_robots_and_sitemap():
    session = FakeSession({
        "https://example.com": make_response(200, PAGE),
        "https://example.com/robots.txt": make_response(200, "User-agent: *\nSitemap: https://example.com/map.xml\n"),
        "https://example.com/map.xml": make_response(200, "<urlset></urlset>"),
    })
    data = HtmlMetadataExtractor(session=session).extract("https://example.com", 9)
    assert data["has_robots_txt"] is True
    assert data["has_sitemap"] is True
    assert all(c["timeout"] == 3 for c in session.calls)


def test_metadata_extractor_without_robots_or_sitemap():
    session = FakeSession({"https://example.com": make_response(200, PAGE)})
    data = HtmlMetadataExtractor(session=session).extract("https://example.com", 9)
    assert data["has_robots_txt"] is False
    assert data["has_sitemap"] is False


def test_metadata_extractor_treats_blocked_robots_as_missing():
    session = FakeSession({
        "https://example.com": make_response(200, PAGE),
        "https://example.com/robots.txt": make_response(403),
        "https://example.com/sitemap.xml": requests.ConnectionError("reset"),
    })
    data = HtmlMetadataExtractor(session=session).extract("https://example.com", 9)
    assert data["title"] == "Acme Widgets"
    assert data["has_robots_txt"] is False
    assert data["has_sitemap"] is False


def test_metadata_extractor_page_errors_still_fail():
    session = FakeSession({"https://example.com": make_response(403)})
    with pytest.raises(AuthenticationError):
        HtmlMetadataExtractor(session=session).extract("https://example.com", 9)


def test_fingerprint():
    found = fingerprint(PAGE, CaseInsensitiveDict({"Server": "nginx/1.25", "X-Powered-By": "PHP/8.2"}))
    assert found["cms"] == ["WordPress"]
    assert "jQuery" in found["javascript_frameworks"]
    assert found["web_servers"] == ["Nginx"]
    assert found["programming_languages"] == ["PHP/8.2"]


def test_score_security_headers():
    headers = CaseInsensitiveDict({
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
    })
    scored = score_security_headers(headers)
    assert scored["hsts"]["score"] == 100
    assert scored["x_frame_options"]["score"] == 100
    assert scored["x_content_type_options"]["score"] == 100
    assert scored["csp"] == {"present": False, "score": 0}


def test_security_analyzer_result_shape():
    session = FakeSession({
        "https://example.com": make_response(
            200, "", {"Strict-Transport-Security": "max-age=600", "Server": "Apache/2.4.1"}, url="https://example.com/"
        ),
    })
    data = HeaderSecurityAnalyzer(session=session).analyze("http://example.com", 5)
    assert data["ssl_analysis"] == {"has_ssl": True, "ssl_grade": "A"}
    assert data["security_headers"]["hsts"]["present"] is True
    assert data["vulnerabilities"] == ["Server header discloses version: Apache/2.4.1"]


def test_security_analyzer_falls_back_to_http_on_certificate_error():
    session = FakeSession({
        "https://example.com": requests.exceptions.SSLError("bad cert"),
        "http://example.com": make_response(200, "", {}, url="http://example.com/"),
    })
    data = HeaderSecurityAnalyzer(session=session).analyze("https://example.com", 5)
    assert data["ssl_analysis"]["has_ssl"] is False
    assert data["ssl_analysis"]["ssl_grade"] == "F"


def test_security_analyzer_falls_back_to_http_when_https_is_refused():
    session = FakeSession({
        "https://example.com": requests.ConnectionError("port 443 closed"),
        "http://example.com": make_response(200, "", {}, url="http://example.com/"),
    })
    data = HeaderSecurityAnalyzer(session=session).analyze("http://example.com", 5)
    assert data["ssl_analysis"]["has_ssl"] is False
    assert "port 443 closed" in data["ssl_analysis"]["ssl_error"]
    assert "Site is not served over a valid TLS certificate" in data["vulnerabilities"]
    assert [c["url"] for c in session.calls] == ["https://example.com", "http://example.com"]


# -----------------------------
# PageSpeed / Places
# -----------------------------
def _lighthouse(perf: float) -> Dict[str, Any]:
    return {
        "lighthouseResult": {
            "categories": {"performance": {"score": perf}, "seo": {"score": 0.9}},
            "audits": {"largest-contentful-paint": {"numericValue": 1234.5}, "uses-http2": {"score": 1}},
        }
    }


def test_pagespeed_combines_strategies():
    session = FakeSession({
        "https://www.googleapis.com/pagespeedonline/v5/runPagespeed": [
            make_response(200, _lighthouse(0.9)),
            make_response(200, _lighthouse(0.95)),
        ],
    })
    data = PageSpeedAnalyzer("key", session=session).analyze("https://example.com", 60)
    assert data["mobile_score"] == 90
    assert data["desktop_score"] == 95
    assert data["core_web_vitals"]["lcp"] == 1234.5
    assert data["network_metrics"]["uses_http2"] is True
    assert ("key", "key") in session.calls[0]["params"]


def test_pagespeed_missing_lighthouse_is_parse_error():
    session = FakeSession({"https://www.googleapis.com/pagespeedonline/v5/runPagespeed": make_response(200, {})})
    with pytest.raises(ParseError):
        PageSpeedAnalyzer(session=session).analyze("https://example.com", 60)


def test_places_lookup_matches_by_website():
    places = {
        "places": [
            {"id": "1", "displayName": {"text": "Other Co"}, "websiteUri": "https://other.com"},
            {
                "id": "2", "displayName": {"text": "Acme"}, "websiteUri": "https://www.example.com/",
                "rating": 4.4, "userRatingCount": 51, "businessStatus": "OPERATIONAL", "photos": [{}, {}],
            },
        ]
    }
    session = FakeSession({"https://places.googleapis.com/v1/places:searchText": make_response(200, places)})
    data = PlacesDirectory("key", session=session).lookup("Acme", "https://example.com", 30)

    entity = data["matched_entity"]
    assert entity["place_id"] == "2"
    assert entity["is_verified"] is True
    assert entity["total_reviews"] == 51
    assert entity["photo_count"] == 2
    assert [p["place_id"] for p in data["nearby_competitors"]] == ["1"]
    assert session.calls[0]["json"]["textQuery"] == "Acme"


def test_places_requires_api_key():
    with pytest.raises(AuthenticationError):
        PlacesDirectory("", session=FakeSession({})).lookup("Acme", None, 30)


def test_match_place_falls_back_to_first():
    assert match_place([], "https://example.com") is None
    assert match_place([{"website": None, "place_id": "x"}], "https://example.com")["place_id"] == "x"


# -----------------------------
# LLM providers
# -----------------------------
def test_openai_provider_reads_message_content():
    session = FakeSession({
        OpenAIChatProvider.endpoint: make_response(200, {"choices": [{"message": {"content": "Score: 80"}}]}),
    })
    provider = OpenAIChatProvider("sk-test", connect_timeout=5, session=session)
    assert provider.generate("prompt", 45) == "Score: 80"
    assert session.calls[0]["timeout"] == (5, 45)
    assert session.calls[0]["headers"]["Authorization"] == "Bearer sk-test"


def test_anthropic_provider_joins_text_blocks():
    body = {"content": [{"type": "text", "text": "Good site. "}, {"type": "text", "text": "Score: 75"}]}
    session = FakeSession({AnthropicMessagesProvider.endpoint: make_response(200, body)})
    assert AnthropicMessagesProvider("key", session=session).generate("prompt", 45) == "Good site. Score: 75"


def test_provider_quota_error():
    session = FakeSession({OpenAIChatProvider.endpoint: make_response(429)})
    with pytest.raises(QuotaExceededError):
        OpenAIChatProvider("sk-test", session=session).generate("prompt", 45)


def test_build_providers_skips_missing_keys_and_unknown_names():
    providers = build_providers(
        ["openai", "anthropic", "mystery"],
        keys={"openai": "sk", "anthropic": ""},
        models={"openai": "gpt-4o"},
        connect_timeout=10,
    )
    assert len(providers) == 1
    assert providers[0].label == "OpenAI"
    assert providers[0].model == "gpt-4o"
