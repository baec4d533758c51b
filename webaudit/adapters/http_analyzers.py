"""
HTTP implementations of the stage analyzers.

Every adapter takes a requests.Session so tests and the app can share or
replace it. Errors are raised as StageError subtypes (see http_common).
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from webaudit.adapters.http_common import REQUEST_HEADERS, get_text, json_body, send
from webaudit.domain.errors import AuthenticationError, ParseError, StageError, TransientNetworkError
from webaudit.ports.analyzers import (
    BusinessDirectory,
    MetadataExtractor,
    PerformanceAnalyzer,
    SecurityAnalyzer,
    TechnologyDetector,
)

logger = logging.getLogger(__name__)


# -----------------------------
# Performance (PageSpeed Insights)
# -----------------------------
PAGESPEED_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"

CORE_WEB_VITALS = {
    "lcp": "largest-contentful-paint",
    "fid": "max-potential-fid",
    "cls": "cumulative-layout-shift",
    "fcp": "first-contentful-paint",
    "inp": "interaction-to-next-paint",
}


def _audit_value(audits: Dict[str, Any], key: str) -> Optional[float]:
    audit = audits.get(key) or {}
    value = audit.get("numericValue")
    return float(value) if isinstance(value, (int, float)) else None


def _audit_passed(audits: Dict[str, Any], key: str) -> bool:
    return (audits.get(key) or {}).get("score") == 1


def _category_score(categories: Dict[str, Any], key: str) -> int:
    score = (categories.get(key) or {}).get("score")
    return int(round(float(score) * 100)) if isinstance(score, (int, float)) else 0


def parse_pagespeed(data: Dict[str, Any]) -> Dict[str, Any]:
    lighthouse = data.get("lighthouseResult")
    if not isinstance(lighthouse, dict):
        raise ParseError("PageSpeed response has no lighthouseResult")
    audits = lighthouse.get("audits") or {}
    categories = lighthouse.get("categories") or {}
    return {
        "core_web_vitals": {name: _audit_value(audits, key) for name, key in CORE_WEB_VITALS.items()},
        "lighthouse_scores": {
            "performance": _category_score(categories, "performance"),
            "seo": _category_score(categories, "seo"),
            "accessibility": _category_score(categories, "accessibility"),
            "best_practices": _category_score(categories, "best-practices"),
        },
        "network_metrics": {
            "total_byte_weight": _audit_value(audits, "total-byte-weight"),
            "dom_size": _audit_value(audits, "dom-size"),
            "uses_http2": _audit_passed(audits, "uses-http2"),
            "uses_text_compression": _audit_passed(audits, "uses-text-compression"),
        },
    }


class PageSpeedAnalyzer(PerformanceAnalyzer):
    def __init__(self, api_key: str = "", session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.session = session or requests.Session()

    def _run(self, url: str, strategy: str, timeout: float) -> Dict[str, Any]:
        params = [("url", url), ("strategy", strategy)]
        params += [("category", c) for c in ("PERFORMANCE", "SEO", "ACCESSIBILITY", "BEST_PRACTICES")]
        if self.api_key:
            params.append(("key", self.api_key))
        response = send(self.session, "GET", PAGESPEED_URL, "PageSpeed", timeout, params=params)
        return parse_pagespeed(json_body(response, "PageSpeed"))

    def analyze(self, url: str, timeout: float) -> Dict[str, Any]:
        # Both strategies share the stage budget.
        mobile = self._run(url, "mobile", timeout / 2)
        desktop = self._run(url, "desktop", timeout / 2)
        return {
            "mobile_score": mobile["lighthouse_scores"]["performance"],
            "desktop_score": desktop["lighthouse_scores"]["performance"],
            "core_web_vitals": mobile["core_web_vitals"],
            "network_metrics": mobile["network_metrics"],
            "lighthouse_scores": {"mobile": mobile["lighthouse_scores"], "desktop": desktop["lighthouse_scores"]},
        }


# -----------------------------
# Security headers / TLS
# -----------------------------
def _score_hsts(value: str) -> int:
    score = 50
    m = re.search(r"max-age=(\d+)", value, re.I)
    if m and int(m.group(1)) >= 31536000:
        score += 20
    if "includesubdomains" in value.lower():
        score += 15
    if "preload" in value.lower():
        score += 15
    return min(score, 100)


def _score_csp(value: str) -> int:
    directives = {}
    for part in value.split(";"):
        bits = part.strip().split(None, 1)
        if bits:
            directives[bits[0].lower()] = bits[1] if len(bits) > 1 else ""
    score = 40
    if "default-src" in directives:
        score += 15
    if "script-src" in directives and "unsafe-inline" not in directives["script-src"]:
        score += 20
    if directives.get("object-src") == "'none'":
        score += 10
    if "base-uri" in directives:
        score += 10
    if "frame-ancestors" in directives:
        score += 5
    return min(score, 100)


def _score_frame_options(value: str) -> int:
    v = value.strip().upper()
    if v == "DENY":
        return 100
    if v == "SAMEORIGIN":
        return 90
    if v.startswith("ALLOW-FROM"):
        return 70
    return 50


def _score_xss(value: str) -> int:
    v = value.replace(" ", "").lower()
    if v == "1;mode=block":
        return 100
    if v.startswith("1"):
        return 80
    if v == "0":
        return 20
    return 50


def _score_referrer(value: str) -> int:
    strict = ("no-referrer", "same-origin", "strict-origin", "strict-origin-when-cross-origin")
    return 100 if value.strip().lower() in strict else 70


SECURITY_HEADERS = {
    "hsts": ("Strict-Transport-Security", _score_hsts),
    "csp": ("Content-Security-Policy", _score_csp),
    "x_frame_options": ("X-Frame-Options", _score_frame_options),
    "x_content_type_options": ("X-Content-Type-Options", lambda v: 100 if v.strip().lower() == "nosniff" else 50),
    "x_xss_protection": ("X-XSS-Protection", _score_xss),
    "referrer_policy": ("Referrer-Policy", _score_referrer),
    "permissions_policy": ("Permissions-Policy", lambda v: 100 if v.strip() else 50),
}


def score_security_headers(headers) -> Dict[str, Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {}
    for name, (header, scorer) in SECURITY_HEADERS.items():
        value = headers.get(header)
        if value is None:
            out[name] = {"present": False, "score": 0}
        else:
            out[name] = {"present": True, "value": value, "score": scorer(value)}
    return out


def _ssl_grade(has_ssl: bool, headers: Dict[str, Dict[str, Any]]) -> str:
    if not has_ssl:
        return "F"
    hsts = headers.get("hsts") or {}
    if hsts.get("score", 0) >= 85:
        return "A+"
    if hsts.get("present"):
        return "A"
    return "B"


class HeaderSecurityAnalyzer(SecurityAnalyzer):
    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def analyze(self, url: str, timeout: float) -> Dict[str, Any]:
        parsed = urlparse(url)
        https_url = parsed._replace(scheme="https").geturl()

        has_ssl = True
        ssl_error = None
        try:
            response = send(self.session, "GET", https_url, "security check", timeout, allow_redirects=True)
        except TransientNetworkError as e:
            # No usable HTTPS is a finding, whatever the transport error.
            # Only a site unreachable over plain HTTP as well fails the stage.
            has_ssl = False
            ssl_error = str(e)
            logger.info("HTTPS unavailable for %s (%s); checking over HTTP", parsed.netloc, e)
            response = send(self.session, "GET", parsed._replace(scheme="http").geturl(), "security check", timeout)

        headers = score_security_headers(response.headers)
        vulnerabilities: List[str] = []
        if not has_ssl:
            vulnerabilities.append("Site is not served over a valid TLS certificate")
        if urlparse(response.url or https_url).scheme != "https":
            vulnerabilities.append("HTTPS requests are redirected to plain HTTP")
        server = response.headers.get("Server", "")
        if re.search(r"\d", server):
            vulnerabilities.append(f"Server header discloses version: {server}")

        ssl_analysis: Dict[str, Any] = {"has_ssl": has_ssl, "ssl_grade": _ssl_grade(has_ssl, headers)}
        if ssl_error:
            ssl_analysis["ssl_error"] = ssl_error
        return {"ssl_analysis": ssl_analysis, "security_headers": headers, "vulnerabilities": vulnerabilities}


# -----------------------------
# Technology fingerprinting
# -----------------------------
TECHNOLOGY_PATTERNS: Dict[str, Dict[str, str]] = {
    "cms": {
        "WordPress": r"wp-content|wp-includes",
        "Drupal": r"drupal-settings-json|/sites/default/files",
        "Joomla": r"/media/jui/|joomla",
        "Shopify": r"cdn\.shopify\.com",
        "Wix": r"static\.wixstatic\.com",
        "Squarespace": r"squarespace\.com",
    },
    "javascript_frameworks": {
        "React": r"data-reactroot|react(?:\.production)?\.min\.js|__NEXT_DATA__",
        "Vue.js": r"data-v-[0-9a-f]{6,}|vue(?:\.runtime)?(?:\.min)?\.js",
        "Angular": r"ng-version=|angular(?:\.min)?\.js",
        "jQuery": r"jquery(?:[.-][\d.]+)?(?:\.min)?\.js",
        "Next.js": r"__NEXT_DATA__|/_next/static/",
        "Nuxt.js": r"__NUXT__|/_nuxt/",
    },
    "analytics": {
        "Google Analytics": r"google-analytics\.com|gtag\(|googletagmanager\.com/gtag",
        "Google Tag Manager": r"googletagmanager\.com/gtm\.js",
        "Facebook Pixel": r"connect\.facebook\.net/.+/fbevents\.js",
        "Hotjar": r"static\.hotjar\.com",
    },
    "css_frameworks": {
        "Bootstrap": r"bootstrap(?:\.min)?\.css",
        "Tailwind CSS": r"tailwind",
        "Font Awesome": r"font-?awesome",
    },
    "cdn": {
        "Cloudflare": r"cdnjs\.cloudflare\.com|cloudflare",
        "jsDelivr": r"cdn\.jsdelivr\.net",
        "unpkg": r"unpkg\.com",
    },
}

SERVER_HEADER_PATTERNS: Dict[str, str] = {
    "Nginx": r"nginx",
    "Apache": r"apache",
    "Microsoft IIS": r"microsoft-iis",
    "LiteSpeed": r"litespeed",
    "Cloudflare": r"cloudflare",
}


def fingerprint(html: str, headers) -> Dict[str, List[str]]:
    found: Dict[str, List[str]] = {}
    for category, patterns in TECHNOLOGY_PATTERNS.items():
        hits = [name for name, pattern in patterns.items() if re.search(pattern, html, re.I)]
        if hits:
            found[category] = hits

    server = headers.get("Server", "") or ""
    servers = [name for name, pattern in SERVER_HEADER_PATTERNS.items() if re.search(pattern, server, re.I)]
    if servers:
        found["web_servers"] = servers
    powered_by = headers.get("X-Powered-By")
    if powered_by:
        found.setdefault("programming_languages", []).append(powered_by.strip())
    return found


class RegexTechnologyDetector(TechnologyDetector):
    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def detect(self, url: str, timeout: float) -> Dict[str, Any]:
        response = send(self.session, "GET", url, "technology scan", timeout, allow_redirects=True)
        return fingerprint(response.text or "", response.headers)


# -----------------------------
# Metadata / on-page SEO
# -----------------------------
def parse_metadata(html: str) -> Dict[str, Any]:
    soup = BeautifulSoup(html, "html.parser")

    schema_types: List[str] = []
    for tag in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            ld = json.loads(tag.string or "")
        except ValueError:
            continue
        for item in ld if isinstance(ld, list) else [ld]:
            if isinstance(item, dict) and item.get("@type"):
                t = item["@type"]
                schema_types.extend(str(x) for x in (t if isinstance(t, list) else [t]))

    title = soup.title.string.strip() if soup.title and soup.title.string else ""
    desc_tag = soup.find("meta", attrs={"name": re.compile(r"^description$", re.I)})
    description = (desc_tag.get("content") or "").strip() if desc_tag else ""

    open_graph = {}
    for tag in soup.find_all("meta", attrs={"property": re.compile(r"^og:", re.I)}):
        if tag.get("content"):
            open_graph[tag["property"][3:].lower()] = tag["content"].strip()

    canonical = soup.find("link", attrs={"rel": "canonical"})
    images = soup.find_all("img")

    return {
        "title": title,
        "description": description,
        "h1_tags": [h.get_text(strip=True) for h in soup.find_all("h1") if h.get_text(strip=True)],
        "h2_tags": [h.get_text(strip=True) for h in soup.find_all("h2") if h.get_text(strip=True)],
        "open_graph": open_graph,
        "schema_org": list(dict.fromkeys(schema_types)),
        "canonical_url": (canonical.get("href") or "").strip() if canonical else "",
        "has_viewport_meta": soup.find("meta", attrs={"name": re.compile(r"^viewport$", re.I)}) is not None,
        "images_total": len(images),
        "images_missing_alt": sum(1 for img in images if not (img.get("alt") or "").strip()),
    }


class HtmlMetadataExtractor(MetadataExtractor):
    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def _optional_text(self, url: str, timeout: float, label: str) -> Optional[str]:
        """robots.txt and sitemap.xml are findings; a failed fetch counts as absent."""
        try:
            return get_text(self.session, url, timeout, label)
        except StageError as e:
            logger.warning("%s unavailable (%s: %s); recorded as missing", label, type(e).__name__, e)
            return None

    def extract(self, url: str, timeout: float) -> Dict[str, Any]:
        # Page plus robots.txt and sitemap.xml share the stage budget.
        per_call = timeout / 3
        html = get_text(self.session, url, per_call, "metadata")
        if html is None:
            raise ParseError(f"{url} returned 404")
        data = parse_metadata(html)

        robots = self._optional_text(urljoin(url, "/robots.txt"), per_call, "robots.txt")
        data["has_robots_txt"] = bool(robots and robots.strip())
        sitemap_url = urljoin(url, "/sitemap.xml")
        if robots:
            m = re.search(r"^\s*sitemap:\s*(\S+)", robots, re.I | re.M)
            if m:
                sitemap_url = m.group(1)
        sitemap = self._optional_text(sitemap_url, per_call, "sitemap")
        data["has_sitemap"] = bool(sitemap and ("<urlset" in sitemap or "<sitemapindex" in sitemap))
        return data


# -----------------------------
# Business directory (Google Places)
# -----------------------------
PLACES_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
PLACES_FIELDS = ",".join((
    "places.id", "places.displayName", "places.formattedAddress", "places.location",
    "places.websiteUri", "places.rating", "places.userRatingCount", "places.photos",
    "places.businessStatus", "places.types", "places.nationalPhoneNumber",
))


def format_place(place: Dict[str, Any]) -> Dict[str, Any]:
    photos = place.get("photos") or []
    return {
        "place_id": place.get("id"),
        "name": (place.get("displayName") or {}).get("text", ""),
        "address": place.get("formattedAddress", ""),
        "latitude": (place.get("location") or {}).get("latitude"),
        "longitude": (place.get("location") or {}).get("longitude"),
        "phone": place.get("nationalPhoneNumber"),
        "website": place.get("websiteUri"),
        "rating": place.get("rating"),
        "total_reviews": place.get("userRatingCount") or 0,
        "photo_count": len(photos),
        "types": place.get("types") or [],
        "is_verified": place.get("businessStatus") == "OPERATIONAL",
        "status": (place.get("businessStatus") or "unknown").lower(),
    }


def _host(url: Optional[str]) -> str:
    host = (urlparse(url or "").hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def match_place(places: List[Dict[str, Any]], website_url: Optional[str]) -> Optional[Dict[str, Any]]:
    """Prefer the place whose website host equals the audited host; else the first result."""
    if not places:
        return None
    target = _host(website_url)
    if target:
        for place in places:
            if _host(place.get("website")) == target:
                return place
    return places[0]


class PlacesDirectory(BusinessDirectory):
    def __init__(self, api_key: str = "", session: Optional[requests.Session] = None, max_results: int = 10):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.max_results = max_results

    def lookup(self, business_name: str, website_url: Optional[str], timeout: float) -> Dict[str, Any]:
        if not self.api_key:
            raise AuthenticationError("Places API key is not configured")
        headers = dict(REQUEST_HEADERS)
        headers.update({"X-Goog-Api-Key": self.api_key, "X-Goog-FieldMask": PLACES_FIELDS})
        response = send(
            self.session, "POST", PLACES_SEARCH_URL, "Places", timeout,
            headers=headers, json={"textQuery": business_name, "maxResultCount": self.max_results},
        )
        places = [format_place(p) for p in json_body(response, "Places").get("places") or []]
        matched = match_place(places, website_url)
        logger.debug("Places lookup %r: %d result(s), matched=%s", business_name, len(places), bool(matched))
        return {
            "matched_entity": matched,
            "nearby_competitors": [p for p in places if p is not matched],
        }
