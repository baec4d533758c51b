from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from webaudit.domain.errors import (
    AuthenticationError,
    ParseError,
    QuotaExceededError,
    StageError,
    TransientNetworkError,
)

REQUEST_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Safari/537.36 webaudit/1.0"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def check_status(response: requests.Response, service: str) -> None:
    """Map an HTTP error status to the stage error taxonomy."""
    status = response.status_code
    if status in (401, 403):
        raise AuthenticationError(f"{service} rejected the credentials (HTTP {status})")
    if status == 429:
        raise QuotaExceededError(f"{service} quota exceeded (HTTP 429)")
    if status >= 500:
        raise TransientNetworkError(f"{service} returned HTTP {status}")
    if status >= 400:
        raise StageError(f"{service} returned HTTP {status}")


def send(
    session: requests.Session,
    method: str,
    url: str,
    service: str,
    timeout,
    **kwargs: Any,
) -> requests.Response:
    """One HTTP call; network-level failures become TransientNetworkError."""
    kwargs.setdefault("headers", REQUEST_HEADERS)
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except (requests.Timeout, requests.ConnectionError) as e:
        raise TransientNetworkError(f"{service}: {e}") from e
    except requests.RequestException as e:
        raise StageError(f"{service}: {e}") from e
    check_status(response, service)
    return response


def json_body(response: requests.Response, service: str) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise ParseError(f"{service} returned a body that is not JSON") from e
    if not isinstance(data, dict):
        raise ParseError(f"{service} returned {type(data).__name__}, expected an object")
    return data


def get_text(session: requests.Session, url: str, timeout, service: str = "site") -> Optional[str]:
    """GET a page; 404 gives None, other errors follow check_status."""
    try:
        response = session.get(url, timeout=timeout, headers=REQUEST_HEADERS, allow_redirects=True)
    except (requests.Timeout, requests.ConnectionError) as e:
        raise TransientNetworkError(f"{service}: {e}") from e
    except requests.RequestException as e:
        raise StageError(f"{service}: {e}") from e
    if response.status_code == 404:
        return None
    check_status(response, service)
    response.encoding = response.encoding or response.apparent_encoding or "utf-8"
    return response.text
