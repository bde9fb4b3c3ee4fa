"""Blocking HTTP client for Esri REST services."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse
from urllib.request import ProxyHandler, Request, build_opener

from .query import build_query_url


LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
USER_AGENT = "forest-query/0.1"


class EsriRestError(RuntimeError):
    """Raised when a service reports an error or returns an unreadable body."""

    def __init__(self, message: str, *, url: Optional[str] = None, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.code = code


def parse_body(raw: bytes, *, url: Optional[str] = None) -> Any:
    """Decode a response body as JSON.

    Bodies missing a trailing newline, padded with whitespace or prefixed with a
    UTF-8 byte order mark are accepted.
    """

    try:
        text = raw.decode("utf-8-sig").strip()
    except UnicodeDecodeError as exc:
        raise EsriRestError(f"Service returned a body that is not valid UTF-8: {exc}", url=url) from exc
    if not text:
        raise EsriRestError("Service returned an empty response body", url=url)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise EsriRestError(f"Service returned malformed JSON: {exc}", url=url) from exc


def raise_for_error(payload: Any, *, url: Optional[str] = None) -> None:
    if not isinstance(payload, dict) or "error" not in payload:
        return
    error = payload["error"] or {}
    if not isinstance(error, dict):
        raise EsriRestError(str(error), url=url)
    code = error.get("code")
    message = error.get("message") or "Unknown error"
    details = [detail for detail in error.get("details") or [] if detail]
    if details:
        message = f"{message} ({'; '.join(str(detail) for detail in details)})"
    raise EsriRestError(f"{code}: {message}" if code else message, url=url, code=code)


class RestClient:
    """Anonymous connection used for every request against a REST endpoint."""

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT, referer: Optional[str] = None) -> None:
        self.timeout = timeout
        self._referer = referer.rstrip("/") if referer else None
        self._opener = build_opener(ProxyHandler({}))

    def _default_headers(self, request_url: str) -> Dict[str, str]:
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if self._referer:
            headers["Referer"] = self._referer
        else:
            parsed = urlparse(request_url)
            if parsed.scheme and parsed.netloc:
                headers["Referer"] = f"{parsed.scheme}://{parsed.netloc}"
        return headers

    def _get(self, request_url: str) -> bytes:
        request = Request(request_url, headers=self._default_headers(request_url))
        with self._opener.open(request, timeout=self.timeout) as response:
            return response.read()

    def get(self, url: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Issue a GET and return the decoded JSON payload.

        Network and timeout errors propagate unchanged.
        """

        request_url = build_query_url(url, params)
        logging.debug("TRACE: RestClient.get(url='%s')", request_url)
        body = self._get(request_url)
        payload = parse_body(body, url=request_url)
        raise_for_error(payload, url=request_url)
        return payload

    def describe(self, url: str) -> Dict[str, Any]:
        """Return the JSON metadata document of a service or layer."""

        payload = self.get(url, {"f": "json"})
        if not isinstance(payload, dict):
            raise EsriRestError("Service metadata is not a JSON object", url=url)
        return payload
