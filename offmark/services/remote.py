from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime

import httpx
from dateutil import parser as dt_parser

from offmark.services.common import parse_tags


DEFAULT_HEADERS = {
    "User-Agent": "Offmark/1.0",
    "Accept": "application/json",
}

BASIC_PROBE_TIMEOUT = 3.0

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """The remote server rejected a request or could not be reached."""

    def __init__(self, status_code: int | None, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"


class RemoteUnavailableError(RemoteError):
    def __init__(self, message: str):
        super().__init__(None, message)


@dataclass
class Label:
    name: str
    count: int = 0
    href: str = ""

    def as_dict(self):
        return {"name": self.name, "count": self.count, "href": self.href}


@dataclass
class RemoteBookmark:
    id: str
    url: str
    title: str
    labels: list[str] = field(default_factory=list)
    created: datetime | None = None
    read_progress: int = 0


def _normalize_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def _parse_remote_time(value: str | None):
    if not value:
        return None
    try:
        return dt_parser.isoparse(value)
    except (TypeError, ValueError):
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("message", "error", "detail"):
            if payload.get(key):
                return str(payload[key])
    text = response.text.strip()
    return text[:500] if text else response.reason_phrase or "request failed"


class RemoteClient:
    """Readeck-compatible JSON API client.

    Only the handful of calls the offline engine needs are implemented. Every
    request carries a timeout; transport failures surface as
    ``RemoteUnavailableError`` and non-2xx answers as ``RemoteError``.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        probe_timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
        clock=time.monotonic,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or None
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self._transport = transport
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _client(self, timeout: float) -> httpx.Client:
        headers = dict(DEFAULT_HEADERS)
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if not self.is_configured:
            raise RemoteUnavailableError("No server endpoint configured.")
        try:
            with self._client(self.timeout) as client:
                response = client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteUnavailableError(_normalize_error(exc)) from exc
        if not 200 <= response.status_code < 300:
            raise RemoteError(response.status_code, _error_message(response))
        return response

    def create_record(self, url: str, title: str = "", tags=None) -> str:
        body = {"url": url, "title": title}
        labels = parse_tags(tags)
        if labels:
            body["labels"] = labels
        response = self._request("POST", "/api/bookmarks", json=body)

        record_id = response.headers.get("Bookmark-Id")
        if record_id:
            return record_id
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if isinstance(payload, dict):
            return str(payload.get("id") or payload.get("message") or "")
        return ""

    def delete_record(self, record_id: str) -> None:
        self._request("DELETE", f"/api/bookmarks/{record_id}")

    def list_labels(self) -> list[Label]:
        response = self._request("GET", "/api/bookmarks/labels")
        rows = response.json() or []
        return [
            Label(
                name=str(row.get("name") or ""),
                count=int(row.get("count") or 0),
                href=str(row.get("href") or ""),
            )
            for row in rows
            if isinstance(row, dict) and row.get("name")
        ]

    def list_bookmarks(self) -> list[RemoteBookmark]:
        response = self._request("GET", "/api/bookmarks")
        rows = response.json() or []
        items = []
        for row in rows:
            if not isinstance(row, dict) or not row.get("id"):
                continue
            items.append(
                RemoteBookmark(
                    id=str(row["id"]),
                    url=str(row.get("url") or ""),
                    title=str(row.get("title") or ""),
                    labels=parse_tags(row.get("labels") or []),
                    created=_parse_remote_time(row.get("created")),
                    read_progress=int(row.get("read_progress") or 0),
                )
            )
        return items

    def health_check(self) -> bool:
        """Probe the server within ``probe_timeout`` seconds; never raises."""
        if not self.is_configured:
            return False
        deadline = self._clock() + self.probe_timeout
        try:
            with self._client(self.probe_timeout) as client:
                response = client.get("/api/info")
            return 200 <= response.status_code < 300
        except httpx.HTTPError as exc:
            logger.debug("Info endpoint probe failed: %s", _normalize_error(exc))

        # Servers without the info endpoint still answer on the root URL.
        remaining = min(BASIC_PROBE_TIMEOUT, deadline - self._clock())
        if remaining <= 0:
            return False
        try:
            with self._client(remaining) as client:
                response = client.head("/")
            return response.status_code < 500
        except httpx.HTTPError as exc:
            logger.debug("Basic endpoint probe failed: %s", _normalize_error(exc))
        return False
