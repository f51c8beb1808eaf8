"""Panel API client - resolves subscriber tags from a 3x-ui panel.

Tags are written into a client's comment field on the panel, e.g.
"tags=streaming,gaming; note=family plan". Each subscription ID is matched
against the `subId` of clients in the configured inbounds.
"""

from __future__ import annotations

import http.cookiejar
import json
import logging
import re
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger("georules")

_TIMEOUT = 5  # seconds
_USER_AGENT = "geo-rules-proxy/1.0"

# Capture after 'tags=' up to ';', newline, end, or whitespace before another key=value
TAGS_RE = re.compile(r"tags=([\s\S]*?)(?=(?:\s+\S+=)|;|\n|$)")


def parse_comment_tags(comment: str) -> list[str]:
    """Extract tag names from a panel comment, duplicate-free in first-seen order."""
    tags: list[str] = []
    for match in TAGS_RE.finditer(comment or ""):
        for tag in match.group(1).split(","):
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
    return tags


class TagSource(Protocol):
    def get_user_tags(self, subscription_id: str) -> list[str]: ...


class NullTagSource:
    """Tag source used when no panel is configured."""

    def get_user_tags(self, subscription_id: str) -> list[str]:
        return []


@dataclass
class PanelOptions:
    """Connection settings for the panel."""

    address: str
    username: str
    password: str
    inbound_ids: list[int] = field(default_factory=list)
    cache_ttl: float = 30.0


class PanelClient:
    """Reads client comments from the panel's inbound list.

    The inbound list is cached for `cache_ttl` seconds. Fail-open: when the
    panel cannot be reached the last good snapshot is used, or no tags at all.
    """

    def __init__(self, options: PanelOptions):
        self.options = options
        self._base = options.address.rstrip("/")
        self._opener = urllib.request.build_opener(
            urllib.request.HTTPCookieProcessor(http.cookiejar.CookieJar())
        )
        self._lock = threading.Lock()
        self._clients: dict[str, str] = {}  # subId -> comment
        self._fetched_at: float | None = None

    def _request(self, path: str, data: dict | None = None) -> dict:
        body = urllib.parse.urlencode(data).encode() if data is not None else None
        req = urllib.request.Request(
            f"{self._base}{path}",
            data=body,
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
        )
        with self._opener.open(req, timeout=_TIMEOUT) as resp:
            payload = json.loads(resp.read())
        if not isinstance(payload, dict) or not payload.get("success", False):
            msg = payload.get("msg") if isinstance(payload, dict) else payload
            raise ValueError(f"panel request {path} failed: {msg}")
        return payload

    def login(self) -> None:
        self._request(
            "/login",
            {"username": self.options.username, "password": self.options.password},
        )

    def fetch_inbounds(self) -> list[dict]:
        """Log in and return the raw inbound list."""
        self.login()
        payload = self._request("/panel/api/inbounds/list")
        return payload.get("obj") or []

    def _index_clients(self, inbounds: list[dict]) -> dict[str, str]:
        clients: dict[str, str] = {}
        wanted = set(self.options.inbound_ids)
        for inbound in inbounds:
            if wanted and inbound.get("id") not in wanted:
                continue
            settings = inbound.get("settings") or {}
            if isinstance(settings, str):
                settings = json.loads(settings) if settings else {}
            for client in settings.get("clients", []):
                sub_id = client.get("subId")
                if sub_id and sub_id not in clients:
                    clients[sub_id] = client.get("comment") or ""
        return clients

    def refresh(self) -> None:
        """Re-read the inbound list, keeping the previous snapshot on failure."""
        try:
            clients = self._index_clients(self.fetch_inbounds())
        except (urllib.error.URLError, OSError, ValueError, AttributeError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"Panel refresh failed: {e}")
            with self._lock:
                self._fetched_at = time.monotonic()
            return
        with self._lock:
            self._clients = clients
            self._fetched_at = time.monotonic()
        logger.info(f"Panel: loaded {len(clients)} client(s)")

    def _is_stale(self) -> bool:
        with self._lock:
            if self._fetched_at is None:
                return True
            return time.monotonic() - self._fetched_at >= self.options.cache_ttl

    def get_user_tags(self, subscription_id: str) -> list[str]:
        if self._is_stale():
            self.refresh()
        with self._lock:
            comment = self._clients.get(subscription_id, "")
        return parse_comment_tags(comment)
