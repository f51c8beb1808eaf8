"""Mitmproxy addon serving composed subscription configs in reverse-proxy mode."""

from __future__ import annotations

import json
import re
from urllib.parse import parse_qs, quote, unquote, urlsplit

from mitmproxy import http

from .. import logging as georules_logging
from ..geoip import CountryCache, GeoIPResolver, client_ip
from ..panel import NullTagSource, TagSource
from ..presets import RequestContext, RuleComposer
from . import log_errors

METADATA_KEY = "georules"

# Never forwarded from the upstream response
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


def parse_query_tags(query: str) -> list[str]:
    """Collect tag names from every `tags` parameter, comma-split and trimmed."""
    tags: list[str] = []
    for value in parse_qs(query, keep_blank_values=True).get("tags", []):
        tags.extend(t.strip() for t in value.split(",") if t.strip())
    return tags


def json_response(status_code: int, payload: dict) -> http.Response:
    return http.Response.make(
        status_code,
        json.dumps(payload),
        {"Content-Type": JSON_CONTENT_TYPE},
    )


class SubscriptionAddon:
    """Rewrites subscription JSON fetched from the upstream.

    Requests to /<secret>/json/<subscription_id> are forwarded to
    <upstream>/<subscription_id>; the upstream document is then rewritten
    with routing rules for the client's country and tags. Every other path
    is answered locally with 204.
    """

    def __init__(
        self,
        composer: RuleComposer,
        secret_url: str,
        upstream_url: str,
        geoip: GeoIPResolver | None = None,
        country_cache: CountryCache | None = None,
        tag_source: TagSource | None = None,
    ):
        """Initialize the addon.

        Args:
            composer: Rule composer built from the loaded presets
            secret_url: Secret path segment guarding the endpoint
            upstream_url: Subscription source; its path is used as prefix
            geoip: Country lookup (no lookup when None)
            country_cache: Last-known country per subscription
            tag_source: Resolves tags declared on the panel
        """
        self.composer = composer
        self.geoip = geoip or GeoIPResolver()
        self.country_cache = country_cache or CountryCache()
        self.tag_source = tag_source or NullTagSource()
        self.upstream_path = urlsplit(upstream_url).path.rstrip("/")
        self._route = re.compile(rf"^/{re.escape(secret_url.strip('/'))}/json/([^/]+)/?$")

    def match_route(self, path: str) -> tuple[str, list[str]] | None:
        """Return (subscription_id, query tags) for a subscription path."""
        parts = urlsplit(path)
        match = self._route.match(parts.path)
        if not match:
            return None
        return unquote(match.group(1)), parse_query_tags(parts.query)

    def resolve_country(self, flow: http.HTTPFlow, subscription_id: str) -> str:
        peername = flow.client_conn.peername
        ip = client_ip(flow.request.headers, peername[0] if peername else "")
        iso = self.geoip.lookup(ip) or ""
        return self.country_cache.resolve(subscription_id, iso)

    @log_errors
    def request(self, flow: http.HTTPFlow) -> None:
        route = self.match_route(flow.request.path)
        if route is None:
            flow.response = http.Response.make(204)
            return

        subscription_id, query_tags = route
        user_tags = list(self.tag_source.get_user_tags(subscription_id))
        ctx = RequestContext(
            subscription_id=subscription_id,
            country=self.resolve_country(flow, subscription_id),
            tags=query_tags + user_tags,
        )
        flow.metadata[METADATA_KEY] = ctx

        flow.request.path = f"{self.upstream_path}/{quote(subscription_id, safe='')}"
        # The body is rewritten, so ask upstream for it uncompressed
        flow.request.headers.pop("accept-encoding", None)

    @log_errors
    def response(self, flow: http.HTTPFlow) -> None:
        ctx = flow.metadata.get(METADATA_KEY)
        if ctx is None or flow.response is None:
            return
        logger = georules_logging.logger

        status = flow.response.status_code
        if not 200 <= status < 300:
            logger.warning(f"Upstream returned {status} for {ctx.subscription_id}")
            flow.response = json_response(status, {"error": "upstream_error"})
            return

        try:
            upstream = json.loads(flow.response.get_text(strict=True) or "")
        except ValueError as e:
            logger.error(f"Invalid upstream JSON for {ctx.subscription_id}: {e}")
            flow.response = json_response(502, {"error": "bad_gateway"})
            return
        if not isinstance(upstream, dict):
            logger.error(f"Upstream document for {ctx.subscription_id} is not an object")
            flow.response = json_response(502, {"error": "bad_gateway"})
            return

        try:
            composition = self.composer.compose(upstream, ctx)
            body = composition.to_json()
        except Exception as e:
            logger.error(f"Composition failed for {ctx.subscription_id}: {e}")
            flow.response = json_response(502, {"error": "bad_gateway"})
            return

        for name in {k.lower() for k in flow.response.headers.keys()}:
            if name in HOP_BY_HOP_HEADERS or name == "content-length":
                del flow.response.headers[name]
        # Content type first so the body is encoded as UTF-8
        flow.response.headers["content-type"] = JSON_CONTENT_TYPE
        flow.response.text = body

        georules_logging.log_request(
            subscription=ctx.subscription_id,
            country=ctx.country,
            tags=ctx.tags,
            rules=len(composition.rules),
        )

    @log_errors
    def error(self, flow: http.HTTPFlow) -> None:
        ctx = flow.metadata.get(METADATA_KEY)
        if ctx is None:
            return
        georules_logging.logger.error(f"Fetch failed for {ctx.subscription_id}: {flow.error}")

    def done(self) -> None:
        self.geoip.close()
