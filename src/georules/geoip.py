"""Client country resolution: GeoIP lookup plus a last-known-country cache.

When a lookup fails or returns nothing, the country last seen for the same
subscription is used instead, so a client switching to an address missing
from the database keeps its routing.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from collections import OrderedDict
from pathlib import Path

import geoip2.database
import geoip2.errors
import maxminddb

logger = logging.getLogger("georules")


class CountryCache:
    """Thread-safe map of subscription ID -> last resolved country code.

    Bounded: when full, the least recently updated subscription is evicted.

    Example:
        cache = CountryCache()
        cache.resolve("sub1", "DE")  # "DE", remembered
        cache.resolve("sub1", "")    # "DE", from cache
    """

    # Default maximum number of subscriptions tracked
    DEFAULT_MAX_SIZE = 100_000

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE):
        self._cache: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()
        self._max_size = max_size
        self._eviction_count = 0

    def remember(self, subscription_id: str, iso: str) -> None:
        """Store a successfully resolved country. Empty codes are ignored."""
        if not iso:
            return
        with self._lock:
            self._cache[subscription_id] = iso
            self._cache.move_to_end(subscription_id)
            while len(self._cache) > self._max_size:
                self._cache.popitem(last=False)
                self._eviction_count += 1

    def recall(self, subscription_id: str) -> str:
        """Return the last country stored for a subscription, or ""."""
        with self._lock:
            return self._cache.get(subscription_id, "")

    def resolve(self, subscription_id: str, iso: str | None) -> str:
        """Remember iso if set, otherwise fall back to the cached value."""
        if iso:
            self.remember(subscription_id, iso)
            return iso
        return self.recall(subscription_id)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> dict:
        with self._lock:
            return {
                "total": len(self._cache),
                "max_size": self._max_size,
                "evictions": self._eviction_count,
            }


class GeoIPResolver:
    """Maps client IP addresses to ISO country codes using a MaxMind database.

    Fail-open: any lookup error is logged and returns None. Without a
    database every lookup returns None.
    """

    def __init__(self, database_path: str | Path | None = None):
        self._reader: geoip2.database.Reader | None = None
        if database_path:
            try:
                self._reader = geoip2.database.Reader(str(database_path))
                logger.info(f"Loaded GeoIP database {database_path}")
            except (OSError, maxminddb.InvalidDatabaseError) as e:
                logger.error(f"Failed to open GeoIP database {database_path}: {e}")

    @property
    def available(self) -> bool:
        return self._reader is not None

    def lookup(self, ip: str) -> str | None:
        """Return the upper-case ISO code for an address, or None."""
        if self._reader is None or not ip:
            return None
        try:
            ipaddress.ip_address(ip)
            response = self._reader.country(ip)
        except geoip2.errors.AddressNotFoundError:
            logger.warning(f"GeoIP: no entry for {ip}")
            return None
        except (ValueError, TypeError, maxminddb.InvalidDatabaseError) as e:
            logger.warning(f"GeoIP failed for {ip}: {e}")
            return None

        code = response.country.iso_code or response.registered_country.iso_code
        if not code and response.continent.code == "EU":
            code = "EU"
        return code.upper() if code else None

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None


def client_ip(headers, peer_ip: str) -> str:
    """Pick the client address: first X-Forwarded-For entry, else the peer."""
    forwarded = headers.get("x-forwarded-for", "") if headers else ""
    if forwarded:
        return forwarded.split(",")[0].strip()
    return peer_ip
