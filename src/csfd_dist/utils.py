"""
Utility Functions for the Rating Aggregator

This module provides various utility functions and classes for:
- Cache key derivation
- URL resolution
- Rate limiting
"""

import hashlib
import re
import threading
import time
from urllib.parse import urlsplit, urlunsplit, urljoin, urldefrag

CACHE_KEY_PREFIX = "csfd-dist-rating-cache-"

# Permalink of a film page, the slug identifies the film
FILM_URL_RE = re.compile(r"^https://www\.csfd\.cz/film/([^/]+)/")


def sha1_hex(s: str) -> str:
    """
    Calculate SHA-1 hash of a string.

    Args:
        s (str): Input string

    Returns:
        str: Hexadecimal representation of SHA-1 hash
    """
    return hashlib.sha1(s.encode('utf-8', 'ignore')).hexdigest()


def derive_cache_key(resource_url: str):
    """
    Build the cache key for a film page.

    The film slug is hashed so stored keys do not list visited films
    at first sight.

    Args:
        resource_url (str): URL of the film page (or any page below it)

    Returns:
        str or None: Namespaced key, or None if the URL is not a film page
    """
    if not resource_url:
        return None
    m = FILM_URL_RE.match(resource_url)
    if not m:
        return None
    return CACHE_KEY_PREFIX + sha1_hex(m.group(1))


def resolve_url(base: str, href: str):
    """
    Resolve a page reference against the site base URL.

    Converts relative references to absolute URLs, drops fragments and
    lowercases scheme and host.

    Args:
        base (str): Base URL for resolving relative references
        href (str): URL or site-relative path

    Returns:
        str or None: Absolute URL, or None if the reference is unusable
    """
    if not href:
        return None
    try:
        abs_url, _ = urldefrag(urljoin(base, href))
        parts = list(urlsplit(abs_url))
    except ValueError:
        return None  # e.g. malformed IPv6 host
    if parts[0] not in ('http', 'https') or not parts[1]:
        return None
    parts[0] = parts[0].lower()
    parts[1] = parts[1].lower()
    return urlunsplit(parts)


class RateLimiter:
    """
    Thread-safe rate limiter for controlling request rates per key (e.g., per host).

    Page retrievals run in worker threads, so the limiter must hold its lock
    while computing the next slot.
    """

    def __init__(self, min_delay: float):
        """
        Initialize rate limiter.

        Args:
            min_delay (float): Minimum delay between requests in seconds
        """
        self.min_delay = max(0.0, float(min_delay))
        self.lock = threading.Lock()
        self.last = {}  # Last request time per key

    def wait(self, key: str):
        """
        Wait if needed to maintain minimum delay between requests.

        Args:
            key (str): Key to rate limit on (e.g., hostname)
        """
        if self.min_delay <= 0:
            return

        with self.lock:
            now = time.time()
            last = self.last.get(key, 0.0)
            delay = self.min_delay - (now - last)
            if delay > 0:
                time.sleep(delay)
            else:
                delay = 0.0
            self.last[key] = now + delay
