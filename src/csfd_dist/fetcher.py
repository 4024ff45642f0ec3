"""
Ratings Page Fetcher Module

This module handles the retrieval of ratings pages with features including:
- Rate limiting and polite crawling
- CAPTCHA detection
- Proxy support
- Retry handling
- Non-blocking retrieval for the asyncio aggregation engine
"""

import asyncio
import requests
import time
import logging
from datetime import datetime, timezone
import email.utils as eut
from urllib.parse import urlsplit
from requests.exceptions import RequestException, Timeout, SSLError, ProxyError

from .utils import RateLimiter, resolve_url

logger = logging.getLogger("fetcher")

DEFAULT_BASE_URL = "https://www.csfd.cz"


class Fetcher:
    """
    Page source for the aggregation engine.

    This class handles HTTP requests with features like:
    - Configurable delays between requests
    - Automatic retries
    - CAPTCHA detection
    - Proxy support
    - Polite crawling with user agent and contact information

    `retrieve` is the coroutine the engine awaits; it runs the blocking
    request in a worker thread and maps every failure to None.
    """

    def __init__(self, user_agent: str, timeout: int, retries: int, delay: float,
                 proxy=None, contact_email: str | None = None,
                 base_url: str = DEFAULT_BASE_URL, session=None):
        """
        Initialize the fetcher with the specified configuration.

        Args:
            user_agent (str): User agent string to identify the client
            timeout (int): Request timeout in seconds
            retries (int): Number of retry attempts for failed requests
            delay (float): Minimum delay between requests to the same host
            proxy (str, optional): Proxy server URL
            contact_email (str, optional): Contact email for client identification
            base_url (str): Origin that relative page references resolve against
            session (requests.Session, optional): Preconfigured session
        """
        self.user_agent = user_agent
        self.timeout = timeout
        self.retries = retries
        self.delay = delay
        self.proxy = proxy
        self.contact_email = contact_email
        self.base_url = base_url

        self.session = session or requests.Session()
        headers = {"User-Agent": self.user_agent}
        if self.contact_email:
            headers["From"] = self.contact_email
        self.session.headers.update(headers)
        if self.proxy:
            self.session.proxies.update({"http": proxy, "https": proxy})

        # Per-host rate limiting
        self._rate = RateLimiter(delay)

    def _detect_captcha(self, html: str) -> bool:
        """
        Detect if a page contains a CAPTCHA challenge.

        Args:
            html (str): The HTML content to check

        Returns:
            bool: True if CAPTCHA is detected, False otherwise
        """
        if not html:
            return False
        lower = html.lower()
        keys = [
            "g-recaptcha", "hcaptcha",
            "cf-challenge", "cf-turnstile",
            "are you human", "bot verification", "attention required"
        ]
        return any(k in lower for k in keys)

    def _parse_retry_after(self, value: str) -> int:
        """
        Parse the Retry-After header value to determine wait time.

        Handles both delta-seconds and HTTP-date formats according to RFC 7231.

        Args:
            value (str): The Retry-After header value

        Returns:
            int: Number of seconds to wait (>= 0). Returns 0 if parsing fails.
        """
        if not value:
            return 0
        v = value.strip()

        if v.isdigit():
            return max(0, int(v))

        try:
            dt = eut.parsedate_to_datetime(v)
        except (TypeError, ValueError):
            return 0
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        wait = int((dt - datetime.now(timezone.utc)).total_seconds())
        return max(0, wait)

    def fetch(self, url: str):
        """
        Fetch a URL with automatic retries.

        Args:
            url (str): The URL to fetch

        Returns:
            tuple: (
                status_code: int or None,
                content: str,
                elapsed_time: float,
                error: str or None
            )
        """
        last_err = None
        start = time.time()
        host = urlsplit(url).netloc
        logger.debug(f"Starting fetch for {url}")

        for attempt in range(1, self.retries + 2):
            try:
                self._rate.wait(host)
                logger.debug(f"Attempt {attempt} for {url}")

                resp = self.session.get(url, timeout=self.timeout)
                status = resp.status_code
                content = resp.text

                # 429 Too Many Requests, 503 Service Unavailable
                if status in (429, 503):
                    ra = resp.headers.get("Retry-After", "")
                    wait = self._parse_retry_after(ra)
                    if wait > 0:
                        logger.warning(f"⏳ Retry-After {wait}s for {url}")
                        time.sleep(min(wait, 120))
                    raise RequestException(f"retryable status {status}")

                elapsed = time.time() - start

                if not (200 <= status < 300):
                    return status, "", elapsed, f"HTTP_{status}"

                if self._detect_captcha(content):
                    return status, content, elapsed, "CAPTCHA_DETECTED"

                return status, content, elapsed, None

            except (RequestException, Timeout, ProxyError, SSLError) as e:
                last_err = str(e)
                if attempt <= self.retries:
                    time.sleep(1.0 * attempt)

        elapsed = time.time() - start
        return None, "", elapsed, last_err

    async def retrieve(self, page_ref: str):
        """
        Retrieve a ratings page by reference.

        Args:
            page_ref (str): Absolute URL or site-relative reference

        Returns:
            str or None: Page HTML, or None if the page is unavailable
        """
        url = resolve_url(self.base_url, page_ref)
        if not url:
            logger.warning(f"Unusable page reference: {page_ref!r}")
            return None

        status, content, elapsed, err = await asyncio.to_thread(self.fetch, url)
        if err:
            logger.warning(f"Page unavailable {url}: {err} (status={status}, {elapsed:.2f}s)")
            return None
        logger.debug(f"Fetched {url} in {elapsed:.2f}s")
        return content

    def close(self):
        self.session.close()
