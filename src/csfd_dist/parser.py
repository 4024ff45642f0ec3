"""
Ratings Page Parser Module

This module provides functions for:
- Counting ratings per category on a ratings page
- Finding the reference to the next ratings page
- Deriving a page-index template for speculative fetches
"""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from bs4 import BeautifulSoup, SoupStrainer

from .histogram import CATEGORIES

RATINGS_SECTION = "section.others-rating"
NEXT_PAGE_SELECTOR = "a.page-next:not(.disabled)"


class ParseError(ValueError):
    """Raised when a page carries no ratings section."""


@dataclass
class PageResult:
    """
    Parsed content of one ratings page.

    Attributes:
        partial_counts: Ratings found on the page, ordered as CATEGORIES
        next_ref: Reference to the next page, None on the terminal page
    """
    partial_counts: list
    next_ref: Optional[str]

    @property
    def terminal(self) -> bool:
        return self.next_ref is None


def parse_page(html) -> PageResult:
    """
    Extract rating counts and the next page reference from a ratings page.

    Only <section> elements are handed to BeautifulSoup, the rest of the
    document is skipped.

    Args:
        html (str or bytes): Raw page content

    Returns:
        PageResult: Partial counts and next reference

    Raises:
        ParseError: If the ratings section is not present
    """
    if not html:
        raise ParseError("empty page content")
    soup = BeautifulSoup(html, "html.parser", parse_only=SoupStrainer("section"))
    section = soup.select_one(RATINGS_SECTION)
    if section is None:
        raise ParseError(f"{RATINGS_SECTION} not found")

    counts = [len(section.select(sel)) for sel in CATEGORIES]

    next_ref = None
    link = section.select_one(NEXT_PAGE_SELECTOR)
    if link is not None:
        href = (link.get("href") or "").strip()
        next_ref = href or None
    return PageResult(counts, next_ref)


@dataclass
class PageTemplate:
    """
    Page reference parameterized by page index.

    Attributes:
        ref: Reference the template was derived from
        param: Query parameter carrying the page index
        first_index: Index found in `ref`
    """
    ref: str
    param: str
    first_index: int

    def ref_for(self, index: int) -> str:
        parts = urlsplit(self.ref)
        query = [(k, str(index) if k == self.param else v)
                 for k, v in parse_qsl(parts.query, keep_blank_values=True)]
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


_INDEX_RE = re.compile(r"^\d+$")


def derive_page_template(next_ref: Optional[str]) -> Optional[PageTemplate]:
    """
    Derive an index template from a next-page reference.

    The last query parameter with a decimal integer value is taken as the
    page index, e.g. `/film/1-x/hodnoceni/?page=2` yields param `page` and
    first index 2.

    Returns:
        PageTemplate or None: None if the reference has no index parameter
    """
    if not next_ref:
        return None
    try:
        query = parse_qsl(urlsplit(next_ref).query, keep_blank_values=True)
    except ValueError:
        return None
    for key, value in reversed(query):
        if _INDEX_RE.match(value):
            return PageTemplate(next_ref, key, int(value))
    return None
