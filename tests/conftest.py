"""
Pytest configuration and fixtures.
"""
import asyncio
import html
import re

import pytest

from csfd_dist.cache import CacheStore
from csfd_dist.db import DB
from csfd_dist.histogram import CATEGORIES

FILM_URL = "https://www.csfd.cz/film/1234-test-film/"
RATINGS_PATH = "/film/1234-test-film/hodnoceni/"

_PAGE_RE = re.compile(r"[?&]page=(\d+)")


def make_page(counts, next_ref=None, disabled_next=False):
    """Build a ratings page with the given counts per category."""
    items = []
    for sel, n in zip(CATEGORIES, counts):
        cls = sel.replace(".", " ").strip()
        items.extend(f'<article><span class="{cls}" title="x"></span></article>' for _ in range(n))
    nav = ""
    if next_ref:
        nav = f'<a class="page-next" href="{html.escape(next_ref)}">další</a>'
    elif disabled_next:
        nav = '<a class="page-next disabled">další</a>'
    return (
        '<html><head><title>film</title></head><body>'
        '<div class="user-list rating-users"></div>'
        '<section class="others-rating"><h3>Hodnocení</h3>'
        f'{"".join(items)}<div class="pagination">{nav}</div>'
        '</section></body></html>'
    )


class FakeSource:
    """
    Page source serving numbered ratings pages.

    Page i (1-based) has counts pages[i - 1]. Page 1 is served for any
    reference without a page parameter (the film URL itself).
    """

    def __init__(self, pages, infinite=False, fail=(), delays=None,
                 after_end=None, unit=(1, 0, 0, 0, 0, 0)):
        self.pages = [list(p) for p in pages]
        self.infinite = infinite
        self.fail = set(fail)
        self.delays = delays or {}
        self.after_end = after_end
        self.unit = list(unit)
        self.requests = []

    @staticmethod
    def ref(i):
        return f"{RATINGS_PATH}?page={i}"

    @staticmethod
    def index_of(ref):
        m = _PAGE_RE.search(ref)
        return int(m.group(1)) if m else 1

    def html(self, i):
        if self.infinite:
            return make_page(self.unit, self.ref(i + 1))
        counts = self.pages[i - 1]
        last = i >= len(self.pages)
        return make_page(counts, None if last else self.ref(i + 1), disabled_next=last)

    def initial(self):
        return self.html(1)

    @property
    def requested_indices(self):
        return [self.index_of(r) for r in self.requests]

    async def retrieve(self, ref):
        self.requests.append(ref)
        i = self.index_of(ref)
        delay = self.delays.get(i, 0)
        if callable(delay):
            delay = delay()
        await asyncio.sleep(delay)
        if i in self.fail:
            return None
        if not self.infinite and i > len(self.pages):
            return self.after_end(i) if self.after_end else None
        return self.html(i)


class RecordingPresenter:
    def __init__(self):
        self.snapshots = []

    def on_snapshot(self, histogram, progress_hint):
        self.snapshots.append((histogram.snapshot(), progress_hint))


class FakeClock:
    def __init__(self, t=1_700_000_000.0):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    return DB(str(tmp_path / "state" / "cache.sqlite"))


@pytest.fixture
def cache(db, clock):
    return CacheStore(db, ttl_sec=7 * 24 * 3600, clock=clock)


@pytest.fixture
def presenter():
    return RecordingPresenter()
