"""
Aggregation Engine - Rating Distribution Core Component

This module walks the paginated ratings of a film and accumulates them into
a Histogram. It provides:
- Sequential traversal following next-page references
- Bounded-concurrency speculative traversal over page indices
- Early termination once the terminal page is known
- Cache-first sessions with a one-shot refresh gate
- Delayed background pruning of the cache
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .cache import CacheStore
from .histogram import Histogram, validate_counts
from .parser import PageResult, PageTemplate, derive_page_template, parse_page
from .utils import derive_cache_key

logger = logging.getLogger("aggregator")

DEFAULT_MAX_PAGES = 40
DEFAULT_CONCURRENCY = 6


@dataclass
class TraversalState:
    """
    Mutable state of one traversal, owned by a single engine call.

    Attributes:
        histogram: Accumulated distribution
        remaining: Pages that may still be merged
        next_ref: Last followed page reference (sequential mode)
        in_flight: Outstanding retrieval task -> page index
        terminal_index: Lowest page index known to be terminal
        merged: Page indices already merged (speculative mode)
        stalled: Last completed retrieval failed and nothing has merged since
    """
    histogram: Histogram
    remaining: int
    next_ref: Optional[str] = None
    in_flight: dict = field(default_factory=dict)
    terminal_index: Optional[int] = None
    merged: set = field(default_factory=set)
    stalled: bool = False

    # Counters
    pages_merged: int = 0
    requests_issued: int = 0
    failures: int = 0
    discarded: int = 0


class RefreshGate:
    """
    One-shot trigger asking a cache-served session to re-run the traversal.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def trigger(self):
        self._event.set()

    @property
    def triggered(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: Optional[float] = 0) -> bool:
        """
        Wait for the trigger.

        Args:
            timeout: Seconds to wait; 0 only checks, None waits indefinitely

        Returns:
            bool: True if the gate was triggered
        """
        if self._event.is_set():
            return True
        if timeout is not None and timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class Aggregator:
    """
    Builds the rating distribution of one film.

    Collaborators:
    - source: object with `async retrieve(page_ref) -> str | None`
    - parser: callable raw content -> PageResult, raises ValueError on failure
    - cache: CacheStore, or None to disable caching
    - presenter: object with `on_snapshot(histogram, progress_hint)`

    Every retrieval or parse failure ends (or narrows) the traversal; the
    caller always gets the best-effort histogram, never an exception.
    """

    def __init__(self, source, cache: Optional[CacheStore] = None, presenter=None,
                 parser=parse_page, max_pages: int = DEFAULT_MAX_PAGES,
                 concurrency_width: int = DEFAULT_CONCURRENCY,
                 refresh_window_sec: Optional[float] = 0, prune_delay_sec: float = 0,
                 gate: Optional[RefreshGate] = None, key_deriver=derive_cache_key):
        if int(max_pages) < 1:
            raise ValueError(f"max_pages must be at least 1, got {max_pages}")
        self.source = source
        self.cache = cache
        self.presenter = presenter
        self.parser = parser
        self.max_pages = int(max_pages)
        self.concurrency_width = max(0, int(concurrency_width))
        self.refresh_window_sec = refresh_window_sec
        self.prune_delay_sec = float(prune_delay_sec)
        self.gate = gate or RefreshGate()
        self.key_deriver = key_deriver

        # Session outcome, for reporting
        self.last_state: Optional[TraversalState] = None
        self.result_source: Optional[str] = None
        self.cache_key: Optional[str] = None
        self.elapsed_sec: float = 0.0
        self.prune_task: Optional[asyncio.Task] = None

    # ---------- Helpers ----------
    def _emit(self, histogram: Histogram, progress_hint: int):
        if self.presenter is None:
            return
        self.presenter.on_snapshot(Histogram(list(histogram.counts)), max(0, progress_hint))

    async def _retrieve(self, ref):
        try:
            return await self.source.retrieve(ref)
        except Exception as e:
            logger.exception(f"retrieval of {ref} failed: {e}")
            return None

    def _parse(self, raw, ref) -> Optional[PageResult]:
        try:
            page = self.parser(raw)
            validate_counts(page.partial_counts)
        except ValueError as e:
            logger.warning(f"Cannot parse {ref}: {e}")
            return None
        return page

    def _merge(self, state: TraversalState, page: PageResult):
        state.histogram.merge(page.partial_counts)
        state.pages_merged += 1
        state.remaining -= 1
        self._emit(state.histogram, state.remaining)

    def _budget(self, max_pages) -> int:
        n = self.max_pages if max_pages is None else int(max_pages)
        if n < 1:
            raise ValueError(f"max_pages must be at least 1, got {n}")
        return n

    # ---------- Sequential ----------
    async def run_sequential(self, initial_page, max_pages: int = None) -> Histogram:
        """
        Merge the initial page, then follow next-page references.

        Args:
            initial_page: Raw content of the first page
            max_pages: Iteration ceiling (default: engine setting)

        Returns:
            Histogram: Frozen, full or partial distribution
        """
        state = TraversalState(Histogram(), self._budget(max_pages))
        self.last_state = state
        page = self._parse(initial_page, "initial page")
        if page is None:
            state.failures += 1
        else:
            self._merge(state, page)
            await self._follow(state, page)
        self._emit(state.histogram, 0)
        return state.histogram.freeze()

    async def _follow(self, state: TraversalState, page: PageResult):
        """Follow next references starting from an already merged page."""
        while state.remaining > 0 and page.next_ref is not None:
            ref = page.next_ref
            state.next_ref = ref
            state.requests_issued += 1
            raw = await self._retrieve(ref)
            page = self._parse(raw, ref) if raw is not None else None
            if page is None:
                state.failures += 1
                logger.warning(f"Stopping after failed page {ref}, {state.pages_merged} page(s) merged")
                return
            self._merge(state, page)
        if page.next_ref is not None:
            logger.info(f"Page budget exhausted after {state.pages_merged} page(s)")

    # ---------- Speculative ----------
    async def run_concurrent(self, initial_page, max_pages: int = None,
                             concurrency_width: int = None) -> Histogram:
        """
        Merge the initial page, then fetch following pages by index with up
        to `concurrency_width` requests in flight.

        Falls back to sequential traversal when the width is 0 or 1, or when
        no page index can be found in the next-page reference.

        Args:
            initial_page: Raw content of the first page
            max_pages: Iteration ceiling (default: engine setting)
            concurrency_width: In-flight limit (default: engine setting)

        Returns:
            Histogram: Frozen, full or partial distribution
        """
        width = self.concurrency_width if concurrency_width is None else int(concurrency_width)
        if width <= 1:
            return await self.run_sequential(initial_page, max_pages)

        state = TraversalState(Histogram(), self._budget(max_pages))
        self.last_state = state
        page = self._parse(initial_page, "initial page")
        if page is None:
            state.failures += 1
        else:
            self._merge(state, page)
            if state.remaining > 0 and page.next_ref is not None:
                template = derive_page_template(page.next_ref)
                if template is None:
                    logger.info(f"No page index in {page.next_ref}, continuing sequentially")
                    await self._follow(state, page)
                else:
                    await self._speculate(state, template, width)
        self._emit(state.histogram, 0)
        return state.histogram.freeze()

    async def _fetch_page(self, ref: str) -> Optional[PageResult]:
        raw = await self._retrieve(ref)
        if raw is None:
            return None
        return self._parse(raw, ref)

    def _progress_hint(self, state: TraversalState) -> int:
        # Before the terminal page is known every remaining page may still come;
        # afterwards only in-flight pages below it will be merged.
        if state.terminal_index is None:
            return state.remaining
        return sum(1 for i in state.in_flight.values() if i < state.terminal_index)

    def _consume(self, state: TraversalState, index: int, page: Optional[PageResult]) -> bool:
        """Apply one completed retrieval. Returns True if it was merged."""
        if page is None:
            state.failures += 1
            state.stalled = True
            return False
        if state.terminal_index is not None and index > state.terminal_index:
            state.discarded += 1
            logger.debug(f"Discarding page {index} beyond terminal page {state.terminal_index}")
            return False
        if index in state.merged:
            state.discarded += 1
            return False
        state.merged.add(index)
        state.stalled = False
        if page.terminal and (state.terminal_index is None or index < state.terminal_index):
            state.terminal_index = index
            logger.debug(f"Terminal page found at index {index}")
        state.histogram.merge(page.partial_counts)
        state.pages_merged += 1
        state.remaining -= 1
        self._emit(state.histogram, self._progress_hint(state))
        return True

    async def _speculate(self, state: TraversalState, template: PageTemplate, width: int):
        last_index = template.first_index + state.remaining - 1
        next_index = template.first_index
        try:
            while True:
                while (state.terminal_index is None and not state.stalled
                       and next_index <= last_index and len(state.in_flight) < width):
                    task = asyncio.create_task(self._fetch_page(template.ref_for(next_index)))
                    state.in_flight[task] = next_index
                    state.requests_issued += 1
                    next_index += 1

                if not state.in_flight:
                    break

                done, _ = await asyncio.wait(list(state.in_flight), return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=state.in_flight.get):
                    index = state.in_flight.pop(task)
                    try:
                        page = task.result()
                    except Exception as e:
                        logger.exception(f"retrieval of page {index} failed: {e}")
                        page = None
                    self._consume(state, index, page)

                # No new slots open after a failure until an outstanding page merges
                if state.stalled and not state.in_flight and state.terminal_index is None:
                    logger.warning(f"Stopping after failed page, {state.pages_merged} page(s) merged")
                    break
        finally:
            for task in state.in_flight:
                task.cancel()
            state.in_flight.clear()

        if state.terminal_index is None and next_index > last_index:
            logger.info(f"Page budget exhausted after {state.pages_merged} page(s)")

    # ---------- Session ----------
    async def _delayed_prune(self) -> int:
        if self.prune_delay_sec > 0:
            await asyncio.sleep(self.prune_delay_sec)
        return await self.cache.prune_all()

    async def _traverse(self, resource_url: str) -> Histogram:
        raw = await self._retrieve(resource_url)
        if raw is None:
            logger.warning(f"Initial page unavailable: {resource_url}")
            self.last_state = TraversalState(Histogram(), self.max_pages, failures=1)
            self._emit(self.last_state.histogram, 0)
            return self.last_state.histogram.freeze()
        return await self.run_concurrent(raw)

    async def run(self, resource_url: str) -> Histogram:
        """
        Produce the final distribution of a film page.

        Serves a valid cached distribution unless the refresh gate fires
        within `refresh_window_sec`; otherwise traverses from the film page
        and caches the result when at least one page was merged.
        The cache prune keeps running in the background after the result is
        returned, see `drain`.

        Args:
            resource_url (str): URL of the film page

        Returns:
            Histogram: Frozen final distribution
        """
        start = time.time()
        self.last_state = None
        self.cache_key = None
        if self.cache is not None:
            self.cache_key = self.key_deriver(resource_url)
            if self.cache_key is None:
                logger.info(f"No cache key for {resource_url}, caching disabled")
            self.prune_task = asyncio.create_task(self._delayed_prune())

        try:
            cached = self.cache.read(self.cache_key) if self.cache_key else None
            if cached is not None:
                logger.info(f"Cache hit for {resource_url}: {cached.counts}")
                self._emit(cached, 0)
                if not await self.gate.wait(self.refresh_window_sec):
                    self.result_source = "cache"
                    return cached
                logger.info("Refresh requested, discarding cached distribution")

            histogram = await self._traverse(resource_url)
            self.result_source = "traversal"
            if self.last_state.pages_merged and self.cache_key:
                self.cache.write(self.cache_key, histogram)
            return histogram
        finally:
            self.elapsed_sec = time.time() - start

    async def drain(self) -> int:
        """
        Wait for the background prune started by `run`.

        Returns:
            int: Number of cache entries removed, 0 if no prune was started
        """
        if self.prune_task is None:
            return 0
        task, self.prune_task = self.prune_task, None
        return await task

    def get_status_dict(self) -> dict:
        """
        Get the outcome of the last session as a dictionary.

        Returns:
            dict: Traversal counters, cache key and result source
        """
        s = self.last_state
        return {
            "cache_key": self.cache_key,
            "source": self.result_source,
            "pages_merged": s.pages_merged if s else 0,
            "requests_issued": s.requests_issued if s else 0,
            "failures": s.failures if s else 0,
            "discarded": s.discarded if s else 0,
            "terminal_index": s.terminal_index if s else None,
            "max_pages": self.max_pages,
            "concurrency_width": self.concurrency_width,
            "elapsed_sec": self.elapsed_sec,
        }
