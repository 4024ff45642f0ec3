#!/usr/bin/env python3
"""
Rating Distribution Main Module

This module serves as the entry point for the rating distribution tool.
It handles configuration, command-line arguments, logging setup, and
aggregator initialization and execution.
"""

import argparse
import asyncio
import logging
import os
import yaml
import sys

from csfd_dist.cache import CacheStore
from csfd_dist.db import DB
from csfd_dist.engine import Aggregator
from csfd_dist.fetcher import Fetcher, DEFAULT_BASE_URL
from csfd_dist.histogram import CATEGORIES
from csfd_dist.presenter import TqdmPresenter, LABELS
from csfd_dist.storage import Storage

DEFAULTS = {
    'max_pages': 40,
    'concurrency_width': 6,
    'ttl_days': 7,
    'refresh_window_sec': 0,
    'prune_delay_sec': 1.5,
    'user_agent': 'csfd-dist-rating/1.0',
    'contact_email': None,
    'request_timeout_sec': 15,
    'max_retries': 1,
    'min_delay_per_host_sec': 0.2,
    'proxy': None,
    'base_url': DEFAULT_BASE_URL,
    'cache_path': None,
}


def parse_args(argv=None):
    """Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed command-line arguments including:
            - url: Film page to build the distribution for
            - config: Path to configuration file (default: config.yaml)
            - max-pages: Maximum number of ratings pages to merge
            - concurrency: Speculative requests in flight (0/1 = sequential)
            - ttl-days: Cache entry lifetime
            - refresh: Re-run the traversal even on a cache hit
            - no-cache: Neither read nor write the cache
            - data-root: Root directory for cache, logs and reports
            - verbose: Enable verbose logging
            - prune-only: Prune expired cache entries and exit
            - no-report: Skip summary.json and chart
    """
    ap = argparse.ArgumentParser(description='CSFD rating distribution')
    ap.add_argument('url', nargs='?')
    ap.add_argument('--config', default='config.yaml')
    ap.add_argument('--max-pages', type=int)
    ap.add_argument('--concurrency', type=int)
    ap.add_argument('--ttl-days', type=float)
    ap.add_argument('--refresh', action='store_true')
    ap.add_argument('--no-cache', action='store_true')
    ap.add_argument('--data-root', default='data')
    ap.add_argument('--verbose', action='store_true')
    ap.add_argument('--prune-only', action='store_true')
    ap.add_argument('--no-report', action='store_true')
    args = ap.parse_args(argv)
    if not args.url and not args.prune_only:
        ap.error('url is required unless --prune-only is given')
    return args


def load_config(path):
    """Load configuration from YAML file, on top of DEFAULTS.

    Searches both the provided path (relative to current working directory)
    and the `src/` directory so the CLI works whether executed from the
    project root or inside `src`. A missing file means defaults only.
    """
    cfg = dict(DEFAULTS)
    candidates = [path]
    if not os.path.isabs(path):
        candidates.append(os.path.join(os.path.dirname(__file__), path))

    for candidate in candidates:
        if os.path.exists(candidate):
            with open(candidate, 'r', encoding='utf-8') as f:
                cfg.update(yaml.safe_load(f) or {})
            return cfg

    logging.getLogger(__name__).debug(f"Config file not found in: {candidates}, using defaults")
    return cfg


def setup_logging(verbose: bool, data_root: str):
    """Configure logging to console and file.

    Args:
        verbose (bool): If True, set logging level to DEBUG; otherwise INFO
        data_root (str): Directory where log files will be stored
    """
    os.makedirs(os.path.join(data_root, 'logs'), exist_ok=True)
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(os.path.join(data_root, 'logs', 'csfd_dist.log'), mode='a', encoding='utf-8')
        ]
    )


def build_cache(cfg, data_root):
    path = cfg.get('cache_path') or os.path.join(data_root, 'state', 'cache.sqlite')
    return CacheStore(DB(path), ttl_sec=float(cfg['ttl_days']) * 24 * 3600)


def build_fetcher(cfg):
    return Fetcher(
        cfg['user_agent'],
        int(cfg['request_timeout_sec']),
        int(cfg['max_retries']),
        float(cfg['min_delay_per_host_sec']),
        cfg.get('proxy'),
        contact_email=cfg.get('contact_email'),
        base_url=cfg.get('base_url') or DEFAULT_BASE_URL,
    )


def print_distribution(histogram, status):
    print(f"\n📊 Distribution ({status['source']}, {status['pages_merged']} page(s)):")
    for sel, count in zip(CATEGORIES, histogram.counts):
        print(f"  {LABELS[sel]}  {count}")
    print(f"  total  {histogram.total}")


async def run(cfg, args, data_root):
    cache = None if args.no_cache else build_cache(cfg, data_root)

    if args.prune_only:
        removed = await cache.prune_all() if cache else 0
        print(f"Pruned {removed} cache entr{'y' if removed == 1 else 'ies'}")
        return None

    fetcher = build_fetcher(cfg)
    presenter = TqdmPresenter()
    aggregator = Aggregator(
        fetcher,
        cache=cache,
        presenter=presenter,
        max_pages=int(cfg['max_pages']),
        concurrency_width=int(cfg['concurrency_width']),
        refresh_window_sec=float(cfg['refresh_window_sec']),
        prune_delay_sec=float(cfg['prune_delay_sec']),
    )
    if args.refresh:
        aggregator.gate.trigger()

    try:
        histogram = await aggregator.run(args.url)
    finally:
        presenter.close()
        fetcher.close()

    status = aggregator.get_status_dict()
    if not args.no_report:
        Storage(data_root).write_report(args.url, histogram, status)
    print_distribution(histogram, status)

    # The result is out, let the cache prune finish before the loop closes
    removed = await aggregator.drain()
    if removed:
        logging.getLogger(__name__).info(f"Pruned {removed} expired cache entr{'y' if removed == 1 else 'ies'}")
    return histogram, status


def main(argv=None):
    """Main entry point for the rating distribution tool."""
    args = parse_args(argv)
    cfg = load_config(args.config)

    # Override configuration with command-line arguments if provided
    if args.max_pages: cfg['max_pages'] = args.max_pages
    if args.concurrency is not None: cfg['concurrency_width'] = args.concurrency
    if args.ttl_days: cfg['ttl_days'] = args.ttl_days

    data_root = args.data_root
    os.makedirs(data_root, exist_ok=True)
    setup_logging(args.verbose, data_root)

    asyncio.run(run(cfg, args, data_root))
    return 0


if __name__ == '__main__':
    sys.exit(main())
