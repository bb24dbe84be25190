#!/usr/bin/env python3
"""
ue2-docs: mirror a documentation subtree.

    ue2-docs scrape --root-url https://docs.unrealengine.com/udk/Two/SiteMap.html --output ./scraped
"""
import argparse
import signal
import sys
import threading
from pathlib import Path

from tqdm import tqdm

from .config import (
    BACKOFF_INITIAL_S,
    BACKOFF_MAX_S,
    DEFAULT_ROOT_URL,
    DEFAULT_WORKERS,
    OUTPUT_DIR,
    RATE_LIMIT_REQUESTS,
    REQUEST_TIMEOUT_S,
    RETRY_MAX,
)
from .crawler.docs_crawler import run
from .crawler.downloader import FetcherConfig, RetryPolicy
from .crawler.errors import InvalidURL
from .crawler.filters import FilterConfig
from .crawler.logger import configure_logging, get_logger
from .storage.writer import MirrorWriter

logger = get_logger("cli")

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def parse_whitelist(value: str) -> list:
    return [d.strip().lower() for d in (value or "").split(",") if d.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ue2-docs", description="Scrape documentation sites for offline use")
    sub = parser.add_subparsers(dest="command")

    scrape = sub.add_parser("scrape", help="Scrape documentation from a website")
    scrape.add_argument("--root-url", default=DEFAULT_ROOT_URL, help="Starting URL to scrape")
    scrape.add_argument("--output", type=Path, default=OUTPUT_DIR, help="Output directory for scraped content")
    scrape.add_argument("--workers", type=int, default=DEFAULT_WORKERS, help="Number of concurrent workers")
    scrape.add_argument("--whitelist", default="", help="Comma-separated list of additional domains to allow")
    scrape.add_argument("--max-depth", type=int, default=0, help="Maximum link depth (0 = unlimited)")
    scrape.add_argument("--timeout", type=float, default=REQUEST_TIMEOUT_S, help="Per-request timeout in seconds")
    scrape.add_argument("--retries", type=int, default=RETRY_MAX, help="Retries for 5xx and network errors")
    scrape.add_argument("--initial-delay", type=float, default=BACKOFF_INITIAL_S, help="First retry backoff in seconds")
    scrape.add_argument("--max-delay", type=float, default=BACKOFF_MAX_S, help="Backoff cap in seconds")
    scrape.add_argument("--rate", type=int, default=RATE_LIMIT_REQUESTS, help="Requests per second (0 = unlimited)")
    scrape.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def run_scrape(args) -> int:
    if args.workers < 1:
        logger.error("--workers must be at least 1")
        return EXIT_USAGE
    if args.max_depth:
        # TODO: enforce --max-depth once FrontierItem records the discovery depth
        logger.warning("--max-depth=%d is accepted but not enforced yet", args.max_depth)

    try:
        filter_config = FilterConfig.from_root_url(args.root_url, parse_whitelist(args.whitelist))
    except InvalidURL as exc:
        logger.error("Bad --root-url: %s", exc)
        return EXIT_USAGE

    fetcher_config = FetcherConfig(
        timeout=args.timeout,
        retry_policy=RetryPolicy(args.retries, args.initial_delay, args.max_delay),
        rate_limit_requests=args.rate,
    )

    logger.info("Root URL:   %s", args.root_url)
    logger.info("Output Dir: %s", args.output)
    logger.info("Workers:    %d", args.workers)
    if filter_config.whitelist_domains:
        logger.info("Whitelist:  %s", ", ".join(sorted(filter_config.whitelist_domains)))

    writer = MirrorWriter(args.output)
    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())

    with tqdm(desc="fetched", unit="res", disable=None) as bar:
        def sink(url, result):
            writer(url, result)
            bar.update(1)

        try:
            summary = run(
                args.root_url,
                filter_config,
                fetcher_config,
                worker_count=args.workers,
                cancel_signal=cancel,
                sink=sink,
            )
        finally:
            signal.signal(signal.SIGINT, previous)

    for failure in summary.failures:
        logger.warning("FAILED %s (%s): %s", failure.url, failure.status, failure.reason)
    logger.info(
        "Visited %d URLs, saved %d resources, %d failures",
        summary.visited_count, writer.saved, len(summary.failures),
    )
    if summary.cancelled:
        return EXIT_CANCELLED
    return EXIT_FAILURES if summary.failures else EXIT_OK


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "scrape":
        parser.print_help()
        return EXIT_USAGE
    configure_logging(args.verbose)
    return run_scrape(args)


if __name__ == "__main__":
    sys.exit(main())
