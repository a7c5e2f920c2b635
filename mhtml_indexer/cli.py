"""CLI entrypoint for the MHTML blob -> RAG index pipeline.

Usage:
    python -m mhtml_indexer
    python -m mhtml_indexer --source qast --dry-run
    python -m mhtml_indexer --source stock --concurrency 5 --delay 200
    python -m mhtml_indexer --timeout 60000 --max-retries 5
    python -m mhtml_indexer --report-json output/run_report.json

Every option falls back to its environment variable (TARGET_SOURCE,
CONCURRENCY, DELAY_MS, TIMEOUT_MS, MAX_RETRIES, MAX_CONSECUTIVE_TIMEOUTS,
RAG_API_ENDPOINT, ...) and then to the built-in default.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from logging.handlers import RotatingFileHandler
import os
import time
from pathlib import Path

from dotenv import load_dotenv

from .config import ConfigError, resolve_settings
from .runner import run_all
from .sources import StoreError
from .submission import CircuitBreakerOpen
from .utils import PARTITIONS, render_run_report, save_run_report

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CIRCUIT_BREAKER = 3


def _setup_logging(
    *,
    verbose: bool,
    detailed_logging: bool,
    log_file: Path | None,
) -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    root_level = logging.DEBUG if verbose else logging.INFO
    root_logger.setLevel(root_level)

    console_fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    detailed_fmt = (
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "%(threadName)s | %(filename)s:%(lineno)d | %(message)s"
    )
    formatter = logging.Formatter(
        detailed_fmt if detailed_logging else console_fmt,
        "%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(root_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=20 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(detailed_fmt, "%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

    for noisy in ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Unset options stay ``None`` so the environment and defaults can fill them.
    """
    parser = argparse.ArgumentParser(
        description="Index MHTML snapshots from object storage into the RAG system"
    )
    parser.add_argument(
        "--source",
        choices=[*PARTITIONS, "all"],
        default=None,
        help="Partition to index (env TARGET_SOURCE, default: all)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="List matching documents without submitting anything",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Documents submitted concurrently per group (env CONCURRENCY, default: 3)",
    )
    parser.add_argument(
        "--delay",
        type=int,
        default=None,
        dest="delay_ms",
        help="Stagger between documents of a group in ms (env DELAY_MS, default: 500)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        dest="timeout_ms",
        help="Per-attempt submission timeout in ms (env TIMEOUT_MS, default: 30000)",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Attempts per document, including the first (env MAX_RETRIES, default: 3)",
    )
    parser.add_argument(
        "--max-consecutive-timeouts",
        type=int,
        default=None,
        help=(
            "Abort the run after this many timeouts in a row "
            "(env MAX_CONSECUTIVE_TIMEOUTS, default: 10)"
        ),
    )
    parser.add_argument(
        "--endpoint",
        default=None,
        help="Index endpoint URL (env RAG_API_ENDPOINT)",
    )
    parser.add_argument(
        "--report-json",
        type=Path,
        default=None,
        help="Also write the run report as JSON to this path",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the per-partition progress bar",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--detailed-logging",
        action="store_true",
        help="Enable detailed logging (thread, file/line)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional rotating log file path",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run the indexer and return the process exit status."""
    args = parse_args(argv)
    _setup_logging(
        verbose=args.verbose,
        detailed_logging=args.detailed_logging,
        log_file=args.log_file,
    )
    load_dotenv()

    explicit = {
        "target": args.source,
        "dry_run": args.dry_run,
        "concurrency": args.concurrency,
        "delay_ms": args.delay_ms,
        "timeout_ms": args.timeout_ms,
        "max_retries": args.max_retries,
        "max_consecutive_timeouts": args.max_consecutive_timeouts,
        "endpoint": args.endpoint,
    }
    try:
        settings = resolve_settings(explicit, os.environ)
    except ConfigError as exc:
        log.error("Configuration error: %s", exc)
        return EXIT_FAILURE

    log.info(
        "Settings: target=%s dry_run=%s concurrency=%s delay=%sms timeout=%sms "
        "max_retries=%s max_consecutive_timeouts=%s",
        settings.target,
        settings.dry_run,
        settings.concurrency,
        settings.delay_ms,
        settings.timeout_ms,
        settings.max_retries,
        settings.max_consecutive_timeouts,
    )

    t0 = time.perf_counter()
    try:
        report = asyncio.run(
            run_all(
                settings.target,
                settings,
                show_progress=not args.no_progress,
            )
        )
    except CircuitBreakerOpen as exc:
        log.critical("Circuit breaker tripped, aborting the run: %s", exc)
        return EXIT_CIRCUIT_BREAKER
    except ConfigError as exc:
        log.error("Configuration error: %s", exc)
        return EXIT_FAILURE
    except StoreError as exc:
        log.error("Object store error, run aborted: %s", exc)
        return EXIT_FAILURE

    for line in render_run_report(report):
        log.info(line)
    log.info("  Total runtime: %.1fs", time.perf_counter() - t0)

    if args.report_json is not None:
        path = save_run_report(args.report_json, report)
        log.info("Run report written to %s", path)

    return EXIT_OK
