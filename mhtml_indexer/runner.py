"""Run coordination across partitions."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .batching import PartitionIndexer
from .config import ConfigError, IndexerSettings
from .models import RunReport
from .sources import BlobStore
from .submission import IndexSubmitter, SleepFn, TimeoutCounter
from .utils import PARTITIONS, RULE

log = logging.getLogger(__name__)


def select_partitions(selector: str) -> list[str]:
    """Map ``qast`` / ``stock`` / ``all`` to the partitions to run, in order."""
    selector = selector.strip().lower()
    if selector == "all":
        return list(PARTITIONS)
    if selector in PARTITIONS:
        return [selector]
    raise ConfigError(
        f"Unknown target {selector!r}; expected one of {', '.join((*PARTITIONS, 'all'))}"
    )


async def run_all(
    selector: str,
    settings: IndexerSettings,
    *,
    store: Optional[BlobStore] = None,
    submitter: Optional[IndexSubmitter] = None,
    sleep: SleepFn = asyncio.sleep,
    show_progress: bool = False,
) -> RunReport:
    """Index every selected partition one after another.

    A store failure (connectivity or listing) in any partition aborts the
    whole run, as does :class:`~mhtml_indexer.submission.CircuitBreakerOpen`.
    """
    partitions = select_partitions(selector)
    log.info(RULE)
    log.info("Target: %s -> %s", selector, ", ".join(partitions))
    log.info("Endpoint: %s", settings.endpoint or "-")
    log.info("Max consecutive timeouts: %s", settings.max_consecutive_timeouts)
    if settings.dry_run:
        log.info("Dry run: nothing will be submitted")
    log.info(RULE)

    if store is None:
        store = BlobStore.from_settings(settings)

    owns_submitter = False
    if submitter is None and not settings.dry_run:
        submitter = IndexSubmitter(
            settings.endpoint,
            store,
            TimeoutCounter(settings.max_consecutive_timeouts),
            api_key=settings.api_key,
            sleep=sleep,
        )
        owns_submitter = True

    indexer = PartitionIndexer(
        store, submitter, settings, sleep=sleep, show_progress=show_progress
    )
    report = RunReport()
    try:
        for partition in partitions:
            log.info("Processing partition %s", partition.upper())
            report.add(await indexer.run_partition(partition))
    finally:
        if submitter is not None:
            report.timeouts_seen = submitter.counter.total_timeouts
        if owns_submitter:
            await submitter.aclose()

    log.info(
        "Combined: total=%s success=%s failed=%s",
        report.total,
        report.success,
        report.failed,
    )
    return report
