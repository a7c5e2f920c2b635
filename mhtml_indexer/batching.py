"""Per-partition orchestration: list, download, extract and submit in groups."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any, Optional, TypeVar

from .config import IndexerSettings, PartitionSpec
from .extraction import is_valid_mhtml, resolve_source_url
from .models import DocumentPayload, DocumentRef, PartitionReport, SubmissionResult
from .sources import BlobStore
from .submission import IndexSubmitter, SleepFn
from .utils import BATCH_PAUSE_S, format_file_size, render_dry_run_listing

log = logging.getLogger(__name__)

T = TypeVar("T")


def make_groups(items: Sequence[T], size: int) -> list[list[T]]:
    """Split *items* into consecutive groups of at most *size*."""
    if size < 1:
        raise ValueError("group size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class PartitionIndexer:
    """Runs one partition end-to-end and returns its :class:`PartitionReport`.

    Groups of ``settings.concurrency`` documents run one after another; the
    members of a group run concurrently, staggered by ``settings.delay_ms``.
    """

    def __init__(
        self,
        store: BlobStore,
        submitter: Optional[IndexSubmitter],
        settings: IndexerSettings,
        *,
        sleep: SleepFn = asyncio.sleep,
        show_progress: bool = False,
    ) -> None:
        self.store = store
        self.submitter = submitter
        self.settings = settings
        self._sleep = sleep
        self.show_progress = show_progress

    async def run_partition(self, partition: str) -> PartitionReport:
        part = self.settings.partition(partition)
        settings = self.settings
        log.info(
            "%s: container=%s prefix=%s concurrency=%s delay=%sms",
            partition.upper(),
            part.container,
            part.prefix,
            settings.concurrency,
            settings.delay_ms,
        )

        if not settings.dry_run:
            await self.store.acheck(part.container)

        names = await self.store.alist_names(part.container, part.prefix, part.suffix)
        log.info("%s: found %s MHTML documents", partition.upper(), len(names))

        if not names:
            log.warning("%s: nothing to index", partition.upper())
            return PartitionReport(partition=partition, dry_run=settings.dry_run)

        if settings.dry_run:
            for line in render_dry_run_listing(names):
                log.info(line)
            log.info("%s: dry run, no documents submitted", partition.upper())
            return PartitionReport(
                partition=partition,
                total=len(names),
                dry_run=True,
                discovered=list(names),
            )

        if self.submitter is None:
            raise ValueError("a submitter is required unless dry_run is set")

        results = await self._run_groups(part, names)
        report = PartitionReport.from_results(partition, results)
        _log_partition_summary(report)
        return report

    async def _run_groups(
        self, part: PartitionSpec, names: list[str]
    ) -> list[SubmissionResult]:
        groups = make_groups(names, self.settings.concurrency)
        results: list[SubmissionResult] = []
        progress = _progress_bar(len(names), part.tag, self.show_progress)
        try:
            for number, group in enumerate(groups, start=1):
                if number > 1:
                    log.debug("Pausing %.1fs before group %s", BATCH_PAUSE_S, number)
                    await self._sleep(BATCH_PAUSE_S)
                log.info(
                    "%s: group %s/%s (%s documents)",
                    part.tag.upper(),
                    number,
                    len(groups),
                    len(group),
                )
                group_results = await self._run_group(part, group)
                results.extend(group_results)
                if progress is not None:
                    progress.update(len(group_results))
        finally:
            if progress is not None:
                progress.close()
        return results

    async def _run_group(
        self, part: PartitionSpec, group: list[str]
    ) -> list[SubmissionResult]:
        tasks = [
            asyncio.ensure_future(self._process_one(part, name, index))
            for index, name in enumerate(group)
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            log.warning("%s: group aborted, cancelling its documents", part.tag.upper())
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _process_one(
        self, part: PartitionSpec, name: str, index: int
    ) -> SubmissionResult:
        ref = DocumentRef(partition=part.tag, name=name, container=part.container)
        if index > 0 and self.settings.delay_ms:
            await self._sleep(self.settings.delay_ms / 1000.0)

        try:
            payload = await self._load(part, ref)
        except Exception as exc:
            log.error("Preparing %s failed: %s", name, exc)
            return SubmissionResult(
                success=False,
                ref=ref,
                partition=part.tag,
                error=str(exc) or type(exc).__name__,
            )

        return await self.submitter.submit(
            part.tag,
            ref,
            payload.data,
            source_url=payload.source_url,
            timeout_s=self.settings.timeout_s,
            max_retries=self.settings.max_retries,
        )

    async def _load(self, part: PartitionSpec, ref: DocumentRef) -> DocumentPayload:
        t0 = time.perf_counter()
        data = await self.store.adownload(ref.container, ref.name)
        log.info(
            "Downloaded %s (%s) in %.2fs",
            ref.name,
            format_file_size(len(data)),
            time.perf_counter() - t0,
        )
        valid, source_url = await asyncio.to_thread(_inspect, part, ref.name, data)
        if not valid:
            log.warning("%s does not look like MHTML; submitting anyway", ref.name)
        log.debug("%s: source_url=%s", ref.name, source_url)
        return DocumentPayload(ref=ref, data=data, source_url=source_url)


def _inspect(part: PartitionSpec, name: str, data: bytes) -> tuple[bool, Optional[str]]:
    # CPU-bound on large snapshots; runs in a worker thread.
    return (
        is_valid_mhtml(data),
        resolve_source_url(part.tag, name, data, part.source_url_template),
    )


def _progress_bar(total: int, tag: str, enabled: bool) -> Any:
    if not enabled:
        return None
    from tqdm import tqdm

    return tqdm(total=total, desc=f"Indexing {tag}", unit="doc")


def _log_partition_summary(report: PartitionReport) -> None:
    log.info(
        "%s: total=%s success=%s failed=%s",
        report.partition.upper(),
        report.total,
        report.success,
        report.failed,
    )
    for result in report.failures():
        log.warning("  - %s: %s", result.ref.name, result.error)
