"""Shared data models for the indexer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class DocumentRef:
    """Identifies one stored MHTML object."""

    partition: str
    name: str
    container: str


@dataclass
class ObjectInfo:
    """One entry of a store listing."""

    name: str
    size: int = 0
    last_modified: Optional[datetime] = None
    content_type: Optional[str] = None


@dataclass
class DocumentPayload:
    """Downloaded bytes plus the fields derived from them."""

    ref: DocumentRef
    data: bytes
    source_url: Optional[str] = None
    title: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class MhtmlContent:
    html: str = ""
    text: str = ""
    title: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of delivering one document to the index endpoint."""

    success: bool
    ref: DocumentRef
    partition: str
    error: Optional[str] = None
    status_code: Optional[int] = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "partition": self.partition,
            "container": self.ref.container,
            "name": self.ref.name,
            "status_code": self.status_code,
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass
class PartitionReport:
    """Aggregate over one partition's run.

    For a dry run ``results`` stays empty while ``total`` holds the number of
    documents discovered.
    """

    partition: str
    total: int = 0
    success: int = 0
    failed: int = 0
    results: list[SubmissionResult] = field(default_factory=list)
    dry_run: bool = False
    discovered: list[str] = field(default_factory=list)

    @classmethod
    def from_results(
        cls, partition: str, results: list[SubmissionResult]
    ) -> PartitionReport:
        success = sum(1 for r in results if r.success)
        return cls(
            partition=partition,
            total=len(results),
            success=success,
            failed=len(results) - success,
            results=list(results),
            discovered=[r.ref.name for r in results],
        )

    def failures(self) -> list[SubmissionResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "partition": self.partition,
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "dry_run": self.dry_run,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class RunReport:
    """Aggregate over every partition processed in one invocation."""

    partitions: dict[str, PartitionReport] = field(default_factory=dict)
    timeouts_seen: int = 0

    def add(self, report: PartitionReport) -> None:
        self.partitions[report.partition] = report

    @property
    def total(self) -> int:
        return sum(r.total for r in self.partitions.values())

    @property
    def success(self) -> int:
        return sum(r.success for r in self.partitions.values())

    @property
    def failed(self) -> int:
        return sum(r.failed for r in self.partitions.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "partitions": {
                name: report.to_dict() for name, report in self.partitions.items()
            },
            "combined": {
                "total": self.total,
                "success": self.success,
                "failed": self.failed,
            },
            "timeouts_seen": self.timeouts_seen,
        }
