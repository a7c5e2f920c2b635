"""Cross-cutting helpers: constants, size formatting, report rendering and I/O."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import PartitionReport, RunReport

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PARTITIONS: tuple[str, ...] = ("qast", "stock")
MHTML_SUFFIX = ".mhtml"
BATCH_PAUSE_S = 0.5
ERROR_EXCERPT_CHARS = 500

# partition -> (object-name pattern, source URL template)
SOURCE_URL_PATTERNS: dict[str, tuple[str, str]] = {
    "stock": (
        r"stock_(\d+)\.mhtml$",
        "https://www.stock-app.jp/teams/c20282/dashboard/all/stocks/{id}/edit",
    ),
    "qast": (
        r"(?:qast_)?([^/]+)\.mhtml$",
        "https://qast.jp/teams/xxxxx/posts/{id}",
    ),
}

RULE = "=" * 60


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_file_size(num_bytes: int) -> str:
    """Render a byte count as ``"12.5 KB"`` style text."""
    if num_bytes <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(num_bytes)
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    return f"{round(value, 2):g} {units[idx]}"


def excerpt(text: str, limit: int = ERROR_EXCERPT_CHARS) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _partition_line(report: PartitionReport) -> str:
    line = (
        f"{report.partition.upper()}: total={report.total} "
        f"success={report.success} failed={report.failed}"
    )
    if report.dry_run:
        line += " (dry run)"
    return line


def render_run_report(report: RunReport) -> list[str]:
    """Return the end-of-run summary as printable lines."""
    lines = [RULE, "RUN COMPLETE", RULE]
    for partition_report in report.partitions.values():
        lines.append("  " + _partition_line(partition_report))
    lines.append(
        f"  COMBINED: total={report.total} success={report.success} "
        f"failed={report.failed}"
    )
    lines.append(f"  Timeouts seen: {report.timeouts_seen}")

    failures = [
        result
        for partition_report in report.partitions.values()
        for result in partition_report.failures()
    ]
    if failures:
        lines.append("  Failed documents:")
        for result in failures:
            lines.append(f"    - [{result.partition}] {result.ref.name}: {result.error}")
    return lines


def render_dry_run_listing(names: Sequence[str]) -> list[str]:
    return [f"  {idx}. {name}" for idx, name in enumerate(names, start=1)]


def save_run_report(path: Path, report: RunReport) -> Path:
    """Write the run report as JSON and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(report.to_dict(), fh, indent=2, ensure_ascii=False, default=str)
    return path
