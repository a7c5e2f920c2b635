"""MHTML blob -> RAG index pipeline.

Public API -- all symbols that tests and external code import live here.
Internally the code is split across focused submodules; this file
re-exports the stable public surface so ``from mhtml_indexer import X`` works.
"""

from .batching import PartitionIndexer, make_groups
from .config import (
    DEFAULTS,
    ConfigError,
    IndexerSettings,
    PartitionSpec,
    resolve_settings,
)
from .extraction import (
    derive_source_url,
    extract_source_url,
    html_to_text,
    is_valid_mhtml,
    parse_mhtml,
    resolve_source_url,
)
from .models import (
    DocumentPayload,
    DocumentRef,
    MhtmlContent,
    ObjectInfo,
    PartitionReport,
    RunReport,
    SubmissionResult,
)
from .runner import run_all, select_partitions
from .sources import (
    BlobStore,
    ObjectNotAvailableError,
    StoreConnectionError,
    StoreError,
    StoreListingError,
)
from .submission import CircuitBreakerOpen, IndexSubmitter, TimeoutCounter
from .utils import (
    BATCH_PAUSE_S,
    MHTML_SUFFIX,
    PARTITIONS,
    format_file_size,
    render_run_report,
    save_run_report,
)

__all__ = [
    # Models
    "DocumentRef",
    "DocumentPayload",
    "ObjectInfo",
    "MhtmlContent",
    "SubmissionResult",
    "PartitionReport",
    "RunReport",
    # Constants
    "PARTITIONS",
    "MHTML_SUFFIX",
    "BATCH_PAUSE_S",
    # Config
    "DEFAULTS",
    "ConfigError",
    "IndexerSettings",
    "PartitionSpec",
    "resolve_settings",
    # Utils
    "format_file_size",
    "render_run_report",
    "save_run_report",
    # Sources
    "BlobStore",
    "StoreError",
    "StoreConnectionError",
    "StoreListingError",
    "ObjectNotAvailableError",
    # Extraction
    "extract_source_url",
    "derive_source_url",
    "resolve_source_url",
    "parse_mhtml",
    "html_to_text",
    "is_valid_mhtml",
    # Submission
    "TimeoutCounter",
    "CircuitBreakerOpen",
    "IndexSubmitter",
    # Orchestration
    "make_groups",
    "PartitionIndexer",
    "select_partitions",
    "run_all",
]
