"""Run configuration: partition layout and layered setting resolution.

Values are resolved explicit > environment > defaults. Only the CLI hands
``os.environ`` in; everything below it receives a resolved
:class:`IndexerSettings`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from .utils import MHTML_SUFFIX, PARTITIONS, SOURCE_URL_PATTERNS


class ConfigError(ValueError):
    """Invalid or missing configuration, detected before any listing."""


@dataclass(frozen=True)
class PartitionSpec:
    """Where one partition's documents live and how to guess their URLs."""

    tag: str
    container: str
    prefix: str
    suffix: str = MHTML_SUFFIX
    source_url_template: Optional[str] = None


@dataclass(frozen=True)
class IndexerSettings:
    target: str = "all"
    concurrency: int = 3
    delay_ms: int = 500
    timeout_ms: int = 30000
    max_retries: int = 3
    max_consecutive_timeouts: int = 10
    dry_run: bool = False
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    region: str = "us-east-1"
    store_endpoint_url: Optional[str] = None
    public_base_url: Optional[str] = None
    partitions: dict[str, PartitionSpec] = field(default_factory=dict)

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    def partition(self, tag: str) -> PartitionSpec:
        try:
            return self.partitions[tag]
        except KeyError as exc:
            raise ConfigError(f"Unknown partition: {tag!r}") from exc


DEFAULTS: dict[str, Any] = {
    "target": "all",
    "concurrency": 3,
    "delay_ms": 500,
    "timeout_ms": 30000,
    "max_retries": 3,
    "max_consecutive_timeouts": 10,
    "dry_run": False,
    "endpoint": None,
    "api_key": None,
    "region": "us-east-1",
    "store_endpoint_url": None,
    "public_base_url": None,
    "qast_container": "qast-mhtml",
    "qast_prefix": "qast-mhtml/data",
    "stock_container": "stock-mhtml",
    "stock_prefix": "stock-mhtml/data",
}

ENV_VARS: dict[str, str] = {
    "target": "TARGET_SOURCE",
    "concurrency": "CONCURRENCY",
    "delay_ms": "DELAY_MS",
    "timeout_ms": "TIMEOUT_MS",
    "max_retries": "MAX_RETRIES",
    "max_consecutive_timeouts": "MAX_CONSECUTIVE_TIMEOUTS",
    "dry_run": "DRY_RUN",
    "endpoint": "RAG_API_ENDPOINT",
    "api_key": "RAG_API_KEY",
    "region": "AWS_REGION",
    "store_endpoint_url": "STORE_ENDPOINT_URL",
    "public_base_url": "STORE_PUBLIC_BASE_URL",
    "qast_container": "QAST_CONTAINER",
    "qast_prefix": "QAST_PREFIX",
    "stock_container": "STOCK_CONTAINER",
    "stock_prefix": "STOCK_PREFIX",
}

_INT_FIELDS = {
    # name: minimum allowed value
    "concurrency": 1,
    "delay_ms": 0,
    "timeout_ms": 1,
    "max_retries": 1,
    "max_consecutive_timeouts": 1,
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _as_int(name: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    minimum = _INT_FIELDS[name]
    if number < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {number}")
    return number


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _pick(
    key: str,
    explicit: Mapping[str, Any],
    env: Mapping[str, str],
    defaults: Mapping[str, Any],
) -> Any:
    value = explicit.get(key)
    if value is not None:
        return value
    env_name = ENV_VARS.get(key)
    if env_name:
        env_value = env.get(env_name)
        if env_value is not None and env_value.strip() != "":
            return env_value.strip()
    return defaults.get(key)


def build_partitions(values: Mapping[str, Any]) -> dict[str, PartitionSpec]:
    """Build the fixed partition table, in run order."""
    return {
        tag: PartitionSpec(
            tag=tag,
            container=values[f"{tag}_container"],
            prefix=values[f"{tag}_prefix"],
            source_url_template=SOURCE_URL_PATTERNS.get(tag, (None, None))[1],
        )
        for tag in PARTITIONS
    }


def resolve_settings(
    explicit: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
    defaults: Mapping[str, Any] = DEFAULTS,
) -> IndexerSettings:
    """Resolve settings from explicit values, then *env*, then *defaults*.

    ``None`` in *explicit* means "not given". Raises :class:`ConfigError` on
    malformed values or when the endpoint is missing for a real run.
    """
    explicit = explicit or {}
    env = env or {}
    values = {key: _pick(key, explicit, env, defaults) for key in defaults}

    for name in _INT_FIELDS:
        values[name] = _as_int(name, values[name])
    values["dry_run"] = _as_bool("dry_run", values["dry_run"])

    target = str(values["target"]).strip().lower()
    if target != "all" and target not in PARTITIONS:
        raise ConfigError(
            f"Unknown target {values['target']!r}; expected one of "
            f"{', '.join((*PARTITIONS, 'all'))}"
        )

    if not values["endpoint"] and not values["dry_run"]:
        raise ConfigError("RAG_API_ENDPOINT is not set (use --endpoint or the env var)")

    return IndexerSettings(
        target=target,
        concurrency=values["concurrency"],
        delay_ms=values["delay_ms"],
        timeout_ms=values["timeout_ms"],
        max_retries=values["max_retries"],
        max_consecutive_timeouts=values["max_consecutive_timeouts"],
        dry_run=values["dry_run"],
        endpoint=values["endpoint"],
        api_key=values["api_key"],
        region=values["region"],
        store_endpoint_url=values["store_endpoint_url"],
        public_base_url=values["public_base_url"],
        partitions=build_partitions(values),
    )
