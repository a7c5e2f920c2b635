"""Shared fixtures for the indexer test suite.

The object store is an in-memory :class:`BlobStore` subclass and the index
endpoint is an ``httpx.MockTransport``; nothing touches the network.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import pytest

from mhtml_indexer import (
    BlobStore,
    IndexSubmitter,
    ObjectInfo,
    ObjectNotAvailableError,
    StoreListingError,
    TimeoutCounter,
    resolve_settings,
)

# ---------------------------------------------------------------------------
# Configure verbose logging for test debugging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)

ENDPOINT = "https://rag.example.test/reindex-from-blob"

MHTML_WITH_LOCATION = (
    b"From: <Saved by Blink>\r\n"
    b"Snapshot-Content-Location: https://qast.jp/teams/demo/posts/1\r\n"
    b"Subject: Weekly notes\r\n"
    b"Date: Tue, 1 Oct 2024 09:00:00 +0900\r\n"
    b"MIME-Version: 1.0\r\n"
    b'Content-Type: multipart/related; type="text/html"; boundary="----B"\r\n'
    b"\r\n"
    b"------B\r\n"
    b'Content-Type: text/html; charset="utf-8"\r\n'
    b"Content-Location: https://qast.jp/teams/demo/posts/1\r\n"
    b"\r\n"
    b"<html><head><title>Weekly notes</title><style>p{color:red}</style></head>"
    b"<body><p>Hello &amp; welcome</p><script>var x = 1;</script></body></html>\r\n"
    b"------B--\r\n"
)

MHTML_WITHOUT_LOCATION = (
    b"MIME-Version: 1.0\r\n"
    b'Content-Type: multipart/related; boundary="----C"\r\n'
    b"\r\n"
    b"------C\r\n"
    b"Content-Type: text/html\r\n"
    b"\r\n"
    b"<html><body>No location here</body></html>\r\n"
    b"------C--\r\n"
)


class FakeStore(BlobStore):
    """In-memory store keyed by ``(container, name)``.

    A value that is an exception instance is raised on download.
    """

    def __init__(
        self,
        objects: dict[tuple[str, str], Any] | None = None,
        *,
        reachable: bool = True,
        failing_containers: set[str] | None = None,
    ) -> None:
        super().__init__(client=None, region="us-east-1")
        self.objects = dict(objects or {})
        self.reachable = reachable
        self.failing_containers = failing_containers or set()
        self.listed: list[str] = []
        self.downloads: list[str] = []
        self.checked: list[str] = []

    def list_objects(self, container: str, prefix: str = "") -> Iterator[ObjectInfo]:
        self.listed.append(container)
        if container in self.failing_containers:
            raise StoreListingError(f"Listing {container}/{prefix} failed: boom")
        for (obj_container, name), value in self.objects.items():
            if obj_container == container and name.startswith(prefix):
                size = len(value) if isinstance(value, bytes) else 0
                yield ObjectInfo(name=name, size=size)

    def download_object(self, container: str, name: str) -> bytes:
        self.downloads.append(name)
        try:
            value = self.objects[(container, name)]
        except KeyError:
            raise ObjectNotAvailableError(f"{container}/{name} not found") from None
        if isinstance(value, BaseException):
            raise value
        return value

    def test_connectivity(self, container: str) -> bool:
        self.checked.append(container)
        return self.reachable


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


def make_submitter(
    handler: Callable[[httpx.Request], Any],
    store: BlobStore,
    *,
    ceiling: int = 10,
    sleep: RecordingSleep | None = None,
) -> IndexSubmitter:
    return IndexSubmitter(
        ENDPOINT,
        store,
        TimeoutCounter(ceiling),
        transport=httpx.MockTransport(handler),
        sleep=sleep or RecordingSleep(),
    )


def multipart_fields(request: httpx.Request) -> dict[str, str]:
    """Pull the plain text form fields out of a multipart request body."""
    content_type = request.headers["content-type"]
    boundary = content_type.split("boundary=", 1)[1].encode()
    fields: dict[str, str] = {}
    for part in request.content.split(b"--" + boundary):
        head, sep, body = part.partition(b"\r\n\r\n")
        if not sep or b"filename=" in head:
            continue
        marker = b'name="'
        start = head.find(marker)
        if start == -1:
            continue
        start += len(marker)
        name = head[start : head.index(b'"', start)].decode()
        fields[name] = body.rstrip(b"\r\n").decode()
    return fields


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings_factory():
    def _make(**explicit: Any):
        explicit.setdefault("endpoint", ENDPOINT)
        return resolve_settings(explicit, env={})

    return _make


@pytest.fixture
def qast_store() -> FakeStore:
    return FakeStore(
        {
            ("qast-mhtml", "qast-mhtml/data/a.mhtml"): MHTML_WITH_LOCATION,
            ("qast-mhtml", "qast-mhtml/data/b.mhtml"): MHTML_WITHOUT_LOCATION,
            ("qast-mhtml", "qast-mhtml/data/readme.txt"): b"not a snapshot",
        }
    )


def numbered_store(container: str, prefix: str, count: int, stem: str) -> FakeStore:
    return FakeStore(
        {
            (container, f"{prefix}/{stem}_{i}.mhtml"): MHTML_WITHOUT_LOCATION
            for i in range(1, count + 1)
        }
    )


_AWS_CREDENTIAL_VARS = (
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "AWS_SECURITY_TOKEN",
    "AWS_PROFILE",
    "AWS_DEFAULT_PROFILE",
    "AWS_CONTAINER_CREDENTIALS_RELATIVE_URI",
    "AWS_CONTAINER_CREDENTIALS_FULL_URI",
    "AWS_WEB_IDENTITY_TOKEN_FILE",
    "AWS_ROLE_ARN",
)


@pytest.fixture
def no_aws_credentials(tmp_path, monkeypatch):
    """Leave the boto3 credential chain with nothing to find."""
    for name in _AWS_CREDENTIAL_VARS:
        monkeypatch.delenv(name, raising=False)
    credentials = tmp_path / "aws-credentials"
    config = tmp_path / "aws-config"
    credentials.write_text("", encoding="utf-8")
    config.write_text("", encoding="utf-8")
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(credentials))
    monkeypatch.setenv("AWS_CONFIG_FILE", str(config))
    monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")
