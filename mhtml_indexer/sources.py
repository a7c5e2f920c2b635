"""Object store access: listing, downloading and public URLs for MHTML blobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from typing import Any, Optional
from urllib.parse import quote

from .config import ConfigError, IndexerSettings
from .models import ObjectInfo

log = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Base class for object store failures."""


class StoreConnectionError(StoreError):
    pass


class StoreListingError(StoreError):
    pass


class ObjectNotAvailableError(StoreError):
    """The object exists in the listing but has no readable body."""


class BlobStore:
    """Thin wrapper over an S3-compatible boto3 client.

    Containers map to buckets; object names are keys.
    """

    def __init__(
        self,
        client: Any,
        *,
        region: str = "us-east-1",
        public_base_url: Optional[str] = None,
    ) -> None:
        self._client = client
        self.region = region
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    @classmethod
    def from_settings(cls, settings: IndexerSettings) -> BlobStore:
        """Create the boto3 client, failing early when no credentials resolve."""
        import boto3

        session = boto3.Session(region_name=settings.region)
        if session.get_credentials() is None:
            raise ConfigError(
                "No object store credentials found. Set AWS_ACCESS_KEY_ID + "
                "AWS_SECRET_ACCESS_KEY, AWS_PROFILE, or an instance role."
            )
        client = session.client("s3", endpoint_url=settings.store_endpoint_url)
        log.info(
            "Object store client ready (region=%s endpoint=%s)",
            settings.region,
            settings.store_endpoint_url or "aws",
        )
        return cls(
            client,
            region=settings.region,
            public_base_url=settings.public_base_url,
        )

    # -----------------------------------------------------------------------
    # Blocking API
    # -----------------------------------------------------------------------

    def list_objects(self, container: str, prefix: str = "") -> Iterator[ObjectInfo]:
        """Lazily yield every object under *prefix*, following pagination."""
        from botocore.exceptions import BotoCoreError, ClientError

        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=container, Prefix=prefix):
                for obj in page.get("Contents", []):
                    yield ObjectInfo(
                        name=obj["Key"],
                        size=obj.get("Size", 0),
                        last_modified=obj.get("LastModified"),
                        content_type=obj.get("ContentType"),
                    )
        except (BotoCoreError, ClientError) as exc:
            raise StoreListingError(
                f"Listing {container}/{prefix} failed: {exc}"
            ) from exc

    def download_object(self, container: str, name: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._client.get_object(Bucket=container, Key=name)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404"):
                raise ObjectNotAvailableError(f"{container}/{name} not found") from exc
            raise StoreError(f"Download of {container}/{name} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreError(f"Download of {container}/{name} failed: {exc}") from exc

        body = response.get("Body")
        if body is None:
            raise ObjectNotAvailableError(f"{container}/{name} has no readable body")
        try:
            return body.read()
        finally:
            body.close()

    def test_connectivity(self, container: str) -> bool:
        """Check that *container* exists and is reachable with these credentials."""
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self._client.head_bucket(Bucket=container)
        except (BotoCoreError, ClientError) as exc:
            log.error("Object store connectivity check for %s failed: %s", container, exc)
            return False
        log.info("Object store connectivity check for %s passed", container)
        return True

    def public_url(self, container: str, name: str) -> str:
        key = quote(name, safe="/")
        if self.public_base_url:
            return f"{self.public_base_url}/{container}/{key}"
        return f"https://{container}.s3.{self.region}.amazonaws.com/{key}"

    # -----------------------------------------------------------------------
    # Async adapters (blocking calls run in worker threads)
    # -----------------------------------------------------------------------

    async def alist_names(self, container: str, prefix: str, suffix: str) -> list[str]:
        """Names under *prefix* ending in *suffix*, in listing order."""

        def _collect() -> list[str]:
            return [
                info.name
                for info in self.list_objects(container, prefix)
                if info.name.endswith(suffix)
            ]

        return await asyncio.to_thread(_collect)

    async def adownload(self, container: str, name: str) -> bytes:
        return await asyncio.to_thread(self.download_object, container, name)

    async def acheck(self, container: str) -> None:
        """Raise :class:`StoreConnectionError` unless *container* is reachable."""
        if not await asyncio.to_thread(self.test_connectivity, container):
            raise StoreConnectionError(f"Object store container {container!r} is not reachable")
