"""BlobStore against a stubbed boto3 S3 client."""

from __future__ import annotations

import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from mhtml_indexer import (
    BlobStore,
    ConfigError,
    ObjectNotAvailableError,
    StoreConnectionError,
    StoreError,
    StoreListingError,
)


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="ap-northeast-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubbed(s3_client):
    with Stubber(s3_client) as stubber:
        yield BlobStore(s3_client, region="ap-northeast-1"), stubber
        stubber.assert_no_pending_responses()


def test_list_objects_follows_pagination(stubbed):
    store, stubber = stubbed
    stubber.add_response(
        "list_objects_v2",
        {
            "Contents": [{"Key": "qast-mhtml/data/qast_1.mhtml", "Size": 10}],
            "IsTruncated": True,
            "NextContinuationToken": "page-2",
        },
        {"Bucket": "qast-mhtml", "Prefix": "qast-mhtml/data"},
    )
    stubber.add_response(
        "list_objects_v2",
        {
            "Contents": [
                {"Key": "qast-mhtml/data/notes.txt", "Size": 3},
                {"Key": "qast-mhtml/data/qast_2.mhtml", "Size": 20},
            ],
            "IsTruncated": False,
        },
        {"Bucket": "qast-mhtml", "Prefix": "qast-mhtml/data", "ContinuationToken": "page-2"},
    )

    infos = list(store.list_objects("qast-mhtml", "qast-mhtml/data"))

    assert [i.name for i in infos] == [
        "qast-mhtml/data/qast_1.mhtml",
        "qast-mhtml/data/notes.txt",
        "qast-mhtml/data/qast_2.mhtml",
    ]
    assert infos[2].size == 20


@pytest.mark.asyncio
async def test_alist_names_filters_suffix(stubbed):
    store, stubber = stubbed
    stubber.add_response(
        "list_objects_v2",
        {
            "Contents": [
                {"Key": "stock-mhtml/data/stock_1.mhtml"},
                {"Key": "stock-mhtml/data/stock_1.json"},
            ],
            "IsTruncated": False,
        },
        {"Bucket": "stock-mhtml", "Prefix": "stock-mhtml/data"},
    )

    names = await store.alist_names("stock-mhtml", "stock-mhtml/data", ".mhtml")
    assert names == ["stock-mhtml/data/stock_1.mhtml"]


def test_list_objects_wraps_client_errors(stubbed):
    store, stubber = stubbed
    stubber.add_client_error("list_objects_v2", service_error_code="NoSuchBucket", http_status_code=404)

    with pytest.raises(StoreListingError, match="qast-mhtml"):
        list(store.list_objects("qast-mhtml", "qast-mhtml/data"))


def test_download_reads_body(stubbed):
    store, stubber = stubbed
    data = b"MIME-Version: 1.0\r\n"
    stubber.add_response(
        "get_object",
        {"Body": StreamingBody(io.BytesIO(data), len(data))},
        {"Bucket": "qast-mhtml", "Key": "qast-mhtml/data/a.mhtml"},
    )

    assert store.download_object("qast-mhtml", "qast-mhtml/data/a.mhtml") == data


def test_download_missing_key(stubbed):
    store, stubber = stubbed
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)

    with pytest.raises(ObjectNotAvailableError):
        store.download_object("qast-mhtml", "qast-mhtml/data/gone.mhtml")


def test_download_other_errors(stubbed):
    store, stubber = stubbed
    stubber.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)

    with pytest.raises(StoreError) as excinfo:
        store.download_object("qast-mhtml", "qast-mhtml/data/a.mhtml")
    assert not isinstance(excinfo.value, ObjectNotAvailableError)


@pytest.mark.asyncio
async def test_connectivity(stubbed):
    store, stubber = stubbed
    stubber.add_response("head_bucket", {}, {"Bucket": "qast-mhtml"})
    stubber.add_client_error(
        "head_bucket",
        service_error_code="403",
        http_status_code=403,
        expected_params={"Bucket": "stock-mhtml"},
    )

    await store.acheck("qast-mhtml")
    with pytest.raises(StoreConnectionError, match="stock-mhtml"):
        await store.acheck("stock-mhtml")


def test_public_url_virtual_hosted():
    store = BlobStore(None, region="ap-northeast-1")
    assert store.public_url("qast-mhtml", "qast-mhtml/data/a b.mhtml") == (
        "https://qast-mhtml.s3.ap-northeast-1.amazonaws.com/qast-mhtml/data/a%20b.mhtml"
    )


def test_public_url_custom_base():
    store = BlobStore(None, public_base_url="https://blobs.example.test/")
    assert store.public_url("stock-mhtml", "stock-mhtml/data/stock_1.mhtml") == (
        "https://blobs.example.test/stock-mhtml/stock-mhtml/data/stock_1.mhtml"
    )


def test_from_settings_uses_env_credentials(monkeypatch, settings_factory):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    settings = settings_factory(region="eu-west-1")

    store = BlobStore.from_settings(settings)

    assert store.region == "eu-west-1"
    assert store.public_url("b", "k.mhtml") == "https://b.s3.eu-west-1.amazonaws.com/k.mhtml"


def test_from_settings_without_credentials_is_a_config_error(no_aws_credentials, settings_factory):
    with pytest.raises(ConfigError, match="credentials"):
        BlobStore.from_settings(settings_factory())
