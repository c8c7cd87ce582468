"""Tests for the S3 blob client, with boto3 answered by botocore's Stubber."""

import io

import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from shared.clients.blob.s3.BlobClientS3 import BlobClientS3


@pytest.fixture
async def s3_client(helper_config, monkeypatch):
    monkeypatch.setenv("BLOB_S3_BUCKET", "docintel-test")
    monkeypatch.setenv("BLOB_S3_ACCESS_KEY_ID", "AKIDEXAMPLE")
    monkeypatch.setenv("BLOB_S3_SECRET_ACCESS_KEY", "secret")
    client = BlobClientS3(helper_config=helper_config)
    await client.boot()
    yield client
    await client.close()


@pytest.mark.asyncio
async def test_put_and_get(s3_client):
    key = s3_client.build_key("user-1", "doc-a", "report.pdf")
    with Stubber(s3_client._s3) as stub:
        stub.add_response(
            "put_object", {},
            {"Bucket": "docintel-test", "Key": key, "Body": b"%PDF", "ContentType": "application/pdf"},
        )
        stub.add_response(
            "get_object", {"Body": StreamingBody(io.BytesIO(b"%PDF"), 4)},
            {"Bucket": "docintel-test", "Key": key},
        )

        location = await s3_client.do_put(key, b"%PDF", "application/pdf")
        data = await s3_client.do_get(key)

    assert location == f"s3://docintel-test/{key}"
    assert data == b"%PDF"


@pytest.mark.asyncio
async def test_missing_object_is_file_not_found(s3_client):
    with Stubber(s3_client._s3) as stub:
        stub.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)

        with pytest.raises(FileNotFoundError):
            await s3_client.do_get("user-1/doc-a/gone.txt")


@pytest.mark.asyncio
async def test_healthcheck_reports_missing_bucket(s3_client):
    with Stubber(s3_client._s3) as stub:
        stub.add_response("head_bucket", {}, {"Bucket": "docintel-test"})
        stub.add_client_error("head_bucket", service_error_code="NoSuchBucket", http_status_code=404)

        assert await s3_client.do_healthcheck() is True
        assert await s3_client.do_healthcheck() is False


@pytest.mark.asyncio
async def test_presigned_url_points_at_the_object(s3_client):
    url = await s3_client.do_presigned_url("user-1/doc-a/report.pdf", ttl=60)

    assert "docintel-test" in url
    assert "report.pdf" in url
    assert "X-Amz-Expires=60" in url or "Expires=" in url
