"""Integration tests for bucket handlers."""

import xml.etree.ElementTree as ET

import pytest

from osslite.acl import ObjectPermission
from osslite.errors import OSSError


class TestCreateBucket:
    """Tests for PUT /{bucket} (CreateBucket)."""

    async def test_create_bucket(self, client):
        resp = await client.put("/new-bucket")
        assert resp.status_code == 200
        assert resp.headers["location"] == "/new-bucket"

    async def test_create_existing_bucket(self, client):
        await client.put("/dup-bucket")
        resp = await client.put("/dup-bucket")
        assert resp.status_code == 409
        assert "BucketAlreadyExists" in resp.text

    async def test_invalid_bucket_name(self, client):
        resp = await client.put("/Invalid_Bucket")
        assert resp.status_code == 400
        assert "InvalidBucketName" in resp.text

    async def test_create_with_acl(self, client):
        await client.put("/acl-bucket", headers={"x-oss-acl": "public-read"})
        resp = await client.get("/acl-bucket?acl")
        root = ET.fromstring(resp.content)
        assert root.findtext("AccessControlList/Grant") == "public-read"

    async def test_default_bucket_acl_is_private(self, client):
        await client.put("/plain-bucket")
        resp = await client.get("/plain-bucket?acl")
        root = ET.fromstring(resp.content)
        assert root.findtext("AccessControlList/Grant") == "private"

    async def test_create_with_default_acl_rejected(self, client):
        """Buckets have no default level."""
        resp = await client.put("/bad-acl-bucket", headers={"x-oss-acl": "default"})
        assert resp.status_code == 400
        assert "InvalidArgument" in resp.text


class TestDeleteBucket:
    """Tests for DELETE /{bucket}."""

    async def test_delete_empty_bucket(self, client):
        await client.put("/del-bucket")
        resp = await client.delete("/del-bucket")
        assert resp.status_code == 204

    async def test_delete_missing_bucket(self, client):
        resp = await client.delete("/missing-bucket")
        assert resp.status_code == 404
        assert "NoSuchBucket" in resp.text

    async def test_delete_non_empty_bucket(self, client):
        await client.put("/full-bucket")
        await client.put("/full-bucket/obj", content=b"x")
        resp = await client.delete("/full-bucket")
        assert resp.status_code == 409
        assert "BucketNotEmpty" in resp.text


class TestListBuckets:
    """Tests for GET /."""

    async def test_list_buckets(self, client):
        await client.put("/bucket-b")
        await client.put("/bucket-a")
        resp = await client.get("/")
        root = ET.fromstring(resp.content)
        names = [b.findtext("Name") for b in root.findall("Buckets/Bucket")]
        assert names == ["bucket-a", "bucket-b"]
        assert root.findtext("Owner/DisplayName") == "test"


class TestBucketAcl:
    """Tests for GET/PUT /{bucket}?acl."""

    async def test_put_bucket_acl(self, client):
        await client.put("/acl-change")
        resp = await client.put("/acl-change?acl", headers={"x-oss-acl": "public-read-write"})
        assert resp.status_code == 200
        resp = await client.get("/acl-change?acl")
        assert ET.fromstring(resp.content).findtext("AccessControlList/Grant") == "public-read-write"

    async def test_put_bucket_acl_requires_header(self, client):
        await client.put("/acl-missing")
        resp = await client.put("/acl-missing?acl")
        assert resp.status_code == 400

    async def test_get_acl_missing_bucket(self, client):
        resp = await client.get("/nowhere?acl")
        assert resp.status_code == 404


class TestBucketsThroughClient:
    """Bucket operations through the SDK."""

    async def test_bucket_lifecycle(self, oss_client):
        await oss_client.create_bucket("sdk-bucket", ObjectPermission.PUBLIC_READ)
        buckets = await oss_client.list_buckets()
        assert [b.name for b in buckets] == ["sdk-bucket"]
        assert buckets[0].location == "oss-cn-hangzhou"

        acl = await oss_client.get_bucket_acl("sdk-bucket")
        assert acl.permission is ObjectPermission.PUBLIC_READ

        await oss_client.set_bucket_acl("sdk-bucket", ObjectPermission.PRIVATE)
        assert (await oss_client.get_bucket_acl("sdk-bucket")).permission is ObjectPermission.PRIVATE

        await oss_client.delete_bucket("sdk-bucket")
        assert await oss_client.list_buckets() == []

    async def test_delete_missing_bucket_raises(self, oss_client):
        with pytest.raises(OSSError) as exc_info:
            await oss_client.delete_bucket("sdk-missing")
        assert exc_info.value.code == "NoSuchBucket"
        assert exc_info.value.http_status == 404
        assert exc_info.value.request_id
