"""Integration tests for multipart upload handlers."""

import asyncio
import binascii
import hashlib
import os
import xml.etree.ElementTree as ET

import pytest

from osslite.client import UploadPartRequest
from osslite.errors import OSSError
from osslite.handlers.multipart import compute_composite_etag

PART_SIZE = 100 * 1024


@pytest.fixture
async def bucket(client):
    await client.put("/mpu-bucket")
    return "mpu-bucket"


async def initiate(client, bucket, key, headers=None) -> str:
    resp = await client.post(f"/{bucket}/{key}?uploads", headers=headers or {})
    assert resp.status_code == 200
    return ET.fromstring(resp.content).findtext("UploadId")


async def upload(client, bucket, key, upload_id, part_number, data) -> str:
    resp = await client.put(
        f"/{bucket}/{key}",
        params={"partNumber": str(part_number), "uploadId": upload_id},
        content=data,
    )
    assert resp.status_code == 200
    return resp.headers["etag"]


def complete_body(parts) -> str:
    items = "".join(
        f"<Part><PartNumber>{n}</PartNumber><ETag>{etag}</ETag></Part>" for n, etag in parts
    )
    return f"<CompleteMultipartUpload>{items}</CompleteMultipartUpload>"


class TestCompositeEtag:
    """Tests for compute_composite_etag."""

    def test_matches_md5_of_digests(self):
        parts = [b"a" * 10, b"b" * 10]
        etags = [f'"{hashlib.md5(p).hexdigest().upper()}"' for p in parts]
        digests = b"".join(hashlib.md5(p).digest() for p in parts)
        expected = f'"{hashlib.md5(digests).hexdigest().upper()}-2"'
        assert compute_composite_etag(etags) == expected

    def test_accepts_bare_etags(self):
        etag = hashlib.md5(b"x").hexdigest()
        result = compute_composite_etag([etag])
        assert result.endswith('-1"')
        assert binascii.unhexlify(result.strip('"').split("-")[0])


class TestInitiateAndUpload:
    """Tests for InitiateMultipartUpload and UploadPart."""

    async def test_initiate(self, client, bucket):
        resp = await client.post(f"/{bucket}/big?uploads")
        root = ET.fromstring(resp.content)
        assert root.tag == "InitiateMultipartUploadResult"
        assert root.findtext("Bucket") == bucket
        assert root.findtext("Key") == "big"
        assert root.findtext("UploadId")

    async def test_initiate_unknown_acl(self, client, bucket):
        resp = await client.post(
            f"/{bucket}/big?uploads", headers={"x-oss-object-acl": "nope"}
        )
        assert resp.status_code == 400

    async def test_initiate_stores_directive_as_given(self, client, bucket, stores):
        metadata, _ = stores
        with_acl = await initiate(client, bucket, "a", {"x-oss-object-acl": "private"})
        without_acl = await initiate(client, bucket, "b")
        assert (await metadata.get_multipart_upload(bucket, "a", with_acl))["acl"] == "private"
        assert (await metadata.get_multipart_upload(bucket, "b", without_acl))["acl"] is None

    async def test_upload_part_unknown_upload(self, client, bucket):
        resp = await client.put(
            f"/{bucket}/big", params={"partNumber": "1", "uploadId": "nope"}, content=b"x"
        )
        assert resp.status_code == 404
        assert "NoSuchUpload" in resp.text

    async def test_upload_part_bad_number(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        resp = await client.put(
            f"/{bucket}/big", params={"partNumber": "0", "uploadId": upload_id}, content=b"x"
        )
        assert resp.status_code == 400
        resp = await client.put(
            f"/{bucket}/big", params={"partNumber": "10001", "uploadId": upload_id}, content=b"x"
        )
        assert resp.status_code == 400


class TestCompleteMultipartUpload:
    """Tests for CompleteMultipartUpload."""

    async def test_complete(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        data1, data2 = os.urandom(PART_SIZE), b"tail"
        e1 = await upload(client, bucket, "big", upload_id, 1, data1)
        e2 = await upload(client, bucket, "big", upload_id, 2, data2)

        resp = await client.post(
            f"/{bucket}/big",
            params={"uploadId": upload_id},
            content=complete_body([(1, e1), (2, e2)]),
        )
        assert resp.status_code == 200
        root = ET.fromstring(resp.content)
        assert root.findtext("ETag") == compute_composite_etag([e1, e2])
        assert root.findtext("Location") == f"http://testserver/{bucket}/big"

        got = await client.get(f"/{bucket}/big")
        assert got.content == data1 + data2
        assert got.headers["x-oss-object-type"] == "Multipart"

    async def test_complete_removes_upload(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        e1 = await upload(client, bucket, "big", upload_id, 1, b"x")
        await client.post(
            f"/{bucket}/big", params={"uploadId": upload_id}, content=complete_body([(1, e1)])
        )
        resp = await client.get(f"/{bucket}/big", params={"uploadId": upload_id})
        assert resp.status_code == 404

    async def test_complete_waits_for_key_lock(self, app, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        e1 = await upload(client, bucket, "big", upload_id, 1, b"assembled")

        locks = app.state.object_locks
        async with locks.hold(bucket, "big"):
            pending = asyncio.create_task(
                client.post(
                    f"/{bucket}/big",
                    params={"uploadId": upload_id},
                    content=complete_body([(1, e1)]),
                )
            )
            for _ in range(20):
                await asyncio.sleep(0)
            assert not pending.done()
            assert (await client.head(f"/{bucket}/big")).status_code == 404

        assert (await pending).status_code == 200
        assert (await client.get(f"/{bucket}/big")).content == b"assembled"
        assert len(locks) == 0

    async def test_part_order(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        e1 = await upload(client, bucket, "big", upload_id, 1, os.urandom(PART_SIZE))
        e2 = await upload(client, bucket, "big", upload_id, 2, b"x")
        resp = await client.post(
            f"/{bucket}/big",
            params={"uploadId": upload_id},
            content=complete_body([(2, e2), (1, e1)]),
        )
        assert resp.status_code == 400
        assert "InvalidPartOrder" in resp.text

    async def test_wrong_etag(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        await upload(client, bucket, "big", upload_id, 1, b"x")
        resp = await client.post(
            f"/{bucket}/big",
            params={"uploadId": upload_id},
            content=complete_body([(1, '"00000000000000000000000000000000"')]),
        )
        assert resp.status_code == 400
        assert "InvalidPart" in resp.text

    async def test_missing_part(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        e1 = await upload(client, bucket, "big", upload_id, 1, b"x")
        resp = await client.post(
            f"/{bucket}/big",
            params={"uploadId": upload_id},
            content=complete_body([(1, e1), (2, e1)]),
        )
        assert resp.status_code == 400
        assert "InvalidPart" in resp.text

    async def test_small_part(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        e1 = await upload(client, bucket, "big", upload_id, 1, b"small")
        e2 = await upload(client, bucket, "big", upload_id, 2, b"tail")
        resp = await client.post(
            f"/{bucket}/big",
            params={"uploadId": upload_id},
            content=complete_body([(1, e1), (2, e2)]),
        )
        assert resp.status_code == 400
        assert "EntityTooSmall" in resp.text

    async def test_malformed_xml(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        resp = await client.post(
            f"/{bucket}/big", params={"uploadId": upload_id}, content=b"<not-closed"
        )
        assert resp.status_code == 400
        assert "MalformedXML" in resp.text

    async def test_empty_part_list(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        resp = await client.post(
            f"/{bucket}/big",
            params={"uploadId": upload_id},
            content=b"<CompleteMultipartUpload></CompleteMultipartUpload>",
        )
        assert resp.status_code == 400
        assert "MalformedXML" in resp.text

    async def test_unknown_acl_on_complete(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        e1 = await upload(client, bucket, "big", upload_id, 1, b"x")
        resp = await client.post(
            f"/{bucket}/big",
            params={"uploadId": upload_id},
            headers={"x-oss-object-acl": "PUBLIC"},
            content=complete_body([(1, e1)]),
        )
        assert resp.status_code == 400
        assert "InvalidArgument" in resp.text


class TestAbortAndList:
    """Tests for AbortMultipartUpload, ListMultipartUploads and ListParts."""

    async def test_abort(self, client, bucket):
        upload_id = await initiate(client, bucket, "big")
        await upload(client, bucket, "big", upload_id, 1, b"x")
        resp = await client.delete(f"/{bucket}/big", params={"uploadId": upload_id})
        assert resp.status_code == 204
        resp = await client.delete(f"/{bucket}/big", params={"uploadId": upload_id})
        assert resp.status_code == 404

    async def test_list_uploads(self, client, bucket):
        first = await initiate(client, bucket, "a")
        second = await initiate(client, bucket, "b")
        resp = await client.get(f"/{bucket}?uploads")
        root = ET.fromstring(resp.content)
        ids = {u.findtext("UploadId") for u in root.findall("Upload")}
        assert ids == {first, second}

    async def test_list_uploads_prefix(self, client, bucket):
        await initiate(client, bucket, "logs/a")
        await initiate(client, bucket, "data/b")
        resp = await client.get(f"/{bucket}", params={"uploads": "", "prefix": "logs/"})
        root = ET.fromstring(resp.content)
        assert [u.findtext("Key") for u in root.findall("Upload")] == ["logs/a"]

    async def test_list_parts_through_client(self, oss_client, bucket):
        upload_id = (await oss_client.initiate_multipart_upload(bucket, "big")).upload_id
        r1 = await oss_client.upload_part(UploadPartRequest(bucket, "big", upload_id, 1, b"aa"))
        r2 = await oss_client.upload_part(UploadPartRequest(bucket, "big", upload_id, 2, b"bbb"))

        listing = await oss_client.list_parts(bucket, "big", upload_id)
        assert [p.part_number for p in listing.parts] == [1, 2]
        assert [p.etag for p in listing.parts] == [r1.etag, r2.etag]
        assert [p.size for p in listing.parts] == [2, 3]
        assert listing.is_truncated is False

        await oss_client.abort_multipart_upload(bucket, "big", upload_id)
        with pytest.raises(OSSError) as exc_info:
            await oss_client.list_parts(bucket, "big", upload_id)
        assert exc_info.value.code == "NoSuchUpload"
