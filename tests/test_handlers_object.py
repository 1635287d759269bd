"""Integration tests for object handlers.

These tests use a real SQLite metadata store (in-memory) and a real
local storage backend (in tmp_path) and exercise the full request path
via httpx AsyncClient.
"""

import asyncio
import hashlib
import xml.etree.ElementTree as ET

import pytest

from osslite.handlers.base import KeyLocks


def etag_of(data: bytes) -> str:
    return f'"{hashlib.md5(data).hexdigest().upper()}"'


@pytest.fixture
async def bucket(client):
    await client.put("/obj-bucket")
    return "obj-bucket"


class TestPutObject:
    """Tests for PUT /{bucket}/{key} (PutObject)."""

    async def test_put_object_success(self, client, bucket):
        """PutObject returns 200 with an uppercase quoted MD5 ETag."""
        resp = await client.put(f"/{bucket}/test.txt", content=b"hello world")
        assert resp.status_code == 200
        assert resp.headers["etag"] == etag_of(b"hello world")
        assert resp.headers["x-oss-request-id"]

    async def test_put_object_nosuchbucket(self, client):
        resp = await client.put("/nonexistent-bucket/test.txt", content=b"data")
        assert resp.status_code == 404
        assert "NoSuchBucket" in resp.text

    async def test_put_object_unknown_acl_rejected(self, client, bucket):
        """An unparseable x-oss-object-acl is InvalidArgument and nothing is written."""
        resp = await client.put(
            f"/{bucket}/bad-acl",
            content=b"data",
            headers={"x-oss-object-acl": "UnknownPermission"},
        )
        assert resp.status_code == 400
        assert "<Code>InvalidArgument</Code>" in resp.text

        head = await client.head(f"/{bucket}/bad-acl")
        assert head.status_code == 404

    async def test_put_object_invalid_key(self, client, bucket):
        resp = await client.put(f"/{bucket}/%5Cleading-backslash", content=b"x")
        assert resp.status_code == 400
        assert "InvalidObjectName" in resp.text

    async def test_key_cannot_reach_another_bucket(self, client, stores, bucket):
        """A key with ``..`` segments is rejected before it touches disk."""
        _, storage = stores
        await client.put("/victim-bucket")
        await client.put("/victim-bucket/victim", content=b"original")

        resp = await client.put(f"/{bucket}/..%2Fvictim-bucket%2Fvictim", content=b"clobbered")
        assert resp.status_code == 400
        assert "InvalidObjectName" in resp.text

        resp = await client.post(
            f"/{bucket}/..%2Fvictim-bucket%2Fvictim?append&position=0", content=b"clobbered"
        )
        assert resp.status_code == 400

        assert (storage.root / "victim-bucket" / "victim").read_bytes() == b"original"
        assert (await client.get("/victim-bucket/victim")).content == b"original"

    async def test_put_object_overwrite(self, client, bucket):
        await client.put(f"/{bucket}/file.txt", content=b"original")
        await client.put(f"/{bucket}/file.txt", content=b"updated")
        resp = await client.get(f"/{bucket}/file.txt")
        assert resp.content == b"updated"
        assert resp.headers["x-oss-object-type"] == "Normal"


class TestGetObject:
    """Tests for GET and HEAD /{bucket}/{key}."""

    async def test_get_object_with_metadata(self, client, bucket):
        await client.put(
            f"/{bucket}/meta.txt",
            content=b"payload",
            headers={"Content-Type": "text/plain", "x-oss-meta-Color": "blue"},
        )
        resp = await client.get(f"/{bucket}/meta.txt")
        assert resp.status_code == 200
        assert resp.content == b"payload"
        assert resp.headers["content-type"] == "text/plain"
        assert resp.headers["x-oss-meta-color"] == "blue"
        assert resp.headers["etag"] == etag_of(b"payload")
        assert "last-modified" in resp.headers

    async def test_get_missing_key(self, client, bucket):
        resp = await client.get(f"/{bucket}/missing")
        assert resp.status_code == 404
        root = ET.fromstring(resp.content)
        assert root.findtext("Code") == "NoSuchKey"
        assert root.findtext("Message").startswith("The specified key does not exist.")
        assert root.findtext("RequestId") == resp.headers["x-oss-request-id"]

    async def test_get_range(self, client, bucket):
        await client.put(f"/{bucket}/range.bin", content=b"0123456789")
        resp = await client.get(f"/{bucket}/range.bin", headers={"Range": "bytes=2-5"})
        assert resp.status_code == 206
        assert resp.content == b"2345"
        assert resp.headers["content-range"] == "bytes 2-5/10"

    async def test_get_suffix_range(self, client, bucket):
        await client.put(f"/{bucket}/range.bin", content=b"0123456789")
        resp = await client.get(f"/{bucket}/range.bin", headers={"Range": "bytes=-3"})
        assert resp.status_code == 206
        assert resp.content == b"789"

    async def test_get_unsatisfiable_range(self, client, bucket):
        await client.put(f"/{bucket}/range.bin", content=b"0123456789")
        resp = await client.get(f"/{bucket}/range.bin", headers={"Range": "bytes=20-30"})
        assert resp.status_code == 416

    async def test_head_object(self, client, bucket):
        await client.put(f"/{bucket}/head.txt", content=b"abc")
        resp = await client.head(f"/{bucket}/head.txt")
        assert resp.status_code == 200
        assert resp.headers["content-length"] == "3"
        assert resp.headers["x-oss-object-type"] == "Normal"
        assert resp.content == b""

    async def test_head_missing_has_no_body(self, client, bucket):
        resp = await client.head(f"/{bucket}/missing")
        assert resp.status_code == 404
        assert resp.content == b""


class TestDeleteObject:
    """Tests for DELETE /{bucket}/{key}."""

    async def test_delete_object(self, client, bucket):
        await client.put(f"/{bucket}/gone.txt", content=b"x")
        resp = await client.delete(f"/{bucket}/gone.txt")
        assert resp.status_code == 204
        assert (await client.get(f"/{bucket}/gone.txt")).status_code == 404

    async def test_delete_is_idempotent(self, client, bucket):
        resp = await client.delete(f"/{bucket}/never-existed")
        assert resp.status_code == 204

    async def test_delete_removes_acl(self, client, bucket):
        await client.put(
            f"/{bucket}/acl-gone", content=b"x", headers={"x-oss-object-acl": "private"}
        )
        await client.delete(f"/{bucket}/acl-gone")
        resp = await client.get(f"/{bucket}/acl-gone?acl")
        assert resp.status_code == 404


class TestAppendObject:
    """Tests for POST /{bucket}/{key}?append&position=N."""

    async def test_first_append_creates_appendable(self, client, bucket):
        resp = await client.post(f"/{bucket}/log?append&position=0", content=b"hello")
        assert resp.status_code == 200
        assert resp.headers["x-oss-next-append-position"] == "5"
        assert resp.headers["etag"] == etag_of(b"hello")

        head = await client.head(f"/{bucket}/log")
        assert head.headers["x-oss-object-type"] == "Appendable"
        assert head.headers["x-oss-next-append-position"] == "5"

    async def test_second_append_extends(self, client, bucket):
        await client.post(f"/{bucket}/log?append&position=0", content=b"hello")
        resp = await client.post(f"/{bucket}/log?append&position=5", content=b" world")
        assert resp.headers["x-oss-next-append-position"] == "11"
        assert resp.headers["etag"] == etag_of(b"hello world")
        assert (await client.get(f"/{bucket}/log")).content == b"hello world"

    async def test_wrong_position(self, client, bucket):
        await client.post(f"/{bucket}/log?append&position=0", content=b"hello")
        resp = await client.post(f"/{bucket}/log?append&position=3", content=b"x")
        assert resp.status_code == 409
        assert "PositionNotEqualToLength" in resp.text
        assert resp.headers["x-oss-next-append-position"] == "5"

    async def test_nonzero_position_on_new_object(self, client, bucket):
        resp = await client.post(f"/{bucket}/fresh?append&position=7", content=b"x")
        assert resp.status_code == 409
        assert resp.headers["x-oss-next-append-position"] == "0"

    async def test_append_to_normal_object(self, client, bucket):
        await client.put(f"/{bucket}/normal", content=b"abc")
        resp = await client.post(f"/{bucket}/normal?append&position=3", content=b"d")
        assert resp.status_code == 409
        assert "ObjectNotAppendable" in resp.text

    async def test_missing_position(self, client, bucket):
        resp = await client.post(f"/{bucket}/log?append", content=b"x")
        assert resp.status_code == 400
        assert "InvalidArgument" in resp.text

    async def test_first_append_keeps_user_metadata(self, client, bucket):
        await client.post(
            f"/{bucket}/meta-log?append&position=0",
            content=b"a",
            headers={"x-oss-meta-source": "first"},
        )
        await client.post(
            f"/{bucket}/meta-log?append&position=1",
            content=b"b",
            headers={"x-oss-meta-source": "second"},
        )
        head = await client.head(f"/{bucket}/meta-log")
        assert head.headers["x-oss-meta-source"] == "first"

    async def test_put_over_appendable_resets_type(self, client, bucket):
        await client.post(f"/{bucket}/log?append&position=0", content=b"abc")
        await client.put(f"/{bucket}/log", content=b"new")
        head = await client.head(f"/{bucket}/log")
        assert head.headers["x-oss-object-type"] == "Normal"


class TestCopyObject:
    """Tests for PUT with x-oss-copy-source."""

    async def test_copy_keeps_metadata_by_default(self, client, bucket):
        await client.put(
            f"/{bucket}/src",
            content=b"copy me",
            headers={"Content-Type": "text/plain", "x-oss-meta-a": "1"},
        )
        resp = await client.put(
            f"/{bucket}/dst", headers={"x-oss-copy-source": f"/{bucket}/src"}
        )
        assert resp.status_code == 200
        root = ET.fromstring(resp.content)
        assert root.tag == "CopyObjectResult"
        assert root.findtext("ETag") == etag_of(b"copy me")

        got = await client.get(f"/{bucket}/dst")
        assert got.content == b"copy me"
        assert got.headers["content-type"] == "text/plain"
        assert got.headers["x-oss-meta-a"] == "1"

    async def test_copy_replace_metadata(self, client, bucket):
        await client.put(f"/{bucket}/src", content=b"x", headers={"x-oss-meta-a": "1"})
        await client.put(
            f"/{bucket}/dst",
            headers={
                "x-oss-copy-source": f"/{bucket}/src",
                "x-oss-metadata-directive": "REPLACE",
                "Content-Type": "application/json",
                "x-oss-meta-b": "2",
            },
        )
        got = await client.head(f"/{bucket}/dst")
        assert got.headers["content-type"] == "application/json"
        assert got.headers["x-oss-meta-b"] == "2"
        assert "x-oss-meta-a" not in got.headers

    async def test_copy_missing_source(self, client, bucket):
        resp = await client.put(
            f"/{bucket}/dst", headers={"x-oss-copy-source": f"/{bucket}/nope"}
        )
        assert resp.status_code == 404
        assert "NoSuchKey" in resp.text

    async def test_copy_bad_directive(self, client, bucket):
        await client.put(f"/{bucket}/src", content=b"x")
        resp = await client.put(
            f"/{bucket}/dst",
            headers={
                "x-oss-copy-source": f"/{bucket}/src",
                "x-oss-metadata-directive": "MERGE",
            },
        )
        assert resp.status_code == 400


class TestListObjects:
    """Tests for GET /{bucket}."""

    async def test_list_with_prefix_and_delimiter(self, client, bucket):
        for key in ("a/1", "a/2", "b/1", "c"):
            await client.put(f"/{bucket}/{key}", content=b"x")
        resp = await client.get(f"/{bucket}", params={"delimiter": "/"})
        root = ET.fromstring(resp.content)
        keys = [c.findtext("Key") for c in root.findall("Contents")]
        prefixes = [p.findtext("Prefix") for p in root.findall("CommonPrefixes")]
        assert keys == ["c"]
        assert prefixes == ["a/", "b/"]

        resp = await client.get(f"/{bucket}", params={"prefix": "a/"})
        root = ET.fromstring(resp.content)
        assert [c.findtext("Key") for c in root.findall("Contents")] == ["a/1", "a/2"]

    async def test_list_pagination(self, client, bucket):
        for i in range(5):
            await client.put(f"/{bucket}/k{i}", content=b"x")
        resp = await client.get(f"/{bucket}", params={"max-keys": "2"})
        root = ET.fromstring(resp.content)
        assert root.findtext("IsTruncated") == "true"
        assert root.findtext("NextMarker") == "k1"

        resp = await client.get(f"/{bucket}", params={"max-keys": "2", "marker": "k1"})
        root = ET.fromstring(resp.content)
        assert [c.findtext("Key") for c in root.findall("Contents")] == ["k2", "k3"]

    async def test_delimiter_pages_follow_next_marker(self, client, bucket):
        for key in ("a/1", "a/2", "b"):
            await client.put(f"/{bucket}/{key}", content=b"x")

        seen = []
        params = {"delimiter": "/", "max-keys": "1"}
        for _ in range(10):
            root = ET.fromstring((await client.get(f"/{bucket}", params=params)).content)
            seen += [p.findtext("Prefix") for p in root.findall("CommonPrefixes")]
            seen += [c.findtext("Key") for c in root.findall("Contents")]
            if root.findtext("IsTruncated") == "false":
                break
            params["marker"] = root.findtext("NextMarker")

        assert seen == ["a/", "b"]

    async def test_list_reports_object_type(self, client, bucket):
        await client.post(f"/{bucket}/log?append&position=0", content=b"x")
        resp = await client.get(f"/{bucket}")
        root = ET.fromstring(resp.content)
        assert root.find("Contents").findtext("Type") == "Appendable"

    async def test_invalid_max_keys(self, client, bucket):
        resp = await client.get(f"/{bucket}", params={"max-keys": "0"})
        assert resp.status_code == 400


class TestObjectAclHandlers:
    """Tests for GET/PUT /{bucket}/{key}?acl."""

    async def test_put_acl_missing_header(self, client, bucket):
        await client.put(f"/{bucket}/k", content=b"x")
        resp = await client.put(f"/{bucket}/k?acl")
        assert resp.status_code == 400
        assert "InvalidArgument" in resp.text

    async def test_put_acl_unknown_value(self, client, bucket):
        await client.put(f"/{bucket}/k", content=b"x")
        resp = await client.put(f"/{bucket}/k?acl", headers={"x-oss-object-acl": "everyone"})
        assert resp.status_code == 400
        get = await client.get(f"/{bucket}/k?acl")
        assert ET.fromstring(get.content).findtext("AccessControlList/Grant") == "default"

    async def test_put_acl_missing_key(self, client, bucket):
        resp = await client.put(f"/{bucket}/nope?acl", headers={"x-oss-object-acl": "private"})
        assert resp.status_code == 404
        assert "NoSuchKey" in resp.text

    async def test_put_acl_missing_bucket(self, client):
        resp = await client.put("/no-bucket/k?acl", headers={"x-oss-object-acl": "private"})
        assert resp.status_code == 404
        assert "NoSuchBucket" in resp.text

    async def test_put_acl_does_not_touch_body(self, client, bucket):
        await client.put(f"/{bucket}/k", content=b"body")
        await client.put(f"/{bucket}/k?acl", headers={"x-oss-object-acl": "public-read"})
        got = await client.get(f"/{bucket}/k")
        assert got.content == b"body"
        assert got.headers["etag"] == etag_of(b"body")


class TestKeyLocks:
    """Tests for the per-key write lock table."""

    async def test_second_writer_waits_for_first(self):
        locks = KeyLocks()
        order = []
        entered = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with locks.hold("b", "k"):
                order.append("first-in")
                entered.set()
                await release.wait()
                order.append("first-out")

        async def second():
            await entered.wait()
            async with locks.hold("b", "k"):
                order.append("second-in")

        tasks = [asyncio.create_task(first()), asyncio.create_task(second())]
        await entered.wait()
        await asyncio.sleep(0)
        assert len(locks) == 1
        release.set()
        await asyncio.gather(*tasks)

        assert order == ["first-in", "first-out", "second-in"]
        assert len(locks) == 0

    async def test_other_keys_do_not_block(self):
        locks = KeyLocks()
        async with locks.hold("b", "k1"):
            async with locks.hold("b", "k2"):
                assert len(locks) == 2
        assert len(locks) == 0

    async def test_released_when_body_raises(self):
        locks = KeyLocks()
        with pytest.raises(RuntimeError):
            async with locks.hold("b", "k"):
                raise RuntimeError("write failed")
        assert len(locks) == 0
        async with locks.hold("b", "k"):
            pass


class TestObjectWriteLocking:
    """Writes to one key share a lock that is dropped once idle."""

    async def test_lock_table_empty_after_writes(self, app, client, bucket):
        await client.put(f"/{bucket}/k", content=b"x")
        await client.post(f"/{bucket}/log?append&position=0", content=b"a")
        await client.post(f"/{bucket}/log?append&position=1", content=b"b")
        await client.post(f"/{bucket}/log?append&position=9", content=b"c")
        await client.put(f"/{bucket}/copy", headers={"x-oss-copy-source": f"/{bucket}/k"})
        await client.put(f"/{bucket}/k?acl", headers={"x-oss-object-acl": "private"})
        await client.delete(f"/{bucket}/k")
        assert len(app.state.object_locks) == 0

    async def test_concurrent_put_and_append_stay_consistent(self, client, bucket):
        await client.post(f"/{bucket}/log?append&position=0", content=b"hello")
        await asyncio.gather(
            client.post(f"/{bucket}/log?append&position=5", content=b" world"),
            client.put(f"/{bucket}/log", content=b"replaced"),
        )

        got = await client.get(f"/{bucket}/log")
        assert got.content == b"replaced"
        assert got.headers["content-length"] == "8"
        assert got.headers["x-oss-object-type"] == "Normal"
        assert got.headers["etag"] == etag_of(b"replaced")

    async def test_concurrent_appends_at_same_position(self, client, bucket):
        await client.post(f"/{bucket}/log?append&position=0", content=b"abc")
        responses = await asyncio.gather(
            *(
                client.post(f"/{bucket}/log?append&position=3", content=b"d")
                for _ in range(5)
            )
        )
        assert sorted(r.status_code for r in responses) == [200, 409, 409, 409, 409]
        got = await client.get(f"/{bucket}/log")
        assert got.content == b"abcd"
        assert got.headers["x-oss-next-append-position"] == "4"
