"""Tests for OSS XML rendering helpers."""

import xml.etree.ElementTree as ET

from osslite.xml_utils import (
    render_complete_multipart_upload,
    render_copy_object_result,
    render_error,
    render_initiate_multipart_upload,
    render_list_buckets,
    render_list_objects,
    render_list_multipart_uploads,
    render_list_parts,
    xml_response,
)


class TestRenderError:
    def test_fields(self):
        root = ET.fromstring(render_error("NoSuchKey", "missing", "REQ1", "localhost"))
        assert root.tag == "Error"
        assert root.findtext("Code") == "NoSuchKey"
        assert root.findtext("Message") == "missing"
        assert root.findtext("RequestId") == "REQ1"
        assert root.findtext("HostId") == "localhost"

    def test_extra_fields(self):
        body = render_error("NoSuchKey", "m", extra_fields={"Key": "a&b"})
        assert ET.fromstring(body).findtext("Key") == "a&b"

    def test_no_namespace(self):
        assert "xmlns" not in render_error("InvalidArgument", "x")

    def test_escapes_message(self):
        body = render_error("InvalidArgument", "<bad> & worse")
        assert "&lt;bad&gt; &amp; worse" in body


class TestRenderListings:
    def test_list_buckets(self):
        body = render_list_buckets(
            "owner", "Owner", [{"name": "b1", "region": "oss-cn-hangzhou", "created_at": "T"}]
        )
        root = ET.fromstring(body)
        assert root.tag == "ListAllMyBucketsResult"
        assert root.findtext("Owner/ID") == "owner"
        assert root.findtext("Buckets/Bucket/Name") == "b1"
        assert root.findtext("Buckets/Bucket/Location") == "oss-cn-hangzhou"

    def test_list_objects(self):
        body = render_list_objects(
            name="b",
            prefix="p/",
            delimiter="/",
            max_keys=2,
            is_truncated=True,
            contents=[{"key": "p/a", "etag": '"E"', "size": 3, "object_type": "Appendable"}],
            common_prefixes=["p/sub/"],
            next_marker="p/sub/",
        )
        root = ET.fromstring(body)
        assert root.findtext("IsTruncated") == "true"
        assert root.findtext("NextMarker") == "p/sub/"
        assert root.findtext("Contents/Key") == "p/a"
        assert root.findtext("Contents/Type") == "Appendable"
        assert root.findtext("Contents/Size") == "3"
        assert root.findtext("CommonPrefixes/Prefix") == "p/sub/"

    def test_list_objects_not_truncated_has_no_next_marker(self):
        body = render_list_objects("b", "", "", 100, False, [], [], next_marker="x")
        assert ET.fromstring(body).find("NextMarker") is None

    def test_list_uploads(self):
        body = render_list_multipart_uploads(
            "b", [{"key": "k", "upload_id": "U1", "initiated_at": "T"}], prefix="k"
        )
        root = ET.fromstring(body)
        assert root.findtext("Upload/UploadId") == "U1"
        assert root.findtext("Prefix") == "k"

    def test_list_parts(self):
        body = render_list_parts(
            "b", "k", "U1", [{"part_number": 1, "etag": '"E"', "size": 5}],
            is_truncated=True, next_part_number_marker=1, max_parts=1,
        )
        root = ET.fromstring(body)
        assert root.findtext("NextPartNumberMarker") == "1"
        assert root.findtext("Part/PartNumber") == "1"
        assert root.findtext("Part/Size") == "5"


class TestRenderResults:
    def test_copy(self):
        root = ET.fromstring(render_copy_object_result('"E"', "2024-01-01T00:00:00.000Z"))
        assert root.tag == "CopyObjectResult"
        assert root.findtext("ETag") == '"E"'

    def test_initiate(self):
        root = ET.fromstring(render_initiate_multipart_upload("b", "k", "U1"))
        assert root.findtext("UploadId") == "U1"

    def test_complete(self):
        root = ET.fromstring(render_complete_multipart_upload("http://h/b/k", "b", "k", '"E-2"'))
        assert root.findtext("Location") == "http://h/b/k"
        assert root.findtext("ETag") == '"E-2"'


def test_xml_response():
    resp = xml_response("<a/>", status=409, headers={"x-oss-next-append-position": "5"})
    assert resp.status_code == 409
    assert resp.media_type == "application/xml"
    assert resp.headers["x-oss-next-append-position"] == "5"
