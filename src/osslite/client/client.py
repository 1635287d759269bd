"""Async client SDK for osslite.

``OSSClient`` signs requests with the same helpers the service uses to
verify them. Service-reported failures come back as ``OSSError``; local
precondition violations raise ``ValueError`` before any request is sent.
No request is retried.
"""

import email.utils
import logging
import urllib.parse
import xml.etree.ElementTree as ET
from collections.abc import Mapping

import httpx

from osslite.acl import ObjectPermission, parse_permission
from osslite.auth import authorization_header, build_string_to_sign, sign
from osslite.client.models import (
    OBJECT_ACL_HEADER,
    AppendObjectRequest,
    AppendObjectResult,
    Bucket,
    BucketAcl,
    CompleteMultipartUploadRequest,
    CompleteMultipartUploadResult,
    CopyObjectRequest,
    CopyObjectResult,
    InitiateMultipartUploadResult,
    ObjectAcl,
    ObjectListing,
    ObjectMetadata,
    ObjectSummary,
    OSSObject,
    Owner,
    PartListing,
    PartSummary,
    PutObjectResult,
    UploadPartRequest,
    UploadPartResult,
)
from osslite.errors import OSSError

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-oss-request-id"

# Codes reported for error responses without a body (HEAD).
_STATUS_CODES = {
    403: "AccessDenied",
    404: "NoSuchKey",
    409: "Conflict",
    416: "InvalidRange",
}


def _text(elem: ET.Element | None, default: str = "") -> str:
    if elem is None or elem.text is None:
        return default
    return elem.text


def _parse_xml(body: bytes) -> ET.Element:
    try:
        return ET.fromstring(body)
    except ET.ParseError as exc:
        raise OSSError("MalformedXML", f"Unparseable response body: {exc}", http_status=0)


def _parse_owner(root: ET.Element) -> Owner:
    return Owner(
        id=_text(root.find("Owner/ID")),
        display_name=_text(root.find("Owner/DisplayName")),
    )


def error_from_response(response: httpx.Response) -> OSSError:
    """Turn an error response into an OSSError.

    The XML ``Code``, ``Message`` and ``RequestId`` are kept verbatim;
    any other child elements land in ``extra_fields``.
    """
    request_id = response.headers.get(REQUEST_ID_HEADER, "")
    headers = dict(response.headers)
    if not response.content:
        code = _STATUS_CODES.get(response.status_code, f"HTTP{response.status_code}")
        return OSSError(
            code,
            f"Request failed with status {response.status_code}",
            http_status=response.status_code,
            request_id=request_id,
            headers=headers,
        )

    try:
        root = ET.fromstring(response.content)
    except ET.ParseError:
        return OSSError(
            f"HTTP{response.status_code}",
            response.text,
            http_status=response.status_code,
            request_id=request_id,
            headers=headers,
        )

    extra = {
        child.tag: child.text or ""
        for child in root
        if child.tag not in ("Code", "Message", "RequestId")
    }
    return OSSError(
        _text(root.find("Code"), f"HTTP{response.status_code}"),
        _text(root.find("Message")),
        http_status=response.status_code,
        extra_fields=extra,
        request_id=_text(root.find("RequestId"), request_id),
        headers=headers,
    )


class OSSClient:
    """Async client for an osslite (or OSS-compatible) endpoint.

    Usage::

        async with OSSClient("http://localhost:9000", "ak", "sk") as client:
            await client.put_object("bucket", "key", b"data")

    Args:
        endpoint: Base URL of the service.
        access_key: Access key ID; with no key requests go out unsigned.
        secret_key: Secret key paired with ``access_key``.
        transport: Optional httpx transport, e.g. ``httpx.ASGITransport``.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str | None = None,
        secret_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.access_key = access_key
        self.secret_key = secret_key
        self._http = httpx.AsyncClient(transport=transport, timeout=timeout)

    async def __aenter__(self) -> "OSSClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    # -- Transport ------------------------------------------------------------

    async def _request(
        self,
        method: str,
        bucket: str = "",
        key: str = "",
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Sign and send one request, raising OSSError on a non-2xx reply."""
        params = dict(params or {})
        request_headers = dict(headers or {})
        request_headers["Date"] = email.utils.formatdate(usegmt=True)

        if self.access_key and self.secret_key:
            string_to_sign = build_string_to_sign(method, request_headers, bucket, key, params)
            request_headers["Authorization"] = authorization_header(
                self.access_key, sign(self.secret_key, string_to_sign)
            )

        if not bucket:
            path = "/"
        elif not key:
            path = f"/{bucket}"
        else:
            path = f"/{bucket}/{urllib.parse.quote(key, safe='/')}"

        logger.debug("%s %s %s", method, path, params)
        response = await self._http.request(
            method,
            f"{self.endpoint}{path}",
            params=params,
            headers=request_headers,
            content=content,
        )
        if response.status_code >= 300:
            raise error_from_response(response)
        return response

    # -- Buckets ----------------------------------------------------------------

    async def create_bucket(self, bucket: str, acl: ObjectPermission | None = None) -> None:
        headers = {"x-oss-acl": acl.value} if acl is not None else {}
        await self._request("PUT", bucket, headers=headers)

    async def delete_bucket(self, bucket: str) -> None:
        await self._request("DELETE", bucket)

    async def list_buckets(self) -> list[Bucket]:
        response = await self._request("GET")
        root = _parse_xml(response.content)
        return [
            Bucket(
                name=_text(b.find("Name")),
                location=_text(b.find("Location")),
                creation_date=_text(b.find("CreationDate")),
            )
            for b in root.findall("Buckets/Bucket")
        ]

    async def get_bucket_acl(self, bucket: str) -> BucketAcl:
        response = await self._request("GET", bucket, params={"acl": ""})
        root = _parse_xml(response.content)
        return BucketAcl(
            owner=_parse_owner(root),
            permission=parse_permission(_text(root.find("AccessControlList/Grant"))),
        )

    async def set_bucket_acl(self, bucket: str, acl: ObjectPermission) -> None:
        if acl is None:
            raise ValueError("acl must not be None")
        await self._request("PUT", bucket, params={"acl": ""}, headers={"x-oss-acl": acl.value})

    async def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        marker: str = "",
        delimiter: str = "",
        max_keys: int | None = None,
    ) -> ObjectListing:
        params = {}
        if prefix:
            params["prefix"] = prefix
        if marker:
            params["marker"] = marker
        if delimiter:
            params["delimiter"] = delimiter
        if max_keys is not None:
            params["max-keys"] = str(max_keys)

        response = await self._request("GET", bucket, params=params)
        root = _parse_xml(response.content)
        next_marker = root.find("NextMarker")
        return ObjectListing(
            bucket_name=_text(root.find("Name")),
            prefix=_text(root.find("Prefix")),
            marker=_text(root.find("Marker")),
            delimiter=_text(root.find("Delimiter")),
            max_keys=int(_text(root.find("MaxKeys"), "100")),
            is_truncated=_text(root.find("IsTruncated")) == "true",
            next_marker=_text(next_marker) if next_marker is not None else None,
            object_summaries=[
                ObjectSummary(
                    key=_text(c.find("Key")),
                    etag=_text(c.find("ETag")),
                    size=int(_text(c.find("Size"), "0")),
                    last_modified=_text(c.find("LastModified")),
                    object_type=_text(c.find("Type"), "Normal"),
                )
                for c in root.findall("Contents")
            ],
            common_prefixes=[_text(p.find("Prefix")) for p in root.findall("CommonPrefixes")],
        )

    # -- Objects ----------------------------------------------------------------

    async def put_object(
        self,
        bucket: str,
        key: str,
        content: bytes,
        metadata: ObjectMetadata | None = None,
    ) -> PutObjectResult:
        headers = metadata.to_headers() if metadata is not None else {}
        response = await self._request("PUT", bucket, key, headers=headers, content=content)
        return PutObjectResult(
            etag=response.headers.get("etag", ""),
            request_id=response.headers.get(REQUEST_ID_HEADER, ""),
        )

    async def get_object(
        self, bucket: str, key: str, byte_range: tuple[int, int] | None = None
    ) -> OSSObject:
        """Download an object, optionally an inclusive byte range of it."""
        headers = {}
        if byte_range is not None:
            headers["Range"] = f"bytes={byte_range[0]}-{byte_range[1]}"
        response = await self._request("GET", bucket, key, headers=headers)
        return OSSObject(
            bucket_name=bucket,
            key=key,
            metadata=ObjectMetadata.from_headers(response.headers),
            content=response.content,
        )

    async def get_object_metadata(self, bucket: str, key: str) -> ObjectMetadata:
        response = await self._request("HEAD", bucket, key)
        return ObjectMetadata.from_headers(response.headers)

    async def delete_object(self, bucket: str, key: str) -> None:
        await self._request("DELETE", bucket, key)

    async def append_object(self, request: AppendObjectRequest) -> AppendObjectResult:
        headers = request.metadata.to_headers() if request.metadata is not None else {}
        response = await self._request(
            "POST",
            request.bucket_name,
            request.key,
            params={"append": "", "position": str(request.position)},
            headers=headers,
            content=request.content,
        )
        next_position = response.headers.get("x-oss-next-append-position")
        return AppendObjectResult(
            next_position=int(next_position) if next_position is not None else None,
            etag=response.headers.get("etag", ""),
            request_id=response.headers.get(REQUEST_ID_HEADER, ""),
        )

    async def copy_object(self, request: CopyObjectRequest) -> CopyObjectResult:
        source = urllib.parse.quote(request.source_key, safe="/")
        headers = {"x-oss-copy-source": f"/{request.source_bucket_name}/{source}"}
        if request.new_object_metadata is not None:
            headers.update(request.new_object_metadata.to_headers())
            headers["x-oss-metadata-directive"] = "REPLACE"

        response = await self._request(
            "PUT", request.destination_bucket_name, request.destination_key, headers=headers
        )
        root = _parse_xml(response.content)
        return CopyObjectResult(
            etag=_text(root.find("ETag")),
            last_modified=_text(root.find("LastModified")),
        )

    # -- Object ACLs --------------------------------------------------------------

    async def set_object_acl(
        self, bucket: str, key: str, acl: ObjectPermission | None
    ) -> None:
        """Replace the canned ACL of an existing object.

        Raises:
            ValueError: If ``acl`` is None. Nothing is sent.
            OSSError: ``NoSuchKey`` if the object does not exist.
        """
        if acl is None:
            raise ValueError("acl must not be None")
        await self._request(
            "PUT", bucket, key, params={"acl": ""}, headers={OBJECT_ACL_HEADER: acl.value}
        )

    async def get_object_acl(self, bucket: str, key: str) -> ObjectAcl:
        """Read the canned ACL stored on an object.

        Raises:
            OSSError: ``NoSuchKey`` if the object does not exist.
        """
        response = await self._request("GET", bucket, key, params={"acl": ""})
        root = _parse_xml(response.content)
        return ObjectAcl(
            owner=_parse_owner(root),
            permission=parse_permission(_text(root.find("AccessControlList/Grant"))),
        )

    # -- Multipart ----------------------------------------------------------------

    async def initiate_multipart_upload(
        self, bucket: str, key: str, metadata: ObjectMetadata | None = None
    ) -> InitiateMultipartUploadResult:
        headers = metadata.to_headers() if metadata is not None else {}
        response = await self._request(
            "POST", bucket, key, params={"uploads": ""}, headers=headers
        )
        root = _parse_xml(response.content)
        return InitiateMultipartUploadResult(
            bucket_name=_text(root.find("Bucket")),
            key=_text(root.find("Key")),
            upload_id=_text(root.find("UploadId")),
        )

    async def upload_part(self, request: UploadPartRequest) -> UploadPartResult:
        response = await self._request(
            "PUT",
            request.bucket_name,
            request.key,
            params={"partNumber": str(request.part_number), "uploadId": request.upload_id},
            content=request.content,
        )
        return UploadPartResult(
            part_number=request.part_number,
            etag=response.headers.get("etag", ""),
        )

    async def complete_multipart_upload(
        self, request: CompleteMultipartUploadRequest
    ) -> CompleteMultipartUploadResult:
        root = ET.Element("CompleteMultipartUpload")
        for part in request.part_etags:
            part_elem = ET.SubElement(root, "Part")
            ET.SubElement(part_elem, "PartNumber").text = str(part.part_number)
            ET.SubElement(part_elem, "ETag").text = part.etag
        body = ET.tostring(root, encoding="utf-8")

        headers = {"Content-Type": "application/xml"}
        if request.object_acl is not None:
            headers[OBJECT_ACL_HEADER] = request.object_acl.value

        response = await self._request(
            "POST",
            request.bucket_name,
            request.key,
            params={"uploadId": request.upload_id},
            headers=headers,
            content=body,
        )
        result = _parse_xml(response.content)
        return CompleteMultipartUploadResult(
            location=_text(result.find("Location")),
            bucket_name=_text(result.find("Bucket")),
            key=_text(result.find("Key")),
            etag=_text(result.find("ETag")),
        )

    async def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        await self._request("DELETE", bucket, key, params={"uploadId": upload_id})

    async def list_parts(self, bucket: str, key: str, upload_id: str) -> PartListing:
        response = await self._request("GET", bucket, key, params={"uploadId": upload_id})
        root = _parse_xml(response.content)
        next_marker = root.find("NextPartNumberMarker")
        return PartListing(
            bucket_name=_text(root.find("Bucket")),
            key=_text(root.find("Key")),
            upload_id=_text(root.find("UploadId")),
            parts=[
                PartSummary(
                    part_number=int(_text(p.find("PartNumber"), "0")),
                    etag=_text(p.find("ETag")),
                    size=int(_text(p.find("Size"), "0")),
                    last_modified=_text(p.find("LastModified")),
                )
                for p in root.findall("Part")
            ],
            is_truncated=_text(root.find("IsTruncated")) == "true",
            next_part_number_marker=int(_text(next_marker)) if next_marker is not None else None,
        )
