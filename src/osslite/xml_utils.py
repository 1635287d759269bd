"""OSS XML response rendering helpers for osslite.

OSS response documents carry no XML namespace. Each renderer returns a
complete document string; ``xml_response`` wraps it for FastAPI.
"""

from typing import Any
from xml.sax.saxutils import escape as _sax_escape

from fastapi.responses import Response

_XML_DECL = '<?xml version="1.0" encoding="UTF-8"?>'


def _escape_xml(value: str) -> str:
    """Escape special XML characters in a string value.

    Args:
        value: The raw string to escape.

    Returns:
        The XML-safe escaped string.
    """
    return _sax_escape(str(value))


def render_error(
    code: str,
    message: str,
    request_id: str = "",
    host_id: str = "",
    extra_fields: dict[str, str] | None = None,
) -> str:
    """Render an OSS XML error response body.

    Args:
        code: The error code (e.g. "NoSuchKey").
        message: Human-readable error message.
        request_id: The request identifier.
        host_id: The host that served the request.
        extra_fields: Additional XML elements to include.

    Returns:
        An XML string in the OSS error response format.
    """
    parts = [
        _XML_DECL,
        "<Error>",
        f"<Code>{_escape_xml(code)}</Code>",
        f"<Message>{_escape_xml(message)}</Message>",
        f"<RequestId>{_escape_xml(request_id)}</RequestId>",
        f"<HostId>{_escape_xml(host_id)}</HostId>",
    ]
    if extra_fields:
        for key, value in extra_fields.items():
            parts.append(f"<{key}>{_escape_xml(value)}</{key}>")
    parts.append("</Error>")
    return "\n".join(parts)


def xml_response(
    body: str, status: int = 200, headers: dict[str, str] | None = None
) -> Response:
    """Wrap an XML body string in a FastAPI Response with correct content type.

    Args:
        body: The XML body string.
        status: HTTP status code.
        headers: Optional extra response headers.

    Returns:
        A FastAPI Response with media_type application/xml.
    """
    return Response(
        content=body,
        status_code=status,
        media_type="application/xml",
        headers=headers,
    )


def render_list_buckets(
    owner_id: str,
    owner_display_name: str,
    buckets: list[dict[str, Any]],
) -> str:
    """Render a ListAllMyBucketsResult XML response.

    Args:
        owner_id: The owner ID.
        owner_display_name: Display name of the owner.
        buckets: List of dicts with 'name', 'region' and 'created_at' keys.

    Returns:
        An XML string for ListAllMyBucketsResult.
    """
    parts = [
        _XML_DECL,
        "<ListAllMyBucketsResult>",
        "<Owner>",
        f"<ID>{_escape_xml(owner_id)}</ID>",
        f"<DisplayName>{_escape_xml(owner_display_name)}</DisplayName>",
        "</Owner>",
        "<Buckets>",
    ]

    for b in buckets:
        parts.append("<Bucket>")
        parts.append(f"<Name>{_escape_xml(b.get('name', ''))}</Name>")
        parts.append(f"<Location>{_escape_xml(b.get('region', ''))}</Location>")
        parts.append(f"<CreationDate>{_escape_xml(b.get('created_at', ''))}</CreationDate>")
        parts.append("</Bucket>")

    parts.append("</Buckets>")
    parts.append("</ListAllMyBucketsResult>")
    return "\n".join(parts)


def render_list_objects(
    name: str,
    prefix: str,
    delimiter: str,
    max_keys: int,
    is_truncated: bool,
    contents: list[dict[str, Any]],
    common_prefixes: list[str],
    marker: str = "",
    next_marker: str | None = None,
) -> str:
    """Render a ListBucketResult XML response.

    Args:
        name: Bucket name.
        prefix: Key prefix filter.
        delimiter: Grouping delimiter.
        max_keys: Maximum keys to return.
        is_truncated: Whether more results are available.
        contents: List of object metadata dicts.
        common_prefixes: Collapsed prefix groups.
        marker: The marker used for this request.
        next_marker: Marker for the next page.

    Returns:
        An XML string for ListBucketResult.
    """
    parts = [
        _XML_DECL,
        "<ListBucketResult>",
        f"<Name>{_escape_xml(name)}</Name>",
        f"<Prefix>{_escape_xml(prefix)}</Prefix>",
        f"<Marker>{_escape_xml(marker)}</Marker>",
        f"<MaxKeys>{max_keys}</MaxKeys>",
        f"<Delimiter>{_escape_xml(delimiter)}</Delimiter>",
        f"<IsTruncated>{str(is_truncated).lower()}</IsTruncated>",
    ]

    if is_truncated and next_marker:
        parts.append(f"<NextMarker>{_escape_xml(next_marker)}</NextMarker>")

    for obj in contents:
        parts.append("<Contents>")
        parts.append(f"<Key>{_escape_xml(obj.get('key', ''))}</Key>")
        parts.append(f"<LastModified>{_escape_xml(obj.get('last_modified', ''))}</LastModified>")
        parts.append(f"<ETag>{_escape_xml(obj.get('etag', ''))}</ETag>")
        parts.append(f"<Type>{_escape_xml(obj.get('object_type', 'Normal'))}</Type>")
        parts.append(f"<Size>{obj.get('size', 0)}</Size>")
        parts.append(
            f"<StorageClass>{_escape_xml(obj.get('storage_class', 'Standard'))}</StorageClass>"
        )
        parts.append("</Contents>")

    for cp in common_prefixes:
        parts.append("<CommonPrefixes>")
        parts.append(f"<Prefix>{_escape_xml(cp)}</Prefix>")
        parts.append("</CommonPrefixes>")

    parts.append("</ListBucketResult>")
    return "\n".join(parts)


def render_copy_object_result(etag: str, last_modified: str) -> str:
    """Render a CopyObjectResult XML response.

    Args:
        etag: The ETag of the newly copied object.
        last_modified: ISO 8601 timestamp of the copy.

    Returns:
        An XML string for CopyObjectResult.
    """
    parts = [
        _XML_DECL,
        "<CopyObjectResult>",
        f"<ETag>{_escape_xml(etag)}</ETag>",
        f"<LastModified>{_escape_xml(last_modified)}</LastModified>",
        "</CopyObjectResult>",
    ]
    return "\n".join(parts)


def render_initiate_multipart_upload(bucket: str, key: str, upload_id: str) -> str:
    """Render an InitiateMultipartUploadResult XML response."""
    parts = [
        _XML_DECL,
        "<InitiateMultipartUploadResult>",
        f"<Bucket>{_escape_xml(bucket)}</Bucket>",
        f"<Key>{_escape_xml(key)}</Key>",
        f"<UploadId>{_escape_xml(upload_id)}</UploadId>",
        "</InitiateMultipartUploadResult>",
    ]
    return "\n".join(parts)


def render_complete_multipart_upload(location: str, bucket: str, key: str, etag: str) -> str:
    """Render a CompleteMultipartUploadResult XML response.

    Args:
        location: Full URL of the created object.
        bucket: Bucket name.
        key: Object key.
        etag: ETag of the assembled object (composite format with dash).

    Returns:
        An XML string for CompleteMultipartUploadResult.
    """
    parts = [
        _XML_DECL,
        "<CompleteMultipartUploadResult>",
        f"<Location>{_escape_xml(location)}</Location>",
        f"<Bucket>{_escape_xml(bucket)}</Bucket>",
        f"<Key>{_escape_xml(key)}</Key>",
        f"<ETag>{_escape_xml(etag)}</ETag>",
        "</CompleteMultipartUploadResult>",
    ]
    return "\n".join(parts)


def render_list_multipart_uploads(
    bucket: str,
    uploads: list[dict[str, Any]],
    prefix: str = "",
    max_uploads: int = 1000,
    is_truncated: bool = False,
    key_marker: str = "",
    upload_id_marker: str = "",
    next_key_marker: str | None = None,
    next_upload_id_marker: str | None = None,
) -> str:
    """Render a ListMultipartUploadsResult XML response.

    Args:
        bucket: Bucket name.
        uploads: List of upload metadata dicts.
        prefix: Key prefix filter.
        max_uploads: Maximum uploads to return.
        is_truncated: Whether more results are available.
        key_marker: Key marker for pagination.
        upload_id_marker: Upload ID marker for pagination.
        next_key_marker: Next key marker for pagination.
        next_upload_id_marker: Next upload ID marker.

    Returns:
        An XML string for ListMultipartUploadsResult.
    """
    parts = [
        _XML_DECL,
        "<ListMultipartUploadsResult>",
        f"<Bucket>{_escape_xml(bucket)}</Bucket>",
        f"<KeyMarker>{_escape_xml(key_marker)}</KeyMarker>",
        f"<UploadIdMarker>{_escape_xml(upload_id_marker)}</UploadIdMarker>",
    ]

    if is_truncated and next_key_marker:
        parts.append(f"<NextKeyMarker>{_escape_xml(next_key_marker)}</NextKeyMarker>")
    if is_truncated and next_upload_id_marker:
        parts.append(
            f"<NextUploadIdMarker>{_escape_xml(next_upload_id_marker)}</NextUploadIdMarker>"
        )

    parts.append(f"<MaxUploads>{max_uploads}</MaxUploads>")
    parts.append(f"<IsTruncated>{str(is_truncated).lower()}</IsTruncated>")
    parts.append(f"<Prefix>{_escape_xml(prefix)}</Prefix>")

    for upload in uploads:
        parts.append("<Upload>")
        parts.append(f"<Key>{_escape_xml(upload.get('key', ''))}</Key>")
        parts.append(f"<UploadId>{_escape_xml(upload.get('upload_id', ''))}</UploadId>")
        parts.append(f"<Initiated>{_escape_xml(upload.get('initiated_at', ''))}</Initiated>")
        parts.append("</Upload>")

    parts.append("</ListMultipartUploadsResult>")
    return "\n".join(parts)


def render_list_parts(
    bucket: str,
    key: str,
    upload_id: str,
    parts: list[dict[str, Any]],
    is_truncated: bool = False,
    part_number_marker: int = 0,
    next_part_number_marker: int | None = None,
    max_parts: int = 1000,
) -> str:
    """Render a ListPartsResult XML response.

    Args:
        bucket: Bucket name.
        key: Object key.
        upload_id: Multipart upload ID.
        parts: List of part metadata dicts.
        is_truncated: Whether more parts are available.
        part_number_marker: Part number marker for pagination.
        next_part_number_marker: Next marker for pagination.
        max_parts: Maximum parts to return.

    Returns:
        An XML string for ListPartsResult.
    """
    xml_parts = [
        _XML_DECL,
        "<ListPartsResult>",
        f"<Bucket>{_escape_xml(bucket)}</Bucket>",
        f"<Key>{_escape_xml(key)}</Key>",
        f"<UploadId>{_escape_xml(upload_id)}</UploadId>",
        f"<PartNumberMarker>{part_number_marker}</PartNumberMarker>",
    ]

    if is_truncated and next_part_number_marker is not None:
        xml_parts.append(f"<NextPartNumberMarker>{next_part_number_marker}</NextPartNumberMarker>")

    xml_parts.append(f"<MaxParts>{max_parts}</MaxParts>")
    xml_parts.append(f"<IsTruncated>{str(is_truncated).lower()}</IsTruncated>")

    for part in parts:
        xml_parts.append("<Part>")
        xml_parts.append(f"<PartNumber>{part.get('part_number', 0)}</PartNumber>")
        xml_parts.append(
            f"<LastModified>{_escape_xml(part.get('last_modified', ''))}</LastModified>"
        )
        xml_parts.append(f"<ETag>{_escape_xml(part.get('etag', ''))}</ETag>")
        xml_parts.append(f"<Size>{part.get('size', 0)}</Size>")
        xml_parts.append("</Part>")

    xml_parts.append("</ListPartsResult>")
    return "\n".join(xml_parts)
