"""Object-level OSS request handlers for osslite.

Implements the object operations:
    - PutObject (PUT /{bucket}/{key})
    - CopyObject (PUT /{bucket}/{key} with x-oss-copy-source)
    - AppendObject (POST /{bucket}/{key}?append&position=N)
    - GetObject (GET /{bucket}/{key}) with single-range support
    - HeadObject (HEAD /{bucket}/{key})
    - DeleteObject (DELETE /{bucket}/{key})
    - ListObjects (GET /{bucket})
    - GetObjectAcl (GET /{bucket}/{key}?acl)
    - PutObjectAcl (PUT /{bucket}/{key}?acl)

Every write path runs ``resolve_on_write`` to decide the ACL it stores.
"""

import email.utils
import json
import logging
import re
import urllib.parse
from datetime import datetime, timezone

from fastapi import Request, Response
from fastapi.responses import StreamingResponse

from osslite import metrics
from osslite.acl import ObjectPermission, parse_permission, render_acl_xml, resolve_on_write
from osslite.errors import (
    InvalidArgument,
    InvalidRange,
    NoSuchBucket,
    NoSuchKey,
    ObjectNotAppendable,
    PositionNotEqualToLength,
)
from osslite.handlers.base import (
    OBJECT_ACL_HEADER,
    BaseHandler,
    extract_user_metadata,
    format_etag,
    read_acl_directive,
    user_metadata_headers,
)
from osslite.validation import validate_append_position, validate_max_keys, validate_object_key
from osslite.xml_utils import render_copy_object_result, render_list_objects, xml_response

logger = logging.getLogger(__name__)

NORMAL = "Normal"
APPENDABLE = "Appendable"
MULTIPART = "Multipart"

_DEFAULT_MAX_KEYS = "100"


def _iso_to_http_date(iso_str: str) -> str:
    """Convert a stored ISO 8601 timestamp to an RFC 1123 HTTP date.

    Returns the original string if it cannot be parsed.
    """
    try:
        dt = datetime.strptime(iso_str, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return iso_str
    return email.utils.format_datetime(dt, usegmt=True)


# ---------------------------------------------------------------------------
# Range request parsing
# ---------------------------------------------------------------------------

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_range_header(header: str, total: int) -> tuple[int, int] | None:
    """Parse an HTTP Range header into inclusive (start, end) offsets.

    Supports ``bytes=start-end``, ``bytes=start-`` and ``bytes=-suffix``.
    Multi-range and malformed headers are ignored (None), which serves
    the whole object.

    Raises:
        InvalidRange: If the parsed range is not satisfiable.
    """
    if not header or "," in header:
        return None

    m = _RANGE_RE.match(header.strip())
    if not m:
        return None

    start_str, end_str = m.group(1), m.group(2)

    if not start_str and not end_str:
        raise InvalidRange()

    if not start_str:
        suffix_length = int(end_str)
        if suffix_length == 0:
            raise InvalidRange()
        suffix_length = min(suffix_length, total)
        return total - suffix_length, total - 1

    start = int(start_str)
    if start >= total:
        raise InvalidRange()
    if not end_str:
        return start, total - 1

    end = int(end_str)
    if start > end:
        raise InvalidRange()
    return start, min(end, total - 1)


def parse_copy_source(header: str) -> tuple[str, str]:
    """Split an ``x-oss-copy-source`` value into (bucket, key).

    The value is ``/bucket/key`` with the key URL-encoded.

    Raises:
        InvalidArgument: If the value does not name a bucket and a key.
    """
    source = urllib.parse.unquote(header).lstrip("/")
    bucket, _, key = source.partition("/")
    if not bucket or not key:
        raise InvalidArgument("Copy source must be of the form /bucket/key.")
    return bucket, key


class ObjectHandler(BaseHandler):
    """Handles OSS object operations.

    Every write to an object, ACL updates included, holds that key's
    lock from its first read through the metadata commit.
    """

    def _record_write(self, acl: ObjectPermission, size: int, created: bool) -> None:
        metrics.record_acl_update(acl.value)
        if metrics.bytes_received_total is not None:
            metrics.bytes_received_total.inc(size)
        if created and metrics.objects_total is not None:
            metrics.objects_total.inc()

    async def put_object(self, request: Request, bucket: str, key: str) -> Response:
        """Upload an object to a bucket.

        Implements: PUT /{bucket}/{key}

        A put always replaces the object, so without an ``x-oss-object-acl``
        header the stored ACL is reset to ``default``. Bytes are committed
        to storage before the metadata record is written.

        Returns:
            200 OK with ETag header on success.
        """
        await self._ensure_bucket_exists(bucket)
        validate_object_key(key)
        directive = read_acl_directive(request)

        data = await request.body()
        content_type = request.headers.get("content-type", "application/octet-stream")
        user_metadata = extract_user_metadata(request)
        acl = resolve_on_write(None, directive, is_new_object=True)

        async with self.object_locks.hold(bucket, key):
            existed = await self.metadata.object_exists(bucket, key)
            md5_hex = await self.storage.put(bucket, key, data)
            etag = format_etag(md5_hex)

            await self.metadata.put_object(
                bucket=bucket,
                key=key,
                size=len(data),
                etag=etag,
                content_type=content_type,
                object_type=NORMAL,
                acl=acl.value,
                user_metadata=json.dumps(user_metadata),
            )
        self._record_write(acl, len(data), created=not existed)

        return Response(status_code=200, headers={"ETag": etag})

    async def append_object(self, request: Request, bucket: str, key: str) -> Response:
        """Append data to an appendable object, creating it on first append.

        Implements: POST /{bucket}/{key}?append&position=N

        ``position`` must equal the current length (0 for a new object).
        A first append without an ACL header stores ``default``; a later
        append without one keeps the stored ACL.

        Raises:
            PositionNotEqualToLength: If position is not the current length.
            ObjectNotAppendable: If the key holds a non-appendable object.
        """
        await self._ensure_bucket_exists(bucket)
        validate_object_key(key)
        position = validate_append_position(request.query_params.get("position"))
        directive = read_acl_directive(request)
        data = await request.body()

        async with self.object_locks.hold(bucket, key):
            existing = await self.metadata.get_object(bucket, key)

            if existing is None:
                if position != 0:
                    raise PositionNotEqualToLength(0)
                acl = resolve_on_write(None, directive, is_new_object=True)
                content_type = request.headers.get("content-type", "application/octet-stream")
                user_metadata_json = json.dumps(extract_user_metadata(request))
                md5_hex = await self.storage.put(bucket, key, data)
            else:
                if existing.get("object_type") != APPENDABLE:
                    raise ObjectNotAppendable()
                current_length = int(existing.get("size", 0))
                if position != current_length:
                    raise PositionNotEqualToLength(current_length)
                acl = resolve_on_write(
                    parse_permission(existing.get("acl")), directive, is_new_object=False
                )
                content_type = existing.get("content_type", "application/octet-stream")
                user_metadata_json = existing.get("user_metadata", "{}")
                md5_hex = await self.storage.append(bucket, key, data)

            next_position = position + len(data)
            etag = format_etag(md5_hex)
            await self.metadata.put_object(
                bucket=bucket,
                key=key,
                size=next_position,
                etag=etag,
                content_type=content_type,
                object_type=APPENDABLE,
                acl=acl.value,
                user_metadata=user_metadata_json,
            )

        self._record_write(acl, len(data), created=existing is None)
        logger.debug(
            "Appended %d bytes to %s/%s at %d",
            len(data),
            bucket,
            key,
            position,
            extra={"bucket": bucket, "key": key, "acl": acl.value},
        )

        return Response(
            status_code=200,
            headers={
                "ETag": etag,
                "x-oss-next-append-position": str(next_position),
            },
        )

    async def copy_object(self, request: Request, bucket: str, key: str) -> Response:
        """Copy an object within or across buckets.

        Triggered by PUT with ``x-oss-copy-source``. The target is always a
        new object: without an ``x-oss-object-acl`` header its ACL is
        ``default``, never the source's.

        ``x-oss-metadata-directive``: COPY (default) keeps the source's
        content type and user metadata, REPLACE takes them from this request.

        Returns:
            XML response with CopyObjectResult.
        """
        src_bucket, src_key = parse_copy_source(request.headers.get("x-oss-copy-source", ""))
        directive = read_acl_directive(request)

        metadata_directive = request.headers.get("x-oss-metadata-directive", "COPY").upper()
        if metadata_directive not in ("COPY", "REPLACE"):
            raise InvalidArgument(f"Invalid x-oss-metadata-directive: {metadata_directive}")

        if not await self.metadata.bucket_exists(src_bucket):
            raise NoSuchBucket(src_bucket)
        src_meta = await self.metadata.get_object(src_bucket, src_key)
        if src_meta is None:
            raise NoSuchKey(src_key)

        await self._ensure_bucket_exists(bucket)
        validate_object_key(key)

        if metadata_directive == "REPLACE":
            content_type = request.headers.get("content-type", "application/octet-stream")
            user_metadata_json = json.dumps(extract_user_metadata(request))
        else:
            content_type = src_meta.get("content_type", "application/octet-stream")
            user_metadata_json = src_meta.get("user_metadata", "{}")

        acl = resolve_on_write(None, directive, is_new_object=True)
        async with self.object_locks.hold(bucket, key):
            existed = await self.metadata.object_exists(bucket, key)
            md5_hex = await self.storage.copy_object(src_bucket, src_key, bucket, key)
            etag = format_etag(md5_hex)
            size = int(src_meta.get("size", 0))

            await self.metadata.put_object(
                bucket=bucket,
                key=key,
                size=size,
                etag=etag,
                content_type=content_type,
                object_type=NORMAL,
                acl=acl.value,
                user_metadata=user_metadata_json,
            )
            dest_meta = await self.metadata.get_object(bucket, key)
        self._record_write(acl, 0, created=not existed)

        last_modified = dest_meta.get("last_modified", "") if dest_meta else ""
        return xml_response(
            render_copy_object_result(etag, last_modified),
            status=200,
            headers={"ETag": etag},
        )

    async def get_object(self, request: Request, bucket: str, key: str) -> Response:
        """Retrieve an object, streaming its body in 64 KB chunks.

        Implements: GET /{bucket}/{key}

        A satisfiable ``Range`` header yields 206 Partial Content.
        """
        obj_meta = await self._get_object_meta(bucket, key)
        headers = self._build_object_headers(obj_meta)
        media_type = obj_meta.get("content_type", "application/octet-stream")
        total_size = int(obj_meta.get("size", 0))

        range_header = request.headers.get("range")
        if range_header:
            parsed_range = parse_range_header(range_header, total_size)
            if parsed_range is not None:
                start, end = parsed_range
                content_length = end - start + 1
                headers["Content-Range"] = f"bytes {start}-{end}/{total_size}"
                headers["Content-Length"] = str(content_length)
                self._record_sent(content_length)
                return StreamingResponse(
                    content=self.storage.get_stream(bucket, key, offset=start, length=content_length),
                    status_code=206,
                    headers=headers,
                    media_type=media_type,
                )

        self._record_sent(total_size)
        return StreamingResponse(
            content=self.storage.get_stream(bucket, key),
            status_code=200,
            headers=headers,
            media_type=media_type,
        )

    async def head_object(self, request: Request, bucket: str, key: str) -> Response:
        """Return object metadata headers without the body.

        Implements: HEAD /{bucket}/{key}
        """
        obj_meta = await self._get_object_meta(bucket, key)
        return Response(status_code=200, headers=self._build_object_headers(obj_meta))

    async def delete_object(self, request: Request, bucket: str, key: str) -> Response:
        """Delete a single object.

        Implements: DELETE /{bucket}/{key}

        Idempotent: returns 204 even if the key does not exist. A storage
        failure is logged and does not block the metadata delete.
        """
        await self._ensure_bucket_exists(bucket)
        async with self.object_locks.hold(bucket, key):
            existed = await self.metadata.object_exists(bucket, key)

            try:
                await self.storage.delete(bucket, key)
            except OSError:
                logger.warning(
                    "Failed to delete object from storage: %s/%s",
                    bucket,
                    key,
                    exc_info=True,
                )

            await self.metadata.delete_object(bucket, key)
        if existed and metrics.objects_total is not None:
            metrics.objects_total.dec()

        return Response(status_code=204)

    async def list_objects(self, request: Request, bucket: str) -> Response:
        """List objects in a bucket.

        Implements: GET /{bucket}

        Supports prefix, delimiter, marker and max-keys (default 100).
        """
        await self._ensure_bucket_exists(bucket)

        prefix = request.query_params.get("prefix", "")
        delimiter = request.query_params.get("delimiter", "")
        marker = request.query_params.get("marker", "")
        max_keys = validate_max_keys(request.query_params.get("max-keys", _DEFAULT_MAX_KEYS))

        result = await self.metadata.list_objects(
            bucket=bucket,
            prefix=prefix,
            delimiter=delimiter,
            max_keys=max_keys,
            marker=marker,
        )

        body = render_list_objects(
            name=bucket,
            prefix=prefix,
            delimiter=delimiter,
            max_keys=max_keys,
            is_truncated=result["is_truncated"],
            contents=result["contents"],
            common_prefixes=result["common_prefixes"],
            marker=marker,
            next_marker=result.get("next_marker"),
        )
        return xml_response(body, status=200)

    # -- Object ACLs ----------------------------------------------------------

    async def get_object_acl(self, request: Request, bucket: str, key: str) -> Response:
        """Return the stored canned ACL of an object.

        Implements: GET /{bucket}/{key}?acl

        Raises:
            NoSuchKey: If the object does not exist.
        """
        obj_meta = await self._get_object_meta(bucket, key)
        owner_id, owner_display = self._owner(request)
        xml_body = render_acl_xml(owner_id, owner_display, parse_permission(obj_meta["acl"]))
        return xml_response(xml_body, status=200)

    async def put_object_acl(self, request: Request, bucket: str, key: str) -> Response:
        """Replace the stored canned ACL of an object.

        Implements: PUT /{bucket}/{key}?acl

        The update is a single write that reports whether the row existed,
        so an object deleted concurrently still yields NoSuchKey. It holds
        the key's write lock so an append in flight cannot restore the
        ACL it read before this update.

        Raises:
            InvalidArgument: If the header is missing or not a known ACL.
            NoSuchKey: If the object does not exist.
        """
        await self._ensure_bucket_exists(bucket)
        acl = read_acl_directive(request)
        if acl is None:
            raise InvalidArgument(f"Missing {OBJECT_ACL_HEADER} header.")

        async with self.object_locks.hold(bucket, key):
            updated = await self.metadata.update_object_acl(bucket, key, acl.value)
        if not updated:
            raise NoSuchKey(key)

        metrics.record_acl_update(acl.value)
        logger.info(
            "Object ACL of %s/%s set to %s",
            bucket,
            key,
            acl.value,
            extra={"bucket": bucket, "key": key, "acl": acl.value},
        )
        return Response(status_code=200)

    # -- Helpers ----------------------------------------------------------------

    async def _get_object_meta(self, bucket: str, key: str) -> dict:
        await self._ensure_bucket_exists(bucket)
        obj_meta = await self.metadata.get_object(bucket, key)
        if obj_meta is None:
            raise NoSuchKey(key)
        return obj_meta

    def _record_sent(self, size: int) -> None:
        if metrics.bytes_sent_total is not None:
            metrics.bytes_sent_total.inc(size)

    def _build_object_headers(self, obj_meta: dict) -> dict[str, str]:
        """Build OSS response headers from an object metadata record."""
        object_type = obj_meta.get("object_type", NORMAL)
        headers: dict[str, str] = {
            "ETag": obj_meta.get("etag", ""),
            "Content-Length": str(obj_meta.get("size", 0)),
            "Content-Type": obj_meta.get("content_type", "application/octet-stream"),
            "Accept-Ranges": "bytes",
            "x-oss-object-type": object_type,
        }

        last_modified = obj_meta.get("last_modified", "")
        if last_modified:
            headers["Last-Modified"] = _iso_to_http_date(last_modified)

        if object_type == APPENDABLE:
            headers["x-oss-next-append-position"] = str(obj_meta.get("size", 0))

        headers.update(user_metadata_headers(obj_meta.get("user_metadata")))
        return headers
