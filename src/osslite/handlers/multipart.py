"""Multipart upload OSS request handlers for osslite.

Implements the multipart operations:
    - InitiateMultipartUpload (POST /{bucket}/{key}?uploads)
    - UploadPart (PUT /{bucket}/{key}?partNumber=N&uploadId=U)
    - CompleteMultipartUpload (POST /{bucket}/{key}?uploadId=U)
    - AbortMultipartUpload (DELETE /{bucket}/{key}?uploadId=U)
    - ListMultipartUploads (GET /{bucket}?uploads)
    - ListParts (GET /{bucket}/{key}?uploadId=U)

Crash-only design:
    - Part writes use the atomic temp-fsync-rename pattern.
    - Metadata is committed only after the storage write succeeds.
    - CompleteMultipartUpload assembles parts first, then commits the
      object record and drops the upload in a single transaction.
    - CompleteMultipartUpload holds the key's write lock, shared with
      the object handler, while it replaces the object.

The ACL directive given at initiation is kept on the upload record as
given (None when omitted). A directive on the complete request wins
over it.
"""

import binascii
import hashlib
import json
import logging
import uuid
import xml.etree.ElementTree as ET

from fastapi import Request, Response

from osslite import metrics
from osslite.acl import parse_permission, resolve_on_write
from osslite.errors import (
    EntityTooSmall,
    InvalidArgument,
    InvalidPart,
    InvalidPartOrder,
    MalformedXML,
    NoSuchUpload,
)
from osslite.handlers.base import (
    BaseHandler,
    extract_user_metadata,
    format_etag,
    read_acl_directive,
)
from osslite.validation import validate_object_key, validate_part_number
from osslite.xml_utils import (
    render_complete_multipart_upload,
    render_initiate_multipart_upload,
    render_list_multipart_uploads,
    render_list_parts,
    xml_response,
)

logger = logging.getLogger(__name__)

_INVALID_PART_MESSAGE = (
    "One or more of the specified parts could not be found or the specified "
    "entity tag might not have matched the part's entity tag."
)


def compute_composite_etag(part_etags: list[str]) -> str:
    """Compute the multipart ETag from the part ETags.

    The MD5 of the concatenated binary part digests, uppercased, with a
    dash and the part count appended.

    Args:
        part_etags: Quoted or bare hex ETags of each part, in order.

    Returns:
        A quoted composite ETag, e.g. '"3858F62230AC3C915F300C664312C63F-3"'.
    """
    binary_md5s = b""
    for etag in part_etags:
        binary_md5s += binascii.unhexlify(etag.strip('"'))
    final_md5 = hashlib.md5(binary_md5s).hexdigest().upper()
    return f'"{final_md5}-{len(part_etags)}"'


def _int_param(raw: str | None, default: int, upper: int | None = None) -> int:
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        return default
    value = max(value, 0)
    if upper is not None:
        value = min(value, upper)
    return value


class MultipartHandler(BaseHandler):
    """Handles OSS multipart upload operations."""

    def _require_upload_id(self, request: Request) -> str:
        upload_id = request.query_params.get("uploadId", "")
        if not upload_id:
            raise InvalidArgument("uploadId is required")
        return upload_id

    async def _get_upload(self, bucket: str, key: str, upload_id: str) -> dict:
        await self._ensure_bucket_exists(bucket)
        upload = await self.metadata.get_multipart_upload(bucket, key, upload_id)
        if upload is None:
            raise NoSuchUpload(upload_id)
        return upload

    async def initiate_multipart_upload(
        self, request: Request, bucket: str, key: str
    ) -> Response:
        """Start a new multipart upload.

        Implements: POST /{bucket}/{key}?uploads

        Returns:
            XML response with InitiateMultipartUploadResult.
        """
        await self._ensure_bucket_exists(bucket)
        validate_object_key(key)
        directive = read_acl_directive(request)

        upload_id = uuid.uuid4().hex.upper()
        owner_id, owner_display = self._owner(request)

        await self.metadata.create_multipart_upload(
            bucket=bucket,
            key=key,
            upload_id=upload_id,
            content_type=request.headers.get("content-type", "application/octet-stream"),
            acl=directive.value if directive is not None else None,
            user_metadata=json.dumps(extract_user_metadata(request)),
            owner_id=owner_id,
            owner_display=owner_display,
        )

        body = render_initiate_multipart_upload(bucket, key, upload_id)
        return xml_response(body, status=200)

    async def upload_part(self, request: Request, bucket: str, key: str) -> Response:
        """Upload a single part of a multipart upload.

        Implements: PUT /{bucket}/{key}?partNumber=N&uploadId=U

        Re-uploading a part number replaces the earlier part.

        Returns:
            200 OK with the part ETag header.
        """
        upload_id = self._require_upload_id(request)
        part_number = validate_part_number(
            request.query_params.get("partNumber"),
            self.config.multipart.max_part_number,
        )
        await self._get_upload(bucket, key, upload_id)

        data = await request.body()
        md5_hex = await self.storage.put_part(bucket, key, upload_id, part_number, data)
        etag = format_etag(md5_hex)

        await self.metadata.put_part(
            upload_id=upload_id,
            part_number=part_number,
            size=len(data),
            etag=etag,
        )
        if metrics.bytes_received_total is not None:
            metrics.bytes_received_total.inc(len(data))

        return Response(status_code=200, headers={"ETag": etag})

    async def complete_multipart_upload(
        self, request: Request, bucket: str, key: str
    ) -> Response:
        """Assemble the listed parts into the final object.

        Implements: POST /{bucket}/{key}?uploadId=U

        The result is always a new object. Its ACL is the directive on
        this request, else the one given at initiation, else ``default``.

        Raises:
            NoSuchUpload: If the upload does not exist.
            MalformedXML: If the body is not a part list.
            InvalidPartOrder: If part numbers are not ascending.
            InvalidPart: If a part is missing or its ETag does not match.
            EntityTooSmall: If a part other than the last is too small.
        """
        upload_id = self._require_upload_id(request)
        upload = await self._get_upload(bucket, key, upload_id)
        directive = read_acl_directive(request)

        requested = self._parse_part_list(await request.body())

        prev_pn = 0
        for pn, _ in requested:
            if pn <= prev_pn:
                raise InvalidPartOrder()
            prev_pn = pn

        stored_by_number = {
            p["part_number"]: p for p in await self.metadata.get_parts_for_completion(upload_id)
        }
        validated: list[dict] = []
        for pn, etag in requested:
            stored = stored_by_number.get(pn)
            if stored is None or stored["etag"].strip('"').upper() != etag.strip('"').upper():
                raise InvalidPart(_INVALID_PART_MESSAGE)
            validated.append(stored)

        min_part_size = self.config.multipart.min_part_size
        for part in validated[:-1]:
            if part["size"] < min_part_size:
                raise EntityTooSmall(
                    "Your proposed upload is smaller than the minimum allowed size. "
                    f"Part {part['part_number']} has size {part['size']} bytes."
                )

        if directive is None and upload.get("acl") is not None:
            directive = parse_permission(upload["acl"])
        acl = resolve_on_write(None, directive, is_new_object=True)

        composite_etag = compute_composite_etag([p["etag"] for p in validated])
        total_size = sum(p["size"] for p in validated)
        async with self.object_locks.hold(bucket, key):
            existed = await self.metadata.object_exists(bucket, key)
            await self.storage.assemble_parts(bucket, key, upload_id, [pn for pn, _ in requested])
            await self.metadata.complete_multipart_upload(
                bucket=bucket,
                key=key,
                upload_id=upload_id,
                size=total_size,
                etag=composite_etag,
                content_type=upload.get("content_type", "application/octet-stream"),
                acl=acl.value,
                user_metadata=upload.get("user_metadata", "{}"),
            )
        metrics.record_acl_update(acl.value)
        if not existed and metrics.objects_total is not None:
            metrics.objects_total.inc()

        try:
            await self.storage.delete_parts(bucket, key, upload_id)
        except OSError:
            logger.warning(
                "Failed to clean up part files for upload %s after completion: %s/%s",
                upload_id,
                bucket,
                key,
                exc_info=True,
            )

        location = f"{request.url.scheme}://{request.url.netloc}/{bucket}/{key}"
        body = render_complete_multipart_upload(
            location=location,
            bucket=bucket,
            key=key,
            etag=composite_etag,
        )
        return xml_response(body, status=200, headers={"ETag": composite_etag})

    async def abort_multipart_upload(
        self, request: Request, bucket: str, key: str
    ) -> Response:
        """Abort an in-progress multipart upload and discard its parts.

        Implements: DELETE /{bucket}/{key}?uploadId=U
        """
        upload_id = self._require_upload_id(request)
        await self._get_upload(bucket, key, upload_id)

        try:
            await self.storage.delete_parts(bucket, key, upload_id)
        except OSError:
            logger.warning(
                "Failed to delete part files for upload %s: %s/%s",
                upload_id,
                bucket,
                key,
                exc_info=True,
            )

        await self.metadata.abort_multipart_upload(bucket, key, upload_id)
        return Response(status_code=204)

    async def list_uploads(self, request: Request, bucket: str) -> Response:
        """List in-progress multipart uploads of a bucket.

        Implements: GET /{bucket}?uploads

        Supports prefix, max-uploads, key-marker and upload-id-marker.
        """
        await self._ensure_bucket_exists(bucket)

        prefix = request.query_params.get("prefix", "")
        key_marker = request.query_params.get("key-marker", "")
        upload_id_marker = request.query_params.get("upload-id-marker", "")
        max_uploads = _int_param(request.query_params.get("max-uploads"), 1000, upper=1000)

        result = await self.metadata.list_multipart_uploads(
            bucket=bucket,
            prefix=prefix,
            max_uploads=max_uploads,
            key_marker=key_marker,
            upload_id_marker=upload_id_marker,
        )

        body = render_list_multipart_uploads(
            bucket=bucket,
            uploads=result["uploads"],
            prefix=prefix,
            max_uploads=max_uploads,
            is_truncated=result["is_truncated"],
            key_marker=key_marker,
            upload_id_marker=upload_id_marker,
            next_key_marker=result.get("next_key_marker"),
            next_upload_id_marker=result.get("next_upload_id_marker"),
        )
        return xml_response(body, status=200)

    async def list_parts(self, request: Request, bucket: str, key: str) -> Response:
        """List the uploaded parts of a multipart upload.

        Implements: GET /{bucket}/{key}?uploadId=U

        Supports part-number-marker and max-parts.
        """
        upload_id = self._require_upload_id(request)
        await self._get_upload(bucket, key, upload_id)

        part_number_marker = _int_param(request.query_params.get("part-number-marker"), 0)
        max_parts = _int_param(request.query_params.get("max-parts"), 1000, upper=1000)

        result = await self.metadata.list_parts(
            upload_id=upload_id,
            part_number_marker=part_number_marker,
            max_parts=max_parts,
        )

        body = render_list_parts(
            bucket=bucket,
            key=key,
            upload_id=upload_id,
            parts=result["parts"],
            is_truncated=result["is_truncated"],
            part_number_marker=part_number_marker,
            next_part_number_marker=result.get("next_part_number_marker"),
            max_parts=max_parts,
        )
        return xml_response(body, status=200)

    @staticmethod
    def _parse_part_list(body: bytes) -> list[tuple[int, str]]:
        """Parse a CompleteMultipartUpload body into (part_number, etag) pairs.

        Raises:
            MalformedXML: If the body is not well-formed or lists no parts.
        """
        try:
            root = ET.fromstring(body)
        except ET.ParseError:
            raise MalformedXML()

        ns = ""
        if root.tag.startswith("{"):
            ns = root.tag[: root.tag.index("}") + 1]

        parts: list[tuple[int, str]] = []
        for part_elem in root.findall(f"{ns}Part"):
            pn_elem = part_elem.find(f"{ns}PartNumber")
            etag_elem = part_elem.find(f"{ns}ETag")
            if pn_elem is None or pn_elem.text is None:
                raise MalformedXML("Missing PartNumber element")
            if etag_elem is None or etag_elem.text is None:
                raise MalformedXML("Missing ETag element")
            try:
                pn = int(pn_elem.text.strip())
            except ValueError:
                raise InvalidArgument(f"Invalid part number: {pn_elem.text.strip()}")
            parts.append((pn, etag_elem.text.strip()))

        if not parts:
            raise MalformedXML("No parts specified in request body")
        return parts
