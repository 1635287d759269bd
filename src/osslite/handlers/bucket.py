"""Bucket-level OSS request handlers for osslite.

Implements the bucket operations:
    - ListBuckets (GET /)
    - CreateBucket (PUT /{bucket})
    - DeleteBucket (DELETE /{bucket})
    - GetBucketAcl (GET /{bucket}?acl)
    - PutBucketAcl (PUT /{bucket}?acl)
"""

import logging

from fastapi import Request, Response

from osslite import metrics
from osslite.acl import BUCKET_PERMISSIONS, ObjectPermission, parse_permission, render_acl_xml
from osslite.errors import BucketAlreadyExists, BucketNotEmpty, InvalidArgument
from osslite.handlers.base import BUCKET_ACL_HEADER, BaseHandler
from osslite.validation import validate_bucket_name
from osslite.xml_utils import render_list_buckets, xml_response

logger = logging.getLogger(__name__)


def _read_bucket_acl(request: Request, default: ObjectPermission | None) -> ObjectPermission:
    """Parse the ``x-oss-acl`` header, falling back to ``default`` when absent.

    Raises:
        InvalidArgument: If the header is missing with no default, or names
            a value that is not a bucket ACL.
    """
    raw = request.headers.get(BUCKET_ACL_HEADER)
    if raw is None:
        if default is None:
            raise InvalidArgument(f"Missing {BUCKET_ACL_HEADER} header.")
        return default
    permission = parse_permission(raw)
    if permission not in BUCKET_PERMISSIONS:
        raise InvalidArgument(f"no such bucket access control exists: {raw}")
    return permission


class BucketHandler(BaseHandler):
    """Handles OSS bucket operations."""

    async def list_buckets(self, request: Request) -> Response:
        """List all buckets.

        Implements: GET /
        """
        owner_id, owner_display = self._owner(request)
        buckets = await self.metadata.list_buckets()

        xml = render_list_buckets(
            owner_id=owner_id,
            owner_display_name=owner_display,
            buckets=buckets,
        )
        return xml_response(xml, status=200)

    async def create_bucket(self, request: Request, bucket: str) -> Response:
        """Create a new bucket.

        Implements: PUT /{bucket}

        The optional ``x-oss-acl`` header sets the bucket ACL (default
        private).

        Raises:
            InvalidBucketName: If the name is not a valid bucket name.
            BucketAlreadyExists: If the bucket already exists.
            InvalidArgument: If ``x-oss-acl`` is not a bucket ACL.
        """
        validate_bucket_name(bucket)
        acl = _read_bucket_acl(request, default=ObjectPermission.PRIVATE)

        if await self.metadata.bucket_exists(bucket):
            raise BucketAlreadyExists(bucket)

        owner_id, owner_display = self._owner(request)
        await self.metadata.create_bucket(
            bucket=bucket,
            region=self.config.server.region,
            owner_id=owner_id,
            owner_display=owner_display,
            acl=acl.value,
        )
        if metrics.buckets_total is not None:
            metrics.buckets_total.inc()

        logger.info("Created bucket %s", bucket, extra={"bucket": bucket, "acl": acl.value})
        return Response(status_code=200, headers={"Location": f"/{bucket}"})

    async def delete_bucket(self, request: Request, bucket: str) -> Response:
        """Delete an existing empty bucket.

        Implements: DELETE /{bucket}

        Raises:
            NoSuchBucket: If the bucket does not exist.
            BucketNotEmpty: If the bucket still holds objects.
        """
        await self._ensure_bucket_exists(bucket)

        if await self.metadata.count_objects(bucket) > 0:
            raise BucketNotEmpty(bucket)

        await self.metadata.delete_bucket(bucket)
        if metrics.buckets_total is not None:
            metrics.buckets_total.dec()

        return Response(status_code=204)

    async def get_bucket_acl(self, request: Request, bucket: str) -> Response:
        """Return the canned ACL of a bucket.

        Implements: GET /{bucket}?acl
        """
        bucket_meta = await self._get_bucket(bucket)
        xml = render_acl_xml(
            bucket_meta.get("owner_id", ""),
            bucket_meta.get("owner_display", ""),
            ObjectPermission(bucket_meta["acl"]),
        )
        return xml_response(xml, status=200)

    async def put_bucket_acl(self, request: Request, bucket: str) -> Response:
        """Set the canned ACL of a bucket from the ``x-oss-acl`` header.

        Implements: PUT /{bucket}?acl
        """
        await self._ensure_bucket_exists(bucket)
        acl = _read_bucket_acl(request, default=None)

        await self.metadata.update_bucket_acl(bucket, acl.value)
        logger.info(
            "Bucket ACL of %s set to %s",
            bucket,
            acl.value,
            extra={"bucket": bucket, "acl": acl.value},
        )
        return Response(status_code=200)
