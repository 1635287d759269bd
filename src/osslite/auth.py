"""OSS header signature (V1) authentication for osslite.

A signed request carries ``Authorization: OSS <AccessKeyId>:<Signature>``
where the signature is base64(HMAC-SHA1(secret, StringToSign)) and::

    StringToSign = VERB + "\\n"
                 + Content-MD5 + "\\n"
                 + Content-Type + "\\n"
                 + Date + "\\n"
                 + CanonicalizedOSSHeaders
                 + CanonicalizedResource

The module-level helpers are shared by the client SDK (signing) and the
server (verification) so both sides build byte-identical strings.

Requests without an Authorization header are anonymous; they are let
through only when the ACL of the target object (or its bucket) allows it.
"""

import base64
import hashlib
import hmac
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from fastapi import Request

from osslite.acl import (
    ObjectPermission,
    allows_anonymous_read,
    allows_anonymous_write,
    effective_permission,
    parse_permission,
)
from osslite.errors import (
    AccessDenied,
    InvalidAccessKeyId,
    RequestTimeTooSkewed,
    SignatureDoesNotMatch,
)

logger = logging.getLogger(__name__)

AUTH_PREFIX = "OSS "
OSS_HEADER_PREFIX = "x-oss-"

# Query parameters that take part in the canonical resource.
SUB_RESOURCES = frozenset(
    {
        "acl",
        "append",
        "position",
        "uploadId",
        "partNumber",
        "uploads",
    }
)


def split_path(path: str) -> tuple[str, str]:
    """Split a decoded path-style URL path into (bucket, key).

    ``/`` gives ("", ""), ``/bucket`` gives ("bucket", "").
    """
    stripped = path.lstrip("/")
    if not stripped:
        return "", ""
    bucket, _, key = stripped.partition("/")
    return bucket, key


def build_canonical_resource(bucket: str, key: str, params: Mapping[str, str]) -> str:
    """Build the CanonicalizedResource element.

    Args:
        bucket: The bucket name, empty for service-level requests.
        key: The decoded object key, empty for bucket-level requests.
        params: The request query parameters.

    Returns:
        ``/`` for the service, ``/bucket/`` for a bucket, ``/bucket/key``
        for an object, followed by sorted sub-resources.
    """
    if not bucket:
        resource = "/"
    else:
        resource = f"/{bucket}/{key}"

    subs = sorted(name for name in params if name in SUB_RESOURCES)
    if subs:
        items = []
        for name in subs:
            value = params[name]
            items.append(f"{name}={value}" if value else name)
        resource += "?" + "&".join(items)
    return resource


def build_canonical_headers(headers: Mapping[str, str]) -> str:
    """Build the CanonicalizedOSSHeaders element from ``x-oss-*`` headers."""
    oss_headers = {}
    for name, value in headers.items():
        lower = name.lower()
        if lower.startswith(OSS_HEADER_PREFIX):
            oss_headers[lower] = value.strip()
    return "".join(f"{name}:{oss_headers[name]}\n" for name in sorted(oss_headers))


def build_string_to_sign(
    method: str,
    headers: Mapping[str, str],
    bucket: str,
    key: str,
    params: Mapping[str, str],
) -> str:
    """Assemble the StringToSign for a request.

    Args:
        method: HTTP verb.
        headers: Request headers (any case).
        bucket: The bucket name.
        key: The decoded object key.
        params: The request query parameters.

    Returns:
        The string the signature is computed over.
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    return "\n".join(
        [
            method.upper(),
            lowered.get("content-md5", ""),
            lowered.get("content-type", ""),
            lowered.get("date", ""),
            build_canonical_headers(lowered) + build_canonical_resource(bucket, key, params),
        ]
    )


def sign(secret_key: str, string_to_sign: str) -> str:
    """Return base64(HMAC-SHA1(secret_key, string_to_sign))."""
    digest = hmac.new(
        secret_key.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def authorization_header(access_key: str, signature: str) -> str:
    """Format the Authorization header value."""
    return f"{AUTH_PREFIX}{access_key}:{signature}"


class OSSAuthenticator:
    """Verifies OSS V1 signed requests against stored credentials.

    Attributes:
        metadata: The metadata store for credential lookups.
        clock_skew_seconds: Maximum tolerated difference between the
            request Date and the server clock.
    """

    def __init__(self, metadata: Any, clock_skew_seconds: int = 900) -> None:
        self.metadata = metadata
        self.clock_skew_seconds = clock_skew_seconds

    async def verify_request(self, request: Request) -> dict[str, str]:
        """Verify the request's Authorization header.

        Args:
            request: The incoming FastAPI request.

        Returns:
            A dict with 'access_key', 'owner_id' and 'display_name'.

        Raises:
            AccessDenied: On a missing or malformed header or Date.
            InvalidAccessKeyId: If the access key is unknown.
            SignatureDoesNotMatch: On signature mismatch.
            RequestTimeTooSkewed: If the Date is outside the allowed skew.
        """
        auth_header = request.headers.get("authorization", "")
        access_key, signature = self._parse_authorization_header(auth_header)

        date = request.headers.get("date", "")
        if not date:
            raise AccessDenied("Missing Date header.")
        self._check_clock_skew(date)

        cred = await self.metadata.get_credential(access_key)
        if cred is None:
            raise InvalidAccessKeyId()

        bucket, key = split_path(request.scope["path"])
        string_to_sign = build_string_to_sign(
            request.method,
            request.headers,
            bucket,
            key,
            request.query_params,
        )
        expected = sign(cred["secret_key"], string_to_sign)

        if not hmac.compare_digest(expected, signature):
            logger.debug("Signature mismatch for %s: string to sign %r", access_key, string_to_sign)
            raise SignatureDoesNotMatch()

        return {
            "access_key": access_key,
            "owner_id": cred["owner_id"],
            "display_name": cred.get("display_name") or access_key,
        }

    def _parse_authorization_header(self, header: str) -> tuple[str, str]:
        if not header.startswith(AUTH_PREFIX):
            raise AccessDenied("Authorization header is not an OSS signature.")
        access_key, sep, signature = header[len(AUTH_PREFIX) :].strip().partition(":")
        if not sep or not access_key or not signature:
            raise AccessDenied("Malformed Authorization header.")
        return access_key, signature

    def _check_clock_skew(self, date: str) -> None:
        """Raise RequestTimeTooSkewed if ``date`` is too far from now.

        Raises:
            AccessDenied: If the Date header cannot be parsed.
        """
        try:
            request_time = parsedate_to_datetime(date)
        except (TypeError, ValueError):
            raise AccessDenied("Invalid Date header.")
        if request_time.tzinfo is None:
            request_time = request_time.replace(tzinfo=timezone.utc)

        diff = abs((datetime.now(timezone.utc) - request_time).total_seconds())
        if diff > self.clock_skew_seconds:
            raise RequestTimeTooSkewed()


async def check_anonymous_access(
    metadata: Any,
    method: str,
    bucket: str,
    key: str,
    params: Mapping[str, str],
    is_copy: bool = False,
) -> None:
    """Allow an unsigned request only when the target ACL permits it.

    Object reads (GET/HEAD without sub-resources) need an effective
    permission of public-read or public-read-write. Object puts and
    appends need public-read-write; copies are never anonymous.
    Everything else is denied. Requests on a missing bucket pass
    through so the handler reports NoSuchBucket.

    Raises:
        AccessDenied: If anonymous access is not allowed.
    """
    if not bucket or not key:
        raise AccessDenied("Anonymous access is not allowed for this operation.")

    bucket_meta = await metadata.get_bucket(bucket)
    if bucket_meta is None:
        return

    obj = await metadata.get_object(bucket, key)
    object_acl = parse_permission(obj["acl"]) if obj is not None else None
    permission = effective_permission(object_acl, ObjectPermission(bucket_meta["acl"]))

    is_read = method in ("GET", "HEAD") and not params
    is_write = (method == "PUT" and not params and not is_copy) or (method == "POST" and "append" in params)

    if is_read and allows_anonymous_read(permission):
        return
    if is_write and allows_anonymous_write(permission):
        return
    raise AccessDenied()
