"""Shared plumbing for the osslite request handlers."""

import asyncio
import hashlib
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request

from osslite.acl import ObjectPermission, parse_permission
from osslite.errors import InvalidArgument, NoSuchBucket

logger = logging.getLogger(__name__)

OBJECT_ACL_HEADER = "x-oss-object-acl"
BUCKET_ACL_HEADER = "x-oss-acl"
USER_META_PREFIX = "x-oss-meta-"


def derive_owner_id(access_key: str) -> str:
    """Derive a stable owner ID from an access key.

    Uses the SHA-256 hash of the access key, truncated to 32 characters.
    """
    return hashlib.sha256(access_key.encode()).hexdigest()[:32]


def format_etag(md5_hex: str) -> str:
    """Format a hex MD5 digest as a quoted uppercase ETag."""
    return f'"{md5_hex.upper()}"'


def read_acl_directive(request: Request) -> ObjectPermission | None:
    """Read the ``x-oss-object-acl`` header of a write request.

    Returns:
        The requested permission, or None when the header is absent.

    Raises:
        InvalidArgument: If the header names no known permission.
    """
    raw = request.headers.get(OBJECT_ACL_HEADER)
    if raw is None:
        return None
    permission = parse_permission(raw)
    if permission is ObjectPermission.UNKNOWN:
        raise InvalidArgument(f"no such object access control exists: {raw}")
    return permission


def extract_user_metadata(request: Request) -> dict[str, str]:
    """Collect ``x-oss-meta-*`` headers, keyed by the suffix after the prefix."""
    meta: dict[str, str] = {}
    for name, value in request.headers.items():
        lower = name.lower()
        if lower.startswith(USER_META_PREFIX):
            meta[lower[len(USER_META_PREFIX) :]] = value
    return meta


def user_metadata_headers(user_metadata_json: str | None) -> dict[str, str]:
    """Render stored user metadata back into ``x-oss-meta-*`` headers."""
    if not user_metadata_json:
        return {}
    try:
        meta = json.loads(user_metadata_json)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable user metadata: %r", user_metadata_json)
        return {}
    return {f"{USER_META_PREFIX}{k}": v for k, v in meta.items()}


class KeyLocks:
    """Per-object write locks, shared by every handler that writes an object.

    A lock exists only while some task holds or waits for it, so the
    table stays as small as the number of keys being written right now.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._users: dict[tuple[str, str], int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, bucket: str, key: str) -> AsyncIterator[None]:
        name = (bucket, key)
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._users[name] = self._users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[name] -= 1
            if not self._users[name]:
                del self._users[name]
                del self._locks[name]


class BaseHandler:
    """Common accessors shared by the bucket, object and multipart handlers.

    All handlers read metadata, storage and config from ``app.state`` on
    every call, so tests can swap them per test.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app

    @property
    def metadata(self):
        """Shortcut to the metadata store on app.state."""
        return self.app.state.metadata

    @property
    def storage(self):
        """Shortcut to the storage backend on app.state."""
        return self.app.state.storage

    @property
    def config(self):
        """Shortcut to the OSSLiteConfig on app.state."""
        return self.app.state.config

    @property
    def object_locks(self) -> KeyLocks:
        """Write locks shared by the object and multipart handlers."""
        return self.app.state.object_locks

    def _owner(self, request: Request) -> tuple[str, str]:
        """Return (owner_id, display_name) for the caller.

        Authenticated requests carry an identity on ``request.state``;
        otherwise the configured access key owns everything.
        """
        identity = getattr(request.state, "identity", None)
        if identity:
            return identity["owner_id"], identity["display_name"]
        access_key = self.config.auth.access_key
        return derive_owner_id(access_key), access_key

    async def _get_bucket(self, bucket: str) -> dict[str, Any]:
        """Return the bucket record.

        Raises:
            NoSuchBucket: If the bucket does not exist.
        """
        bucket_meta = await self.metadata.get_bucket(bucket)
        if bucket_meta is None:
            raise NoSuchBucket(bucket)
        return bucket_meta

    async def _ensure_bucket_exists(self, bucket: str) -> None:
        """Raise NoSuchBucket if the bucket does not exist."""
        if not await self.metadata.bucket_exists(bucket):
            raise NoSuchBucket(bucket)
