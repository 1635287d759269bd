"""Canned ACL model for osslite objects and buckets.

An object carries one of four canned permissions. ``DEFAULT`` means the
object inherits its bucket's ACL. Every write path (put, append, copy,
multipart-complete) runs ``resolve_on_write`` to decide what the stored
permission becomes; an absent directive and an explicit ``DEFAULT`` are
different inputs.

Permissions are persisted as their wire name in the metadata store and
rendered as ``AccessControlPolicy`` XML in ACL responses.
"""

from enum import Enum
from xml.sax.saxutils import escape as _sax_escape


class ObjectPermission(str, Enum):
    """Object-level canned ACL values, keyed by wire name."""

    DEFAULT = "default"
    PRIVATE = "private"
    PUBLIC_READ = "public-read"
    PUBLIC_READ_WRITE = "public-read-write"
    # Parse-failure sentinel, never stored.
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


# Bucket ACLs have no "default" level.
BUCKET_PERMISSIONS = frozenset(
    {
        ObjectPermission.PRIVATE,
        ObjectPermission.PUBLIC_READ,
        ObjectPermission.PUBLIC_READ_WRITE,
    }
)

_BY_WIRE_NAME = {
    p.value: p for p in ObjectPermission if p is not ObjectPermission.UNKNOWN
}


def parse_permission(text: str | None) -> ObjectPermission:
    """Map a wire name to its ObjectPermission.

    Matching is exact and case-sensitive. Unrecognized input, including
    ``None``, yields ``UNKNOWN``; this function never raises.

    Args:
        text: The permission name, e.g. "public-read".

    Returns:
        The matching ObjectPermission, or UNKNOWN.
    """
    if text is None:
        return ObjectPermission.UNKNOWN
    return _BY_WIRE_NAME.get(text, ObjectPermission.UNKNOWN)


def resolve_on_write(
    existing: ObjectPermission | None,
    directive: ObjectPermission | None,
    is_new_object: bool,
) -> ObjectPermission:
    """Compute the permission an object stores after a write.

    An explicit directive always wins, whether or not the object existed.
    Without one, a new object gets ``DEFAULT`` and an existing object
    keeps what it had.

    Args:
        existing: The currently stored permission, None if the object is new.
        directive: The ACL supplied with the write, None if omitted.
        is_new_object: Whether the write creates (or replaces) the object.

    Returns:
        The permission to persist.

    Raises:
        ValueError: If the directive is UNKNOWN, or the object is not new
            and no existing permission was supplied.
    """
    if directive is not None:
        if directive is ObjectPermission.UNKNOWN:
            raise ValueError("UNKNOWN is not a storable permission")
        return directive
    if is_new_object:
        return ObjectPermission.DEFAULT
    if existing is None:
        raise ValueError("existing permission is required for an existing object")
    return existing


def effective_permission(
    object_permission: ObjectPermission | None,
    bucket_acl: ObjectPermission,
) -> ObjectPermission:
    """Return the permission that governs access to an object.

    ``DEFAULT`` (or no stored value) resolves to the bucket ACL.
    """
    if object_permission is None or object_permission is ObjectPermission.DEFAULT:
        return bucket_acl
    return object_permission


def allows_anonymous_read(permission: ObjectPermission) -> bool:
    """Whether an unauthenticated caller may read under this permission."""
    return permission in (ObjectPermission.PUBLIC_READ, ObjectPermission.PUBLIC_READ_WRITE)


def allows_anonymous_write(permission: ObjectPermission) -> bool:
    """Whether an unauthenticated caller may write under this permission."""
    return permission is ObjectPermission.PUBLIC_READ_WRITE


def _escape(value: str) -> str:
    """Escape special XML characters."""
    return _sax_escape(str(value))


def render_acl_xml(owner_id: str, owner_display: str, grant: ObjectPermission) -> str:
    """Render an AccessControlPolicy XML document.

    Used for both object and bucket ACL responses; the grant is the canned
    permission name.

    Args:
        owner_id: The owner ID.
        owner_display: The owner display name.
        grant: The permission to report.

    Returns:
        An XML string in the OSS AccessControlPolicy format.
    """
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        "<AccessControlPolicy>",
        "<Owner>",
        f"<ID>{_escape(owner_id)}</ID>",
        f"<DisplayName>{_escape(owner_display)}</DisplayName>",
        "</Owner>",
        "<AccessControlList>",
        f"<Grant>{_escape(grant.value)}</Grant>",
        "</AccessControlList>",
        "</AccessControlPolicy>",
    ]
    return "\n".join(parts)
