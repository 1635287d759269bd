"""Abstract metadata store protocol for osslite."""

from typing import Any, Protocol


class MetadataStore(Protocol):
    """Protocol defining the metadata store interface.

    All metadata backends (SQLite, in-memory) implement this interface.
    Records are exchanged as plain dicts keyed by column name (buckets,
    objects, multipart_uploads, multipart_parts, credentials tables of the
    SQLite schema). ACL values are stored as their canned wire names.
    """

    async def init_db(self) -> None:
        """Initialize the database schema.

        Creates tables and indices if they do not already exist.
        Must be idempotent (safe to call on every startup).
        """
        ...

    async def close(self) -> None:
        """Close the database connection and release resources."""
        ...

    # -- Bucket operations -----------------------------------------------------

    async def create_bucket(
        self,
        bucket: str,
        region: str = "oss-cn-hangzhou",
        owner_id: str = "",
        owner_display: str = "",
        acl: str = "private",
    ) -> None:
        """Create a new bucket record.

        Args:
            bucket: The bucket name.
            region: The region for the bucket.
            owner_id: ID of the bucket owner.
            owner_display: Display name of the owner.
            acl: Canned bucket ACL.
        """
        ...

    async def bucket_exists(self, bucket: str) -> bool:
        """Check whether a bucket exists."""
        ...

    async def delete_bucket(self, bucket: str) -> None:
        """Delete a bucket record."""
        ...

    async def get_bucket(self, bucket: str) -> dict[str, Any] | None:
        """Retrieve metadata for a single bucket, or None if it does not exist."""
        ...

    async def list_buckets(self, owner_id: str = "") -> list[dict[str, Any]]:
        """List all buckets ordered by name, optionally filtered by owner."""
        ...

    async def update_bucket_acl(self, bucket: str, acl: str) -> None:
        """Update the canned ACL on a bucket."""
        ...

    # -- Object operations -----------------------------------------------------

    async def put_object(
        self,
        bucket: str,
        key: str,
        size: int,
        etag: str,
        content_type: str = "application/octet-stream",
        object_type: str = "Normal",
        acl: str = "default",
        user_metadata: str = "{}",
    ) -> None:
        """Create or replace an object metadata record (upsert).

        Args:
            bucket: The bucket name.
            key: The object key.
            size: Size in bytes.
            etag: The object ETag.
            content_type: MIME content type.
            object_type: Normal, Appendable or Multipart.
            acl: Resolved object ACL to store.
            user_metadata: JSON-serialized user metadata.
        """
        ...

    async def object_exists(self, bucket: str, key: str) -> bool:
        """Check whether an object exists."""
        ...

    async def get_object(self, bucket: str, key: str) -> dict[str, Any] | None:
        """Retrieve metadata for a single object, or None if not found."""
        ...

    async def delete_object(self, bucket: str, key: str) -> None:
        """Delete an object metadata record. No error if it is absent."""
        ...

    async def update_object_acl(self, bucket: str, key: str, acl: str) -> bool:
        """Replace the stored ACL of an object in a single write.

        Args:
            bucket: The bucket name.
            key: The object key.
            acl: The new canned ACL.

        Returns:
            True if a record was updated, False if the object does not exist.
        """
        ...

    async def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        delimiter: str = "",
        max_keys: int = 100,
        marker: str = "",
    ) -> dict[str, Any]:
        """List objects in a bucket with optional filtering and pagination.

        Args:
            bucket: The bucket name.
            prefix: Key prefix filter.
            delimiter: Grouping delimiter.
            max_keys: Maximum number of keys to return.
            marker: Start listing after this key.

        Returns:
            A dict with 'contents', 'common_prefixes', 'is_truncated'
            and 'next_marker'.
        """
        ...

    async def count_objects(self, bucket: str) -> int:
        """Count the number of objects in a bucket."""
        ...

    # -- Multipart operations --------------------------------------------------

    async def create_multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        content_type: str = "application/octet-stream",
        acl: str | None = None,
        user_metadata: str = "{}",
        owner_id: str = "",
        owner_display: str = "",
    ) -> None:
        """Record a new multipart upload.

        Args:
            bucket: The bucket name.
            key: The object key.
            upload_id: The generated upload identifier.
            content_type: MIME type for the final object.
            acl: ACL directive supplied at initiation, None when omitted.
            user_metadata: JSON-serialized user metadata.
            owner_id: ID of the initiator.
            owner_display: Display name of the initiator.
        """
        ...

    async def get_multipart_upload(
        self, bucket: str, key: str, upload_id: str
    ) -> dict[str, Any] | None:
        """Retrieve metadata for a multipart upload, or None if not found."""
        ...

    async def complete_multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        size: int,
        etag: str,
        content_type: str = "application/octet-stream",
        acl: str = "default",
        user_metadata: str = "{}",
    ) -> None:
        """Complete a multipart upload atomically.

        Writes the final Multipart object record and removes the upload
        and its parts in one step.
        """
        ...

    async def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Remove a multipart upload and its part records."""
        ...

    async def put_part(
        self,
        upload_id: str,
        part_number: int,
        size: int,
        etag: str,
    ) -> None:
        """Record an uploaded part (upsert by upload_id + part_number)."""
        ...

    async def get_parts_for_completion(self, upload_id: str) -> list[dict[str, Any]]:
        """Get all parts for a multipart upload, ordered by part number."""
        ...

    async def list_parts(
        self,
        upload_id: str,
        part_number_marker: int = 0,
        max_parts: int = 1000,
    ) -> dict[str, Any]:
        """List parts with pagination.

        Returns:
            A dict with 'parts', 'is_truncated', and 'next_part_number_marker'.
        """
        ...

    async def list_multipart_uploads(
        self,
        bucket: str,
        prefix: str = "",
        max_uploads: int = 1000,
        key_marker: str = "",
        upload_id_marker: str = "",
    ) -> dict[str, Any]:
        """List in-progress multipart uploads in a bucket.

        Returns:
            A dict with 'uploads', 'is_truncated', 'next_key_marker'
            and 'next_upload_id_marker'.
        """
        ...

    # -- Credential operations -------------------------------------------------

    async def get_credential(self, access_key_id: str) -> dict[str, Any] | None:
        """Retrieve an active credential by access key ID."""
        ...

    async def put_credential(
        self,
        access_key_id: str,
        secret_key: str,
        owner_id: str = "",
        display_name: str = "",
    ) -> None:
        """Create or update a credential record."""
        ...


def common_prefix_of(key: str, prefix: str, delimiter: str) -> str | None:
    """Return the CommonPrefixes entry ``key`` rolls up into.

    None means the key is listed as itself: there is no delimiter, the key
    lies outside ``prefix``, or no delimiter follows the prefix.
    """
    if not delimiter or not key.startswith(prefix):
        return None
    pos = key.find(delimiter, len(prefix))
    if pos < 0:
        return None
    return key[: pos + len(delimiter)]
