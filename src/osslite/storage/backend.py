"""Abstract storage backend protocol for osslite."""

from typing import AsyncIterator, Protocol


class StorageBackend(Protocol):
    """Protocol defining the object storage backend interface.

    Backends (local filesystem, in-memory) hold raw object bytes only;
    everything else about an object lives in the metadata store. Digests
    are returned as lowercase hex; callers format ETags.
    """

    async def init(self) -> None:
        """Initialize the storage backend (create directories, etc.)."""
        ...

    async def close(self) -> None:
        """Release resources held by the storage backend."""
        ...

    async def put(self, bucket: str, key: str, data: bytes) -> str:
        """Store an object's bytes, replacing any previous content.

        Returns:
            The hex-encoded MD5 of the stored data.
        """
        ...

    async def append(self, bucket: str, key: str, data: bytes) -> str:
        """Append bytes to the end of an object, creating it if absent.

        Returns:
            The hex-encoded MD5 of the whole object after the append.
        """
        ...

    async def get(self, bucket: str, key: str) -> bytes:
        """Retrieve an object's bytes.

        Raises:
            FileNotFoundError: If the object does not exist.
        """
        ...

    async def get_stream(
        self, bucket: str, key: str, offset: int = 0, length: int | None = None
    ) -> AsyncIterator[bytes]:
        """Retrieve an object's bytes as an async stream.

        Args:
            bucket: The bucket name.
            key: The object key.
            offset: Byte offset to start reading from.
            length: Number of bytes to read, or None for all remaining.
        """
        ...

    async def delete(self, bucket: str, key: str) -> None:
        """Delete an object's bytes. Missing objects are ignored."""
        ...

    async def exists(self, bucket: str, key: str) -> bool:
        """Check if an object exists in storage."""
        ...

    async def put_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes
    ) -> str:
        """Store a multipart upload part.

        Returns:
            The hex-encoded MD5 of the part.
        """
        ...

    async def assemble_parts(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_numbers: list[int],
    ) -> str:
        """Concatenate uploaded parts, in the given order, into the final object.

        Returns:
            The hex-encoded MD5 of the assembled object.
        """
        ...

    async def delete_parts(self, bucket: str, key: str, upload_id: str) -> None:
        """Delete all stored parts for a multipart upload."""
        ...

    async def copy_object(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
    ) -> str:
        """Copy an object's bytes from one location to another.

        Returns:
            The hex-encoded MD5 of the copied object.
        """
        ...
