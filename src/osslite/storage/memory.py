"""In-memory storage backend for osslite.

Objects and parts live in dictionaries and are lost on restart. An
optional ``max_size_bytes`` caps the total bytes held.
"""

import hashlib
import logging
from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB (matches local backend)
_CHUNK_SIZE = 64 * 1024


class MemoryStorageError(Exception):
    """Raised when the memory backend cannot fulfill a request."""


class MemoryCapacityError(MemoryStorageError):
    """Raised when a write would exceed the configured max_size_bytes."""


class MemoryStorageBackend:
    """Storage backend that holds all objects in memory.

    Objects are keyed by (bucket, key); parts by (upload_id, part_number).

    Attributes:
        max_size_bytes: Maximum total bytes allowed (0 = unlimited).
    """

    def __init__(self, max_size_bytes: int = 0) -> None:
        self.max_size_bytes = max_size_bytes
        self._objects: dict[tuple[str, str], bytes] = {}
        self._parts: dict[tuple[str, int], bytes] = {}
        self._current_size: int = 0

    def _check_capacity(self, additional_bytes: int) -> None:
        """Raise MemoryCapacityError if storing additional_bytes would exceed the cap."""
        if self.max_size_bytes > 0:
            if self._current_size + additional_bytes > self.max_size_bytes:
                raise MemoryCapacityError(
                    f"Cannot store {additional_bytes} bytes: would exceed "
                    f"max_size_bytes ({self._current_size} + {additional_bytes} "
                    f"> {self.max_size_bytes})"
                )

    def _set_object(self, bucket: str, key: str, data: bytes) -> None:
        old = self._objects.get((bucket, key))
        delta = len(data) - (len(old) if old is not None else 0)
        self._check_capacity(delta)
        self._objects[(bucket, key)] = data
        self._current_size += delta

    async def init(self) -> None:
        logger.info(
            "Memory storage backend initialized (max_size=%s)",
            self.max_size_bytes if self.max_size_bytes > 0 else "unlimited",
        )

    async def close(self) -> None:
        self._objects.clear()
        self._parts.clear()
        self._current_size = 0

    async def put(self, bucket: str, key: str, data: bytes) -> str:
        self._set_object(bucket, key, data)
        return hashlib.md5(data).hexdigest()

    async def append(self, bucket: str, key: str, data: bytes) -> str:
        combined = self._objects.get((bucket, key), b"") + data
        self._set_object(bucket, key, combined)
        return hashlib.md5(combined).hexdigest()

    async def get(self, bucket: str, key: str) -> bytes:
        """Return the object's bytes.

        Raises:
            FileNotFoundError: If the object is not held, matching the local backend.
        """
        try:
            return self._objects[(bucket, key)]
        except KeyError:
            raise FileNotFoundError(f"{bucket}/{key}") from None

    async def get_stream(
        self, bucket: str, key: str, offset: int = 0, length: int | None = None
    ) -> AsyncIterator[bytes]:
        data = await self.get(bucket, key)
        end = len(data) if length is None else min(len(data), offset + length)
        pos = offset
        while pos < end:
            chunk_end = min(pos + _CHUNK_SIZE, end)
            yield data[pos:chunk_end]
            pos = chunk_end

    async def delete(self, bucket: str, key: str) -> None:
        old = self._objects.pop((bucket, key), None)
        if old is not None:
            self._current_size -= len(old)

    async def exists(self, bucket: str, key: str) -> bool:
        return (bucket, key) in self._objects

    async def put_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes
    ) -> str:
        old = self._parts.get((upload_id, part_number))
        delta = len(data) - (len(old) if old is not None else 0)
        self._check_capacity(delta)
        self._parts[(upload_id, part_number)] = data
        self._current_size += delta
        return hashlib.md5(data).hexdigest()

    async def assemble_parts(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_numbers: list[int],
    ) -> str:
        try:
            data = b"".join(self._parts[(upload_id, pn)] for pn in part_numbers)
        except KeyError as exc:
            raise MemoryStorageError(f"Missing part {exc.args[0]} for upload {upload_id}")
        return await self.put(bucket, key, data)

    async def delete_parts(self, bucket: str, key: str, upload_id: str) -> None:
        for part_key in [k for k in self._parts if k[0] == upload_id]:
            self._current_size -= len(self._parts.pop(part_key))

    async def copy_object(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
    ) -> str:
        data = await self.get(src_bucket, src_key)
        return await self.put(dst_bucket, dst_key, data)
