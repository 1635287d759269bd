"""Local filesystem storage backend for osslite.

Objects are stored under ``{root}/{bucket}/{key}``. Multipart parts are
stored under ``{root}/.parts/{upload_id}/{part_number}``.

Crash-only design:
    - Whole-object writes use the temp-fsync-rename pattern.
    - Appends write to the end of the file and fsync before returning.
    - Startup removes orphan ``.tmp.`` files left by interrupted writes.
"""

import hashlib
import logging
import os
import uuid
from collections.abc import AsyncIterator, Iterable
from pathlib import Path

from osslite.errors import InvalidObjectName

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB
_CHUNK_SIZE = 64 * 1024


def _atomic_write(path: Path, chunks: Iterable[bytes]) -> str:
    """Write chunks to ``path`` via a temp file, fsync, then rename.

    Returns:
        The hex-encoded MD5 of everything written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex[:8]}")
    md5 = hashlib.md5()
    try:
        fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
        try:
            for chunk in chunks:
                os.write(fd, chunk)
                md5.update(chunk)
            os.fsync(fd)
        finally:
            os.close(fd)
        tmp.rename(path)
    except Exception:
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove temp file %s", tmp, exc_info=True)
        raise
    return md5.hexdigest()


def _file_md5(path: Path) -> str:
    md5 = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            md5.update(chunk)
    return md5.hexdigest()


def _confined(base: Path, relative: str) -> Path:
    """Join ``relative`` onto ``base``, refusing paths that leave ``base``."""
    path = base / relative
    normalized = Path(os.path.normpath(path))
    if Path(os.path.normpath(base)) not in normalized.parents:
        raise InvalidObjectName("The specified object is not valid.")
    return path


class LocalStorageBackend:
    """Storage backend that persists objects on the local filesystem.

    Attributes:
        root: The root directory for all stored data.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _object_path(self, bucket: str, key: str) -> Path:
        return _confined(self.root / bucket, key)

    def _part_path(self, upload_id: str, part_number: int) -> Path:
        return _confined(self.root / ".parts", f"{upload_id}/{part_number}")

    async def init(self) -> None:
        """Create the root directory and clean up orphan temp files."""
        self.root.mkdir(parents=True, exist_ok=True)
        self._clean_temp_files()
        logger.info("Local storage backend initialized at %s", self.root)

    def _clean_temp_files(self) -> None:
        """Remove orphan temp files left by interrupted atomic writes."""
        count = 0
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for fname in filenames:
                if ".tmp." in fname:
                    try:
                        os.unlink(os.path.join(dirpath, fname))
                        count += 1
                    except OSError:
                        logger.warning("Could not remove orphan %s", fname, exc_info=True)
        if count > 0:
            logger.info("Cleaned %d orphan temp files on startup", count)

    async def close(self) -> None:
        """No-op for local filesystem backend."""
        pass

    async def put(self, bucket: str, key: str, data: bytes) -> str:
        """Store an object's bytes atomically.

        Never acknowledges before data is committed to disk.
        """
        return _atomic_write(self._object_path(bucket, key), [data])

    async def append(self, bucket: str, key: str, data: bytes) -> str:
        """Append bytes to an object file and fsync.

        Creates the file when absent. The returned digest covers the whole
        object, so the file is re-read after the write.
        """
        path = self._object_path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
        try:
            os.write(fd, data)
            os.fsync(fd)
        finally:
            os.close(fd)
        return _file_md5(path)

    async def get(self, bucket: str, key: str) -> bytes:
        """Retrieve an object's bytes.

        Raises:
            FileNotFoundError: If the object does not exist on disk.
        """
        return self._object_path(bucket, key).read_bytes()

    async def get_stream(
        self, bucket: str, key: str, offset: int = 0, length: int | None = None
    ) -> AsyncIterator[bytes]:
        """Yield 64 KB chunks from ``offset`` for ``length`` bytes (or to EOF)."""
        path = self._object_path(bucket, key)
        remaining = length

        with open(path, "rb") as f:
            if offset > 0:
                f.seek(offset)

            while True:
                if remaining is not None:
                    to_read = min(_CHUNK_SIZE, remaining)
                    if to_read <= 0:
                        break
                else:
                    to_read = _CHUNK_SIZE

                chunk = f.read(to_read)
                if not chunk:
                    break

                yield chunk

                if remaining is not None:
                    remaining -= len(chunk)

    async def delete(self, bucket: str, key: str) -> None:
        """Delete an object file, then prune empty parent directories.

        Missing files are ignored.
        """
        path = self._object_path(bucket, key)

        try:
            path.unlink()
        except FileNotFoundError:
            return

        bucket_dir = self.root / bucket
        parent = path.parent
        while parent != bucket_dir and parent != self.root:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    async def exists(self, bucket: str, key: str) -> bool:
        return self._object_path(bucket, key).is_file()

    async def put_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes
    ) -> str:
        return _atomic_write(self._part_path(upload_id, part_number), [data])

    async def assemble_parts(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_numbers: list[int],
    ) -> str:
        """Concatenate part files into the final object atomically."""
        chunks = (self._part_path(upload_id, pn).read_bytes() for pn in part_numbers)
        return _atomic_write(self._object_path(bucket, key), chunks)

    async def delete_parts(self, bucket: str, key: str, upload_id: str) -> None:
        """Remove the upload's part directory and everything in it."""
        parts_dir = _confined(self.root / ".parts", upload_id)
        if not parts_dir.exists():
            return

        for child in parts_dir.iterdir():
            try:
                child.unlink()
            except OSError:
                logger.warning("Could not remove part file %s", child, exc_info=True)

        try:
            parts_dir.rmdir()
        except OSError:
            logger.warning("Could not remove parts directory %s", parts_dir, exc_info=True)

    async def copy_object(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
    ) -> str:
        data = await self.get(src_bucket, src_key)
        return await self.put(dst_bucket, dst_key, data)
