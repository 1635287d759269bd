"""SQLite-backed metadata store for osslite.

Implements the MetadataStore protocol using aiosqlite for async access.
All tables use CREATE TABLE IF NOT EXISTS for schema idempotency. ACLs
are stored as canned wire names; user_metadata is stored as JSON text.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from osslite.metadata.store import common_prefix_of

logger = logging.getLogger(__name__)

_OBJECT_COLUMNS = (
    "bucket, key, size, etag, content_type, object_type, acl, user_metadata, last_modified"
)
_UPLOAD_COLUMNS = (
    "upload_id, bucket, key, content_type, acl, user_metadata, owner_id, owner_display,"
    " initiated_at"
)


def _now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


class SQLiteMetadataStore:
    """Metadata store backed by a local SQLite database.

    Attributes:
        db_path: Path to the SQLite database file.
        _db: The aiosqlite connection, set after init_db().
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the SQLite metadata store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Use ':memory:' for an in-memory database (useful in tests).
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def init_db(self) -> None:
        """Open the database and create tables if they do not exist.

        Sets WAL journal mode, NORMAL synchronous, enables foreign keys,
        and sets a 5-second busy timeout. Idempotent.
        """
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA synchronous = NORMAL")
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute("PRAGMA busy_timeout = 5000")

        await self._create_tables()

    async def _create_tables(self) -> None:
        """Create all tables and indexes if they do not already exist.

        Checks sqlite_master first to skip DDL on warm starts.
        """
        assert self._db is not None

        async with self._db.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name='schema_version'"
        ) as cursor:
            if await cursor.fetchone() is not None:
                return

        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS buckets (
                name           TEXT PRIMARY KEY,
                region         TEXT NOT NULL DEFAULT 'oss-cn-hangzhou',
                owner_id       TEXT NOT NULL DEFAULT '',
                owner_display  TEXT NOT NULL DEFAULT '',
                acl            TEXT NOT NULL DEFAULT 'private',
                created_at     TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS objects (
                bucket         TEXT NOT NULL,
                key            TEXT NOT NULL,
                size           INTEGER NOT NULL,
                etag           TEXT NOT NULL,
                content_type   TEXT NOT NULL DEFAULT 'application/octet-stream',
                object_type    TEXT NOT NULL DEFAULT 'Normal',
                acl            TEXT NOT NULL DEFAULT 'default',
                user_metadata  TEXT NOT NULL DEFAULT '{}',
                last_modified  TEXT NOT NULL,

                PRIMARY KEY (bucket, key),
                FOREIGN KEY (bucket) REFERENCES buckets(name) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_objects_bucket
                ON objects(bucket);

            CREATE TABLE IF NOT EXISTS multipart_uploads (
                upload_id      TEXT PRIMARY KEY,
                bucket         TEXT NOT NULL,
                key            TEXT NOT NULL,
                content_type   TEXT NOT NULL DEFAULT 'application/octet-stream',
                acl            TEXT,
                user_metadata  TEXT NOT NULL DEFAULT '{}',
                owner_id       TEXT NOT NULL DEFAULT '',
                owner_display  TEXT NOT NULL DEFAULT '',
                initiated_at   TEXT NOT NULL,

                FOREIGN KEY (bucket) REFERENCES buckets(name) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_uploads_bucket_key
                ON multipart_uploads(bucket, key);

            CREATE TABLE IF NOT EXISTS multipart_parts (
                upload_id      TEXT NOT NULL,
                part_number    INTEGER NOT NULL,
                size           INTEGER NOT NULL,
                etag           TEXT NOT NULL,
                last_modified  TEXT NOT NULL,

                PRIMARY KEY (upload_id, part_number),
                FOREIGN KEY (upload_id) REFERENCES multipart_uploads(upload_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS credentials (
                access_key_id  TEXT PRIMARY KEY,
                secret_key     TEXT NOT NULL,
                owner_id       TEXT NOT NULL DEFAULT '',
                display_name   TEXT NOT NULL DEFAULT '',
                active         INTEGER NOT NULL DEFAULT 1,
                created_at     TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS schema_version (
                version    INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            );
        """)

        async with self._db.execute(
            "SELECT version FROM schema_version WHERE version = 1"
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                await self._db.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (1, ?)",
                    (_now_iso(),),
                )

        await self._db.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

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

        Raises:
            aiosqlite.IntegrityError: If the bucket already exists.
        """
        assert self._db is not None
        await self._db.execute(
            """INSERT INTO buckets (name, region, owner_id, owner_display, acl, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (bucket, region, owner_id, owner_display, acl, _now_iso()),
        )
        await self._db.commit()

    async def bucket_exists(self, bucket: str) -> bool:
        assert self._db is not None
        async with self._db.execute("SELECT 1 FROM buckets WHERE name = ?", (bucket,)) as cursor:
            row = await cursor.fetchone()
            return row is not None

    async def delete_bucket(self, bucket: str) -> None:
        assert self._db is not None
        await self._db.execute("DELETE FROM buckets WHERE name = ?", (bucket,))
        await self._db.commit()

    async def get_bucket(self, bucket: str) -> dict[str, Any] | None:
        assert self._db is not None
        async with self._db.execute(
            "SELECT name, region, owner_id, owner_display, acl, created_at "
            "FROM buckets WHERE name = ?",
            (bucket,),
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return dict(row)

    async def list_buckets(self, owner_id: str = "") -> list[dict[str, Any]]:
        assert self._db is not None
        if owner_id:
            sql = (
                "SELECT name, region, owner_id, owner_display, acl, created_at "
                "FROM buckets WHERE owner_id = ? ORDER BY name"
            )
            params: tuple = (owner_id,)
        else:
            sql = (
                "SELECT name, region, owner_id, owner_display, acl, created_at "
                "FROM buckets ORDER BY name"
            )
            params = ()
        async with self._db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]

    async def update_bucket_acl(self, bucket: str, acl: str) -> None:
        assert self._db is not None
        await self._db.execute("UPDATE buckets SET acl = ? WHERE name = ?", (acl, bucket))
        await self._db.commit()

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
        """Create or replace an object metadata record.

        Uses INSERT OR REPLACE to handle both create and overwrite.
        """
        assert self._db is not None
        try:
            await self._db.execute(
                f"INSERT OR REPLACE INTO objects ({_OBJECT_COLUMNS})"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    bucket,
                    key,
                    size,
                    etag,
                    content_type,
                    object_type,
                    acl,
                    user_metadata,
                    _now_iso(),
                ),
            )
            await self._db.commit()
        except aiosqlite.OperationalError:
            logger.exception("SQLite error in put_object %s/%s", bucket, key)
            raise

    async def object_exists(self, bucket: str, key: str) -> bool:
        assert self._db is not None
        async with self._db.execute(
            "SELECT 1 FROM objects WHERE bucket = ? AND key = ?", (bucket, key)
        ) as cursor:
            row = await cursor.fetchone()
            return row is not None

    async def get_object(self, bucket: str, key: str) -> dict[str, Any] | None:
        assert self._db is not None
        async with self._db.execute(
            f"SELECT {_OBJECT_COLUMNS} FROM objects WHERE bucket = ? AND key = ?",
            (bucket, key),
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return dict(row)

    async def delete_object(self, bucket: str, key: str) -> None:
        assert self._db is not None
        await self._db.execute("DELETE FROM objects WHERE bucket = ? AND key = ?", (bucket, key))
        await self._db.commit()

    async def update_object_acl(self, bucket: str, key: str, acl: str) -> bool:
        """Replace the stored ACL of an object with one UPDATE statement.

        Returns:
            True if a row was updated, False if the object does not exist.
        """
        assert self._db is not None
        cursor = await self._db.execute(
            "UPDATE objects SET acl = ? WHERE bucket = ? AND key = ?",
            (acl, bucket, key),
        )
        updated = cursor.rowcount
        await cursor.close()
        await self._db.commit()
        return updated > 0

    async def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        delimiter: str = "",
        max_keys: int = 100,
        marker: str = "",
    ) -> dict[str, Any]:
        """List objects in a bucket with optional filtering and pagination.

        CommonPrefixes grouping happens in Python. Rows are read in batches
        until the page is full and one more row that would add an entry is
        found, so a large group under one prefix never cuts a page short.
        A marker that is itself a common prefix skips the whole group.
        """
        assert self._db is not None

        skip_prefix = ""
        if marker and common_prefix_of(marker, prefix, delimiter) == marker:
            skip_prefix = marker
        batch_size = max_keys * 3 + 100 if delimiter else max_keys + 1

        contents: list[dict[str, Any]] = []
        common_prefixes: list[str] = []
        seen_prefixes: set[str] = set()
        is_truncated = False
        after = marker

        while not is_truncated:
            rows = await self._fetch_object_rows(bucket, prefix, after, skip_prefix, batch_size)
            for row in rows:
                row_key: str = row["key"]
                cp = common_prefix_of(row_key, prefix, delimiter)
                if cp is not None and cp in seen_prefixes:
                    continue
                if len(contents) + len(common_prefixes) >= max_keys:
                    is_truncated = True
                    break
                if cp is not None:
                    seen_prefixes.add(cp)
                    common_prefixes.append(cp)
                else:
                    contents.append(dict(row))
            if len(rows) < batch_size:
                break
            after = rows[-1]["key"]

        next_marker: str | None = None
        if is_truncated:
            if contents and (not common_prefixes or contents[-1]["key"] > common_prefixes[-1]):
                next_marker = contents[-1]["key"]
            elif common_prefixes:
                next_marker = common_prefixes[-1]

        return {
            "contents": contents,
            "common_prefixes": sorted(common_prefixes),
            "is_truncated": is_truncated,
            "next_marker": next_marker,
        }

    async def _fetch_object_rows(
        self, bucket: str, prefix: str, after: str, skip_prefix: str, limit: int
    ) -> list[aiosqlite.Row]:
        assert self._db is not None

        sql_parts = [f"SELECT {_OBJECT_COLUMNS} FROM objects WHERE bucket = ?"]
        params: list[Any] = [bucket]

        if prefix:
            sql_parts.append("AND substr(key, 1, ?) = ?")
            params.extend([len(prefix), prefix])

        if after:
            sql_parts.append("AND key > ?")
            params.append(after)

        if skip_prefix:
            sql_parts.append("AND substr(key, 1, ?) != ?")
            params.extend([len(skip_prefix), skip_prefix])

        sql_parts.append(f"ORDER BY key LIMIT {limit}")

        async with self._db.execute(" ".join(sql_parts), tuple(params)) as cursor:
            return list(await cursor.fetchall())

    async def count_objects(self, bucket: str) -> int:
        assert self._db is not None
        async with self._db.execute(
            "SELECT COUNT(*) FROM objects WHERE bucket = ?", (bucket,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

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

        ``acl`` is stored as NULL when the initiate request carried no
        directive, so completion can tell "omitted" from "default".
        """
        assert self._db is not None
        await self._db.execute(
            f"INSERT INTO multipart_uploads ({_UPLOAD_COLUMNS})"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                upload_id,
                bucket,
                key,
                content_type,
                acl,
                user_metadata,
                owner_id,
                owner_display,
                _now_iso(),
            ),
        )
        await self._db.commit()

    async def get_multipart_upload(
        self, bucket: str, key: str, upload_id: str
    ) -> dict[str, Any] | None:
        assert self._db is not None
        async with self._db.execute(
            f"SELECT {_UPLOAD_COLUMNS} FROM multipart_uploads"
            " WHERE upload_id = ? AND bucket = ? AND key = ?",
            (upload_id, bucket, key),
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return dict(row)

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

        In a single transaction: inserts the final object record, deletes
        the upload parts, and deletes the upload record.
        """
        assert self._db is not None
        now = _now_iso()

        await self._db.execute("BEGIN")
        try:
            await self._db.execute(
                f"INSERT OR REPLACE INTO objects ({_OBJECT_COLUMNS})"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    bucket,
                    key,
                    size,
                    etag,
                    content_type,
                    "Multipart",
                    acl,
                    user_metadata,
                    now,
                ),
            )
            await self._db.execute("DELETE FROM multipart_parts WHERE upload_id = ?", (upload_id,))
            await self._db.execute(
                "DELETE FROM multipart_uploads WHERE upload_id = ?", (upload_id,)
            )
            await self._db.execute("COMMIT")
        except Exception:
            await self._db.execute("ROLLBACK")
            raise

    async def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        assert self._db is not None
        await self._db.execute("DELETE FROM multipart_parts WHERE upload_id = ?", (upload_id,))
        await self._db.execute("DELETE FROM multipart_uploads WHERE upload_id = ?", (upload_id,))
        await self._db.commit()

    async def put_part(
        self,
        upload_id: str,
        part_number: int,
        size: int,
        etag: str,
    ) -> None:
        """Record an uploaded part; re-uploading a part number replaces it."""
        assert self._db is not None
        await self._db.execute(
            """INSERT OR REPLACE INTO multipart_parts
               (upload_id, part_number, size, etag, last_modified)
               VALUES (?, ?, ?, ?, ?)""",
            (upload_id, part_number, size, etag, _now_iso()),
        )
        await self._db.commit()

    async def get_parts_for_completion(self, upload_id: str) -> list[dict[str, Any]]:
        assert self._db is not None
        async with self._db.execute(
            """SELECT upload_id, part_number, size, etag, last_modified
               FROM multipart_parts
               WHERE upload_id = ?
               ORDER BY part_number""",
            (upload_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]

    async def list_parts(
        self,
        upload_id: str,
        part_number_marker: int = 0,
        max_parts: int = 1000,
    ) -> dict[str, Any]:
        assert self._db is not None
        async with self._db.execute(
            """SELECT part_number, size, etag, last_modified
               FROM multipart_parts
               WHERE upload_id = ? AND part_number > ?
               ORDER BY part_number
               LIMIT ?""",
            (upload_id, part_number_marker, max_parts + 1),
        ) as cursor:
            rows = await cursor.fetchall()

        parts = [dict(r) for r in rows[:max_parts]]
        is_truncated = len(rows) > max_parts
        next_marker = parts[-1]["part_number"] if is_truncated and parts else None

        return {
            "parts": parts,
            "is_truncated": is_truncated,
            "next_part_number_marker": next_marker,
        }

    async def list_multipart_uploads(
        self,
        bucket: str,
        prefix: str = "",
        max_uploads: int = 1000,
        key_marker: str = "",
        upload_id_marker: str = "",
    ) -> dict[str, Any]:
        assert self._db is not None

        sql_parts = [f"SELECT {_UPLOAD_COLUMNS} FROM multipart_uploads WHERE bucket = ?"]
        params: list[Any] = [bucket]

        if prefix:
            sql_parts.append("AND substr(key, 1, ?) = ?")
            params.extend([len(prefix), prefix])

        if key_marker:
            if upload_id_marker:
                sql_parts.append("AND (key > ? OR (key = ? AND upload_id > ?))")
                params.extend([key_marker, key_marker, upload_id_marker])
            else:
                sql_parts.append("AND key > ?")
                params.append(key_marker)

        sql_parts.append("ORDER BY key, initiated_at")
        sql_parts.append(f"LIMIT {max_uploads + 1}")

        async with self._db.execute(" ".join(sql_parts), tuple(params)) as cursor:
            rows = await cursor.fetchall()

        uploads = [dict(r) for r in rows[:max_uploads]]
        is_truncated = len(rows) > max_uploads

        next_key_marker: str | None = None
        next_upload_id_marker: str | None = None
        if is_truncated and uploads:
            next_key_marker = uploads[-1]["key"]
            next_upload_id_marker = uploads[-1]["upload_id"]

        return {
            "uploads": uploads,
            "is_truncated": is_truncated,
            "next_key_marker": next_key_marker,
            "next_upload_id_marker": next_upload_id_marker,
        }

    # -- Credential operations -------------------------------------------------

    async def get_credential(self, access_key_id: str) -> dict[str, Any] | None:
        """Retrieve a credential by access key ID (active credentials only)."""
        assert self._db is not None
        async with self._db.execute(
            """SELECT access_key_id, secret_key, owner_id, display_name,
                      active, created_at
               FROM credentials
               WHERE access_key_id = ? AND active = 1""",
            (access_key_id,),
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return dict(row)

    async def put_credential(
        self,
        access_key_id: str,
        secret_key: str,
        owner_id: str = "",
        display_name: str = "",
    ) -> None:
        assert self._db is not None
        await self._db.execute(
            """INSERT OR REPLACE INTO credentials
               (access_key_id, secret_key, owner_id, display_name, active, created_at)
               VALUES (?, ?, ?, ?, 1, ?)""",
            (access_key_id, secret_key, owner_id, display_name, _now_iso()),
        )
        await self._db.commit()
