"""In-memory metadata store for osslite.

Useful for testing and ephemeral deployments. Data is lost on restart.
"""

from datetime import datetime, timezone
from typing import Any

from osslite.metadata.store import common_prefix_of


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


class MemoryMetadataStore:
    """In-memory metadata store using Python dicts.

    Every mutation is a single dict assignment or pop, so a concurrent
    reader on the event loop never sees a half-written record.
    """

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, Any]] = {}
        self._objects: dict[tuple[str, str], dict[str, Any]] = {}
        self._uploads: dict[str, dict[str, Any]] = {}
        self._parts: dict[str, dict[int, dict[str, Any]]] = {}
        self._credentials: dict[str, dict[str, Any]] = {}

    async def init_db(self) -> None:
        pass

    async def close(self) -> None:
        self._buckets.clear()
        self._objects.clear()
        self._uploads.clear()
        self._parts.clear()
        self._credentials.clear()

    # -- Buckets ---------------------------------------------------------------

    async def create_bucket(
        self,
        bucket: str,
        region: str = "oss-cn-hangzhou",
        owner_id: str = "",
        owner_display: str = "",
        acl: str = "private",
    ) -> None:
        if bucket in self._buckets:
            raise KeyError(f"Bucket already exists: {bucket}")
        self._buckets[bucket] = {
            "name": bucket,
            "region": region,
            "owner_id": owner_id,
            "owner_display": owner_display,
            "acl": acl,
            "created_at": _now_iso(),
        }

    async def bucket_exists(self, bucket: str) -> bool:
        return bucket in self._buckets

    async def delete_bucket(self, bucket: str) -> None:
        self._buckets.pop(bucket, None)
        for k in [k for k in self._objects if k[0] == bucket]:
            del self._objects[k]
        for upload_id in [u for u, up in self._uploads.items() if up["bucket"] == bucket]:
            self._uploads.pop(upload_id, None)
            self._parts.pop(upload_id, None)

    async def get_bucket(self, bucket: str) -> dict[str, Any] | None:
        return self._buckets.get(bucket)

    async def list_buckets(self, owner_id: str = "") -> list[dict[str, Any]]:
        buckets = list(self._buckets.values())
        if owner_id:
            buckets = [b for b in buckets if b["owner_id"] == owner_id]
        return sorted(buckets, key=lambda b: b["name"])

    async def update_bucket_acl(self, bucket: str, acl: str) -> None:
        if bucket in self._buckets:
            self._buckets[bucket]["acl"] = acl

    # -- Objects ---------------------------------------------------------------

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
        self._objects[(bucket, key)] = {
            "bucket": bucket,
            "key": key,
            "size": size,
            "etag": etag,
            "content_type": content_type,
            "object_type": object_type,
            "acl": acl,
            "user_metadata": user_metadata,
            "last_modified": _now_iso(),
        }

    async def object_exists(self, bucket: str, key: str) -> bool:
        return (bucket, key) in self._objects

    async def get_object(self, bucket: str, key: str) -> dict[str, Any] | None:
        obj = self._objects.get((bucket, key))
        return dict(obj) if obj is not None else None

    async def delete_object(self, bucket: str, key: str) -> None:
        self._objects.pop((bucket, key), None)

    async def update_object_acl(self, bucket: str, key: str, acl: str) -> bool:
        obj = self._objects.get((bucket, key))
        if obj is None:
            return False
        obj["acl"] = acl
        return True

    async def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        delimiter: str = "",
        max_keys: int = 100,
        marker: str = "",
    ) -> dict[str, Any]:
        objects = [obj for (b, _), obj in self._objects.items() if b == bucket]
        objects = sorted(objects, key=lambda o: o["key"])

        if prefix:
            objects = [o for o in objects if o["key"].startswith(prefix)]

        if marker:
            objects = [o for o in objects if o["key"] > marker]
            if common_prefix_of(marker, prefix, delimiter) == marker:
                objects = [o for o in objects if not o["key"].startswith(marker)]

        contents: list[dict[str, Any]] = []
        common_prefixes: list[str] = []
        seen_prefixes: set[str] = set()
        is_truncated = False

        for obj in objects:
            cp = common_prefix_of(obj["key"], prefix, delimiter)
            if cp is not None and cp in seen_prefixes:
                continue
            if len(contents) + len(common_prefixes) >= max_keys:
                is_truncated = True
                break
            if cp is not None:
                seen_prefixes.add(cp)
                common_prefixes.append(cp)
            else:
                contents.append(dict(obj))

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

    async def count_objects(self, bucket: str) -> int:
        return sum(1 for (b, _) in self._objects if b == bucket)

    # -- Multipart -------------------------------------------------------------

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
        self._uploads[upload_id] = {
            "upload_id": upload_id,
            "bucket": bucket,
            "key": key,
            "content_type": content_type,
            "acl": acl,
            "user_metadata": user_metadata,
            "owner_id": owner_id,
            "owner_display": owner_display,
            "initiated_at": _now_iso(),
        }
        self._parts.setdefault(upload_id, {})

    async def get_multipart_upload(
        self, bucket: str, key: str, upload_id: str
    ) -> dict[str, Any] | None:
        upload = self._uploads.get(upload_id)
        if upload and upload["bucket"] == bucket and upload["key"] == key:
            return upload
        return None

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
        await self.put_object(
            bucket=bucket,
            key=key,
            size=size,
            etag=etag,
            content_type=content_type,
            object_type="Multipart",
            acl=acl,
            user_metadata=user_metadata,
        )
        self._parts.pop(upload_id, None)
        self._uploads.pop(upload_id, None)

    async def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        self._parts.pop(upload_id, None)
        self._uploads.pop(upload_id, None)

    async def put_part(
        self,
        upload_id: str,
        part_number: int,
        size: int,
        etag: str,
    ) -> None:
        self._parts.setdefault(upload_id, {})[part_number] = {
            "upload_id": upload_id,
            "part_number": part_number,
            "size": size,
            "etag": etag,
            "last_modified": _now_iso(),
        }

    async def get_parts_for_completion(self, upload_id: str) -> list[dict[str, Any]]:
        parts = self._parts.get(upload_id, {})
        return sorted(parts.values(), key=lambda p: p["part_number"])

    async def list_parts(
        self,
        upload_id: str,
        part_number_marker: int = 0,
        max_parts: int = 1000,
    ) -> dict[str, Any]:
        all_parts = self._parts.get(upload_id, {})
        parts = [p for p in all_parts.values() if p["part_number"] > part_number_marker]
        parts = sorted(parts, key=lambda p: p["part_number"])[: max_parts + 1]

        result_parts = parts[:max_parts]
        is_truncated = len(parts) > max_parts
        next_marker = result_parts[-1]["part_number"] if is_truncated and result_parts else None

        return {
            "parts": result_parts,
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
        uploads = [u for u in self._uploads.values() if u["bucket"] == bucket]

        if prefix:
            uploads = [u for u in uploads if u["key"].startswith(prefix)]

        if key_marker:
            if upload_id_marker:
                uploads = [
                    u
                    for u in uploads
                    if u["key"] > key_marker
                    or (u["key"] == key_marker and u["upload_id"] > upload_id_marker)
                ]
            else:
                uploads = [u for u in uploads if u["key"] > key_marker]

        uploads = sorted(uploads, key=lambda u: (u["key"], u["initiated_at"]))

        result_uploads = uploads[:max_uploads]
        is_truncated = len(uploads) > max_uploads

        next_key_marker: str | None = None
        next_upload_id_marker: str | None = None
        if is_truncated and result_uploads:
            last = result_uploads[-1]
            next_key_marker = last["key"]
            next_upload_id_marker = last["upload_id"]

        return {
            "uploads": result_uploads,
            "is_truncated": is_truncated,
            "next_key_marker": next_key_marker,
            "next_upload_id_marker": next_upload_id_marker,
        }

    # -- Credentials -----------------------------------------------------------

    async def get_credential(self, access_key_id: str) -> dict[str, Any] | None:
        cred = self._credentials.get(access_key_id)
        if cred and cred.get("active", 1) == 1:
            return cred
        return None

    async def put_credential(
        self,
        access_key_id: str,
        secret_key: str,
        owner_id: str = "",
        display_name: str = "",
    ) -> None:
        self._credentials[access_key_id] = {
            "access_key_id": access_key_id,
            "secret_key": secret_key,
            "owner_id": owner_id,
            "display_name": display_name,
            "active": 1,
            "created_at": _now_iso(),
        }
