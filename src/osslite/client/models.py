"""Request and result models for the osslite client SDK."""

from dataclasses import dataclass, field

from osslite.acl import ObjectPermission

USER_META_PREFIX = "x-oss-meta-"
OBJECT_ACL_HEADER = "x-oss-object-acl"


@dataclass
class ObjectMetadata:
    """Standard headers, user metadata and ACL directive of an object.

    ``object_acl`` is the directive sent on writes. None leaves the
    header off the request entirely, which is not the same as
    ``ObjectPermission.DEFAULT``.
    """

    content_type: str | None = None
    content_length: int | None = None
    etag: str | None = None
    last_modified: str | None = None
    object_type: str | None = None
    user_metadata: dict[str, str] = field(default_factory=dict)
    object_acl: ObjectPermission | None = None

    def add_user_metadata(self, key: str, value: str) -> None:
        self.user_metadata[key.lower()] = value

    def to_headers(self) -> dict[str, str]:
        """Render the writable fields as request headers."""
        headers: dict[str, str] = {}
        if self.content_type:
            headers["Content-Type"] = self.content_type
        for key, value in self.user_metadata.items():
            headers[f"{USER_META_PREFIX}{key}"] = value
        if self.object_acl is not None:
            headers[OBJECT_ACL_HEADER] = self.object_acl.value
        return headers

    @classmethod
    def from_headers(cls, headers) -> "ObjectMetadata":
        """Build metadata from GetObject / HeadObject response headers."""
        user_metadata = {}
        for name, value in headers.items():
            lower = name.lower()
            if lower.startswith(USER_META_PREFIX):
                user_metadata[lower[len(USER_META_PREFIX) :]] = value
        length = headers.get("content-length")
        return cls(
            content_type=headers.get("content-type"),
            content_length=int(length) if length is not None else None,
            etag=headers.get("etag"),
            last_modified=headers.get("last-modified"),
            object_type=headers.get("x-oss-object-type"),
            user_metadata=user_metadata,
        )


@dataclass
class Owner:
    id: str
    display_name: str


@dataclass
class Bucket:
    name: str
    location: str = ""
    creation_date: str = ""


@dataclass
class ObjectAcl:
    """The canned permission stored on an object."""

    owner: Owner
    permission: ObjectPermission


@dataclass
class BucketAcl:
    """The canned permission of a bucket."""

    owner: Owner
    permission: ObjectPermission


@dataclass
class OSSObject:
    """An object read back with GetObject."""

    bucket_name: str
    key: str
    metadata: ObjectMetadata
    content: bytes = b""


@dataclass
class PutObjectResult:
    etag: str
    request_id: str = ""


@dataclass
class AppendObjectRequest:
    """Append ``content`` at ``position``; 0 creates the object.

    ``metadata`` (and its ``object_acl``) only takes effect where the
    service honours it: all fields on the first append, the ACL on any.
    """

    bucket_name: str
    key: str
    content: bytes
    position: int = 0
    metadata: ObjectMetadata | None = None


@dataclass
class AppendObjectResult:
    next_position: int | None
    etag: str
    request_id: str = ""


@dataclass
class CopyObjectRequest:
    """Copy one object onto another.

    With ``new_object_metadata`` set the copy replaces the content type
    and user metadata (REPLACE); otherwise they are copied from the
    source. The ACL directive always comes from ``new_object_metadata``.
    """

    source_bucket_name: str
    source_key: str
    destination_bucket_name: str
    destination_key: str
    new_object_metadata: ObjectMetadata | None = None


@dataclass
class CopyObjectResult:
    etag: str
    last_modified: str = ""


@dataclass
class ObjectSummary:
    key: str
    etag: str
    size: int
    last_modified: str
    object_type: str = "Normal"


@dataclass
class ObjectListing:
    bucket_name: str
    prefix: str = ""
    marker: str = ""
    delimiter: str = ""
    max_keys: int = 100
    is_truncated: bool = False
    next_marker: str | None = None
    object_summaries: list[ObjectSummary] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)


@dataclass
class InitiateMultipartUploadResult:
    bucket_name: str
    key: str
    upload_id: str


@dataclass
class PartETag:
    part_number: int
    etag: str


@dataclass
class UploadPartRequest:
    bucket_name: str
    key: str
    upload_id: str
    part_number: int
    content: bytes


@dataclass
class UploadPartResult:
    part_number: int
    etag: str

    @property
    def part_etag(self) -> PartETag:
        return PartETag(self.part_number, self.etag)


@dataclass
class CompleteMultipartUploadRequest:
    """Complete an upload from its part ETags.

    ``object_acl`` overrides the directive given at initiation; None
    leaves it in place.
    """

    bucket_name: str
    key: str
    upload_id: str
    part_etags: list[PartETag]
    object_acl: ObjectPermission | None = None


@dataclass
class CompleteMultipartUploadResult:
    location: str
    bucket_name: str
    key: str
    etag: str


@dataclass
class PartSummary:
    part_number: int
    etag: str
    size: int
    last_modified: str = ""


@dataclass
class PartListing:
    bucket_name: str
    key: str
    upload_id: str
    parts: list[PartSummary] = field(default_factory=list)
    is_truncated: bool = False
    next_part_number_marker: int | None = None
