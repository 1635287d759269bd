"""Async client SDK for osslite."""

from osslite.client.client import OSSClient, error_from_response
from osslite.client.models import (
    AppendObjectRequest,
    AppendObjectResult,
    Bucket,
    BucketAcl,
    CompleteMultipartUploadRequest,
    CompleteMultipartUploadResult,
    CopyObjectRequest,
    CopyObjectResult,
    InitiateMultipartUploadResult,
    ObjectAcl,
    ObjectListing,
    ObjectMetadata,
    ObjectSummary,
    OSSObject,
    Owner,
    PartETag,
    PartListing,
    PartSummary,
    PutObjectResult,
    UploadPartRequest,
    UploadPartResult,
)

__all__ = [
    "AppendObjectRequest",
    "AppendObjectResult",
    "Bucket",
    "BucketAcl",
    "CompleteMultipartUploadRequest",
    "CompleteMultipartUploadResult",
    "CopyObjectRequest",
    "CopyObjectResult",
    "error_from_response",
    "InitiateMultipartUploadResult",
    "ObjectAcl",
    "ObjectListing",
    "ObjectMetadata",
    "ObjectSummary",
    "OSSClient",
    "OSSObject",
    "Owner",
    "PartETag",
    "PartListing",
    "PartSummary",
    "PutObjectResult",
    "UploadPartRequest",
    "UploadPartResult",
]
