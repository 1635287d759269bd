"""OSS-compatible error definitions for osslite.

The same ``OSSError`` type is raised by the service handlers (and
rendered as XML) and by the client SDK (parsed back from XML), so callers
on either side inspect ``code`` the same way.
"""


class ErrorCode:
    """Machine-readable error codes returned in ``<Code>`` elements."""

    ACCESS_DENIED = "AccessDenied"
    BUCKET_ALREADY_EXISTS = "BucketAlreadyExists"
    BUCKET_NOT_EMPTY = "BucketNotEmpty"
    ENTITY_TOO_SMALL = "EntityTooSmall"
    INTERNAL_ERROR = "InternalError"
    INVALID_ACCESS_KEY_ID = "InvalidAccessKeyId"
    INVALID_ARGUMENT = "InvalidArgument"
    INVALID_BUCKET_NAME = "InvalidBucketName"
    INVALID_OBJECT_NAME = "InvalidObjectName"
    INVALID_PART = "InvalidPart"
    INVALID_PART_ORDER = "InvalidPartOrder"
    INVALID_RANGE = "InvalidRange"
    MALFORMED_XML = "MalformedXML"
    NO_SUCH_BUCKET = "NoSuchBucket"
    NO_SUCH_KEY = "NoSuchKey"
    NO_SUCH_UPLOAD = "NoSuchUpload"
    NOT_IMPLEMENTED = "NotImplemented"
    OBJECT_NOT_APPENDABLE = "ObjectNotAppendable"
    POSITION_NOT_EQUAL_TO_LENGTH = "PositionNotEqualToLength"
    REQUEST_TIME_TOO_SKEWED = "RequestTimeTooSkewed"
    SIGNATURE_DOES_NOT_MATCH = "SignatureDoesNotMatch"


class OSSError(Exception):
    """An OSS-compatible error with code, message, and HTTP status.

    Attributes:
        code: The error code string (e.g. "NoSuchKey", "AccessDenied").
        message: Human-readable error description.
        http_status: The HTTP status code to return.
        extra_fields: Additional key-value pairs to include in the XML error response.
        request_id: The request id the error was reported under, when known.
        headers: Extra response headers to send with the error.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        extra_fields: dict[str, str] | None = None,
        request_id: str = "",
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the OSS error.

        Args:
            code: Error code.
            message: Error description.
            http_status: HTTP status code (default 400).
            extra_fields: Optional extra XML fields.
            request_id: Optional request id.
            headers: Optional extra response headers.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra_fields = extra_fields or {}
        self.request_id = request_id
        self.headers = headers or {}

    def __str__(self) -> str:
        return f"{self.message} [Code: {self.code}, RequestId: {self.request_id}]"


# -- Common pre-defined errors ------------------------------------------------


class AccessDenied(OSSError):
    """Access denied error."""

    def __init__(self, message: str = "You have no right to access this object.") -> None:
        super().__init__(code=ErrorCode.ACCESS_DENIED, message=message, http_status=403)


class NoSuchBucket(OSSError):
    """The specified bucket does not exist."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code=ErrorCode.NO_SUCH_BUCKET,
            message="The specified bucket does not exist.",
            http_status=404,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class NoSuchKey(OSSError):
    """The specified key does not exist."""

    def __init__(self, key: str = "") -> None:
        super().__init__(
            code=ErrorCode.NO_SUCH_KEY,
            message="The specified key does not exist.",
            http_status=404,
            extra_fields={"Key": key} if key else {},
        )


class BucketAlreadyExists(OSSError):
    """The requested bucket name is already in use."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code=ErrorCode.BUCKET_ALREADY_EXISTS,
            message="The requested bucket name is not available.",
            http_status=409,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class BucketNotEmpty(OSSError):
    """The bucket is not empty and cannot be deleted."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code=ErrorCode.BUCKET_NOT_EMPTY,
            message="The bucket you tried to delete is not empty.",
            http_status=409,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class InvalidArgument(OSSError):
    """An invalid argument was provided."""

    def __init__(self, message: str = "Invalid Argument") -> None:
        super().__init__(code=ErrorCode.INVALID_ARGUMENT, message=message, http_status=400)


class NoSuchUpload(OSSError):
    """The specified multipart upload does not exist."""

    def __init__(self, upload_id: str = "") -> None:
        super().__init__(
            code=ErrorCode.NO_SUCH_UPLOAD,
            message="The specified upload does not exist.",
            http_status=404,
            extra_fields={"UploadId": upload_id} if upload_id else {},
        )


class InternalError(OSSError):
    """An internal server error occurred."""

    def __init__(self, message: str = "Internal Error") -> None:
        super().__init__(code=ErrorCode.INTERNAL_ERROR, message=message, http_status=500)


class InvalidBucketName(OSSError):
    """The specified bucket name is not valid."""

    def __init__(self, bucket: str = "") -> None:
        super().__init__(
            code=ErrorCode.INVALID_BUCKET_NAME,
            message="The specified bucket is not valid.",
            http_status=400,
            extra_fields={"BucketName": bucket} if bucket else {},
        )


class InvalidObjectName(OSSError):
    """The specified object key is not valid."""

    def __init__(self, message: str = "The specified object is not valid.") -> None:
        super().__init__(code=ErrorCode.INVALID_OBJECT_NAME, message=message, http_status=400)


class InvalidPart(OSSError):
    """One or more of the specified parts could not be found."""

    def __init__(
        self, message: str = "One or more of the specified parts could not be found."
    ) -> None:
        super().__init__(code=ErrorCode.INVALID_PART, message=message, http_status=400)


class InvalidPartOrder(OSSError):
    """The list of parts was not in ascending order."""

    def __init__(self, message: str = "The list of parts was not in ascending order.") -> None:
        super().__init__(code=ErrorCode.INVALID_PART_ORDER, message=message, http_status=400)


class InvalidRange(OSSError):
    """The requested range is not satisfiable."""

    def __init__(self, message: str = "The requested range is not satisfiable.") -> None:
        super().__init__(code=ErrorCode.INVALID_RANGE, message=message, http_status=416)


class EntityTooSmall(OSSError):
    """The proposed upload is smaller than the minimum allowed part size."""

    def __init__(
        self, message: str = "Your proposed upload is smaller than the minimum allowed size."
    ) -> None:
        super().__init__(code=ErrorCode.ENTITY_TOO_SMALL, message=message, http_status=400)


class SignatureDoesNotMatch(OSSError):
    """The request signature does not match."""

    def __init__(
        self,
        message: str = "The request signature we calculated does not match the signature you provided.",
    ) -> None:
        super().__init__(code=ErrorCode.SIGNATURE_DOES_NOT_MATCH, message=message, http_status=403)


class MalformedXML(OSSError):
    """The XML provided was not well-formed."""

    def __init__(self, message: str = "The XML you provided was not well-formed.") -> None:
        super().__init__(code=ErrorCode.MALFORMED_XML, message=message, http_status=400)


class InvalidAccessKeyId(OSSError):
    """The access key id does not exist in our records."""

    def __init__(
        self, message: str = "The OSS Access Key Id you provided does not exist in our records."
    ) -> None:
        super().__init__(code=ErrorCode.INVALID_ACCESS_KEY_ID, message=message, http_status=403)


class RequestTimeTooSkewed(OSSError):
    """The difference between the request time and the server's time is too large."""

    def __init__(
        self,
        message: str = "The difference between the request time and the current time is too large.",
    ) -> None:
        super().__init__(code=ErrorCode.REQUEST_TIME_TOO_SKEWED, message=message, http_status=403)


class ObjectNotAppendable(OSSError):
    """Append was attempted on an object that was not created by append."""

    def __init__(self, message: str = "The object is not appendable") -> None:
        super().__init__(code=ErrorCode.OBJECT_NOT_APPENDABLE, message=message, http_status=409)


class PositionNotEqualToLength(OSSError):
    """The append position does not match the current object length."""

    def __init__(self, current_length: int) -> None:
        super().__init__(
            code=ErrorCode.POSITION_NOT_EQUAL_TO_LENGTH,
            message="Position is not equal to file length",
            http_status=409,
            headers={"x-oss-next-append-position": str(current_length)},
        )


class NotImplementedOSSError(OSSError):
    """The requested functionality is not implemented."""

    def __init__(
        self, message: str = "A header you provided implies functionality that is not implemented."
    ) -> None:
        super().__init__(code=ErrorCode.NOT_IMPLEMENTED, message=message, http_status=501)
