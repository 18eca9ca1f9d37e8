"""Object store error types.

Every engine failure is a StorageError carrying one ErrorKind. The kind value
is the S3 error code, so transport layers can render it directly.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    BUCKET_ALREADY_EXISTS = "BucketAlreadyExists"
    NO_SUCH_BUCKET = "NoSuchBucket"
    BUCKET_NOT_EMPTY = "BucketNotEmpty"
    NO_SUCH_KEY = "NoSuchKey"
    INVALID_BUCKET_NAME = "InvalidBucketName"
    INVALID_ARGUMENT = "InvalidArgument"
    KEY_CONFLICT = "KeyConflict"
    INTERNAL_ERROR = "InternalError"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def default_message(self) -> str:
        return _MESSAGES[self]


_STATUS_CODES = {
    ErrorKind.BUCKET_ALREADY_EXISTS: 409,
    ErrorKind.NO_SUCH_BUCKET: 404,
    ErrorKind.BUCKET_NOT_EMPTY: 409,
    ErrorKind.NO_SUCH_KEY: 404,
    ErrorKind.INVALID_BUCKET_NAME: 400,
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.KEY_CONFLICT: 409,
    ErrorKind.INTERNAL_ERROR: 500,
}

_MESSAGES = {
    ErrorKind.BUCKET_ALREADY_EXISTS: "The requested bucket name already exists",
    ErrorKind.NO_SUCH_BUCKET: "The specified bucket does not exist",
    ErrorKind.BUCKET_NOT_EMPTY: "The bucket you tried to delete is not empty",
    ErrorKind.NO_SUCH_KEY: "The specified key does not exist.",
    ErrorKind.INVALID_BUCKET_NAME: "The specified bucket is not valid.",
    ErrorKind.INVALID_ARGUMENT: "Invalid argument",
    ErrorKind.KEY_CONFLICT: "The key conflicts with an existing object or key prefix",
    ErrorKind.INTERNAL_ERROR: "We encountered an internal error. Please try again.",
}


class StorageError(Exception):
    """Base exception for object store operations.

    Attributes:
        kind: The ErrorKind of this failure.
        message: Human-readable error message.
        bucket: Bucket associated with the operation (if applicable).
        key: Object key associated with the operation (if applicable).
    """

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(
        self,
        message: str | None = None,
        *,
        bucket: str | None = None,
        key: str | None = None,
    ) -> None:
        self.message = message or self.kind.default_message
        super().__init__(self.message)
        self.bucket = bucket
        self.key = key

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def resource(self) -> str:
        """Path-style resource the error refers to, e.g. ``/bucket/key``."""
        if self.bucket is None:
            return "/"
        if self.key is None:
            return f"/{self.bucket}"
        return f"/{self.bucket}/{self.key}"

    def __str__(self) -> str:
        parts = [f"{self.code}: {self.message}"]
        if self.bucket:
            parts.append(f"bucket={self.bucket}")
        if self.key:
            parts.append(f"key={self.key}")
        return " ".join(parts)


class BucketAlreadyExists(StorageError):
    kind = ErrorKind.BUCKET_ALREADY_EXISTS


class NoSuchBucket(StorageError):
    kind = ErrorKind.NO_SUCH_BUCKET


class BucketNotEmpty(StorageError):
    """Raised when deleting a bucket directory that still has any entry.

    Stray metadata side-files count as contents.
    """

    kind = ErrorKind.BUCKET_NOT_EMPTY


class NoSuchKey(StorageError):
    """Raised when the object file is absent.

    A missing bucket is reported the same way for object reads.
    """

    kind = ErrorKind.NO_SUCH_KEY


class InvalidBucketName(StorageError):
    kind = ErrorKind.INVALID_BUCKET_NAME


class InvalidArgument(StorageError):
    """Raised for keys that cannot be mapped safely onto the filesystem.

    Covers empty keys, ``.``/``..`` or empty segments, backslashes, NUL bytes,
    the reserved side-record suffix, and paths resolving outside the root.
    """

    kind = ErrorKind.INVALID_ARGUMENT


class KeyConflict(StorageError):
    """Raised when a key would need a path that is both a file and a directory.

    For example ``a`` and ``a/b`` cannot coexist in one bucket.
    """

    kind = ErrorKind.KEY_CONFLICT


class StorageBackendError(StorageError):
    """Raised when the filesystem itself fails (disk full, permission denied).

    Attributes:
        cause: The underlying OSError, also chained as ``__cause__``.
    """

    kind = ErrorKind.INTERNAL_ERROR

    def __init__(
        self,
        message: str | None = None,
        *,
        bucket: str | None = None,
        key: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, bucket=bucket, key=key)
        self.cause = cause
