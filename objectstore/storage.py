"""Filesystem-backed object storage engine.

Buckets are directories directly under the storage root and object keys map
onto nested paths below them:

    {root}/.{bucket}.bucket.json           # {"name", "creationDate"}
    {root}/{bucket}/{key}                  # raw object bytes
    {root}/{bucket}/{key}.metadata.json    # {"contentType", "uploadDate"}

ETags are the hex MD5 of the object content and are recomputed on every
access. Nothing is cached in memory; every call reads the disk.
"""

from __future__ import annotations

import errno
import hashlib
import json
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import structlog

from objectstore.errors import (
    BucketAlreadyExists,
    BucketNotEmpty,
    InvalidArgument,
    InvalidBucketName,
    KeyConflict,
    NoSuchBucket,
    NoSuchKey,
    StorageBackendError,
)
from objectstore.models import (
    DEFAULT_CONTENT_TYPE,
    Bucket,
    ListObjectsResult,
    ObjectData,
    ObjectHead,
    ObjectMetadata,
    ObjectSummary,
    PutObjectResult,
)

logger = structlog.get_logger()

METADATA_SUFFIX = ".metadata.json"
UPLOAD_SUFFIX = ".upload.tmp"
BUCKET_RECORD_SUFFIX = ".bucket.json"
DEFAULT_MAX_KEYS = 1000

# Files with these suffixes are engine bookkeeping, never objects
_RESERVED_SUFFIXES = (METADATA_SUFFIX, UPLOAD_SUFFIX)

_BUCKET_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


def calculate_etag(path: Path) -> str:
    hash_md5 = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            hash_md5.update(chunk)
    return hash_md5.hexdigest()


def is_valid_bucket_name(name: str) -> bool:
    # a leading dot is reserved for bucket records in the root
    return bool(_BUCKET_NAME_PATTERN.match(name)) and not name.startswith(".")


def _key_problem(key: str) -> str | None:
    """Return why a key cannot be mapped onto a path, or None if it can."""
    if not key:
        return "Key must not be empty"
    if "\x00" in key:
        return "Key must not contain NUL bytes"
    if "\\" in key:
        return "Key must not contain backslashes"
    for segment in key.split("/"):
        if segment in ("", ".", ".."):
            return "Key must not contain empty, '.' or '..' segments"
        if segment.endswith(_RESERVED_SUFFIXES):
            return f"Key segments must not end with {' or '.join(_RESERVED_SUFFIXES)}"
    return None


def _timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _creation_time(st: os.stat_result) -> datetime:
    # Only for buckets without a record; st_ctime moves whenever an entry is added or removed
    birthtime = getattr(st, "st_birthtime", None)
    return _timestamp(birthtime if birthtime is not None else st.st_ctime)


def _could_hold_prefix(dir_key: str, prefix: str) -> bool:
    """True if keys under ``dir_key`` (ending in "/") may start with ``prefix``."""
    return dir_key.startswith(prefix) or prefix.startswith(dir_key)


def _atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to a temp file beside ``path`` and move it into place."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=UPLOAD_SUFFIX)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


@contextmanager
def _backend_errors(bucket: str | None = None, key: str | None = None) -> Iterator[None]:
    try:
        yield
    except OSError as e:
        logger.error("filesystem_error", bucket=bucket, key=key, error=str(e))
        raise StorageBackendError(
            f"Filesystem operation failed: {e.strerror or e}",
            bucket=bucket,
            key=key,
            cause=e,
        ) from e


class ObjectStorage:
    """Bucket and object CRUD over a directory tree.

    One instance is shared by every transport adapter. Mutations are
    serialized by a single in-process lock, and content and side-records are
    replaced atomically, so readers see either the old or the new object.
    Nothing coordinates separate processes writing the same root.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()
        self._write_lock = threading.RLock()
        self._root.mkdir(parents=True, exist_ok=True)
        logger.debug("object_storage_initialized", root=str(self._root))

    @property
    def root(self) -> Path:
        return self._root

    # Paths

    def _bucket_path(self, bucket: str) -> Path:
        if not is_valid_bucket_name(bucket):
            raise InvalidBucketName(f"Invalid bucket name: {bucket!r}", bucket=bucket)
        return self._root / bucket

    def _object_path(self, bucket: str, key: str) -> Path:
        bucket_path = self._bucket_path(bucket)
        problem = _key_problem(key)
        if problem:
            raise InvalidArgument(problem, bucket=bucket, key=key)
        path = bucket_path.joinpath(*key.split("/"))
        try:
            path.resolve().relative_to(self._root)
        except ValueError:
            raise InvalidArgument("Key resolves outside the storage root", bucket=bucket, key=key) from None
        return path

    @staticmethod
    def _metadata_path(object_path: Path) -> Path:
        return object_path.with_name(object_path.name + METADATA_SUFFIX)

    def _bucket_record_path(self, bucket: str) -> Path:
        return self._root / f".{bucket}{BUCKET_RECORD_SUFFIX}"

    # Buckets

    def bucket_exists(self, bucket: str) -> bool:
        if not is_valid_bucket_name(bucket):
            return False
        return (self._root / bucket).is_dir()

    def create_bucket(self, bucket: str) -> None:
        path = self._bucket_path(bucket)
        with self._write_lock, _backend_errors(bucket=bucket):
            self._root.mkdir(parents=True, exist_ok=True)
            try:
                path.mkdir()
            except FileExistsError:
                raise BucketAlreadyExists(bucket=bucket) from None
            record = json.dumps(Bucket(name=bucket).to_record()).encode("utf-8")
            try:
                _atomic_write(self._bucket_record_path(bucket), record)
            except OSError:
                path.rmdir()
                raise
        logger.info("bucket_created", bucket=bucket)

    def _read_bucket(self, entry: os.DirEntry) -> Bucket:
        """Load the bucket record, falling back to directory timestamps when it is missing or unreadable."""
        try:
            raw = self._bucket_record_path(entry.name).read_text(encoding="utf-8")
            return Bucket.from_record(entry.name, json.loads(raw))
        except FileNotFoundError:
            pass
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.warning("bucket_record_read_failed", bucket=entry.name, error=str(e))
        return Bucket(name=entry.name, creation_date=_creation_time(entry.stat()))

    def list_buckets(self) -> list[Bucket]:
        buckets = []
        with _backend_errors():
            with os.scandir(self._root) as it:
                entries = sorted(it, key=lambda e: e.name)
            for entry in entries:
                if not entry.is_dir() or not is_valid_bucket_name(entry.name):
                    continue
                buckets.append(self._read_bucket(entry))
        return buckets

    def delete_bucket(self, bucket: str) -> None:
        path = self._bucket_path(bucket)
        with self._write_lock:
            if not path.is_dir():
                raise NoSuchBucket(bucket=bucket)
            with _backend_errors(bucket=bucket):
                if any(path.iterdir()):
                    raise BucketNotEmpty(bucket=bucket)
                try:
                    path.rmdir()
                except OSError as e:
                    if e.errno in (errno.ENOTEMPTY, errno.EEXIST):
                        raise BucketNotEmpty(bucket=bucket) from e
                    raise
            try:
                self._bucket_record_path(bucket).unlink(missing_ok=True)
            except OSError as e:
                logger.warning("bucket_record_delete_failed", bucket=bucket, error=str(e))
        logger.info("bucket_deleted", bucket=bucket)

    # Objects

    def _check_key_conflict(self, bucket_path: Path, path: Path, bucket: str, key: str) -> None:
        current = bucket_path
        for part in path.relative_to(bucket_path).parts[:-1]:
            current = current / part
            if current.is_file():
                existing = current.relative_to(bucket_path).as_posix()
                raise KeyConflict(
                    f"Object {existing!r} exists where {key!r} needs a directory",
                    bucket=bucket,
                    key=key,
                )
            if not current.exists():
                return
        if path.is_dir():
            raise KeyConflict(f"Key {key!r} is already a prefix of other objects", bucket=bucket, key=key)

    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str | None = None,
    ) -> PutObjectResult:
        bucket_path = self._bucket_path(bucket)
        if not bucket_path.is_dir():
            raise NoSuchBucket(bucket=bucket, key=key)
        path = self._object_path(bucket, key)
        metadata = ObjectMetadata(content_type=content_type or DEFAULT_CONTENT_TYPE)
        record = json.dumps(metadata.to_record()).encode("utf-8")

        with self._write_lock, _backend_errors(bucket=bucket, key=key):
            self._check_key_conflict(bucket_path, path, bucket, key)
            path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(path, data)
            _atomic_write(self._metadata_path(path), record)

        etag = hashlib.md5(data).hexdigest()
        logger.info(
            "object_put",
            bucket=bucket,
            key=key,
            size=len(data),
            content_type=metadata.content_type,
            etag=etag,
        )
        return PutObjectResult(etag=etag)

    def _read_metadata(self, path: Path, bucket: str, key: str) -> ObjectMetadata | None:
        """Load the side-record, or None when it is missing or unreadable."""
        try:
            raw = self._metadata_path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("metadata_read_failed", bucket=bucket, key=key, error=str(e))
            return None
        try:
            return ObjectMetadata.from_record(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("metadata_parse_failed", bucket=bucket, key=key, error=str(e))
            return None

    def _content_type(self, path: Path, bucket: str, key: str) -> str:
        metadata = self._read_metadata(path, bucket, key)
        return metadata.content_type if metadata else DEFAULT_CONTENT_TYPE

    def get_object(self, bucket: str, key: str) -> ObjectData:
        path = self._object_path(bucket, key)
        if not path.is_file():
            raise NoSuchKey(bucket=bucket, key=key)
        with _backend_errors(bucket=bucket, key=key):
            try:
                data = path.read_bytes()
                st = path.stat()
            except FileNotFoundError:
                raise NoSuchKey(bucket=bucket, key=key) from None

        return ObjectData(
            data=data,
            content_type=self._content_type(path, bucket, key),
            etag=hashlib.md5(data).hexdigest(),
            size=len(data),
            last_modified=_timestamp(st.st_mtime),
        )

    def head_object(self, bucket: str, key: str) -> ObjectHead:
        path = self._object_path(bucket, key)
        if not path.is_file():
            raise NoSuchKey(bucket=bucket, key=key)
        with _backend_errors(bucket=bucket, key=key):
            try:
                st = path.stat()
                etag = calculate_etag(path)
            except FileNotFoundError:
                raise NoSuchKey(bucket=bucket, key=key) from None

        return ObjectHead(
            size=st.st_size,
            last_modified=_timestamp(st.st_mtime),
            etag=etag,
            content_type=self._content_type(path, bucket, key),
        )

    def delete_object(self, bucket: str, key: str) -> None:
        path = self._object_path(bucket, key)
        with self._write_lock:
            if not path.is_file():
                raise NoSuchKey(bucket=bucket, key=key)
            with _backend_errors(bucket=bucket, key=key):
                try:
                    path.unlink()
                except FileNotFoundError:
                    raise NoSuchKey(bucket=bucket, key=key) from None

            try:
                self._metadata_path(path).unlink(missing_ok=True)
            except OSError as e:
                logger.warning("metadata_delete_failed", bucket=bucket, key=key, error=str(e))

            self._remove_empty_parents(path.parent, self._root / bucket)
        logger.info("object_deleted", bucket=bucket, key=key)

    def _remove_empty_parents(self, directory: Path, bucket_path: Path) -> None:
        """Remove now-empty directories from ``directory`` up to, not including, the bucket."""
        while directory != bucket_path and bucket_path in directory.parents:
            try:
                if any(directory.iterdir()):
                    return
                directory.rmdir()
            except OSError as e:
                logger.debug("empty_dir_cleanup_stopped", path=str(directory), error=str(e))
                return
            directory = directory.parent

    # Listing

    def _iter_files(self, directory: Path, dir_key: str, prefix: str) -> Iterator[tuple[Path, str]]:
        """Yield ``(path, key)`` for object files under ``directory`` whose key starts with ``prefix``."""
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except FileNotFoundError:
            return

        for entry in entries:
            key = dir_key + entry.name
            if entry.is_dir(follow_symlinks=False):
                if _could_hold_prefix(key + "/", prefix):
                    yield from self._iter_files(Path(entry.path), key + "/", prefix)
            elif entry.is_file(follow_symlinks=False):
                if entry.name.endswith(_RESERVED_SUFFIXES):
                    continue
                if key.startswith(prefix):
                    yield Path(entry.path), key

    def list_objects(
        self,
        bucket: str,
        prefix: str | None = None,
        max_keys: int = DEFAULT_MAX_KEYS,
    ) -> ListObjectsResult:
        bucket_path = self._bucket_path(bucket)
        if not bucket_path.is_dir():
            raise NoSuchBucket(bucket=bucket)
        if max_keys < 0:
            raise InvalidArgument("max-keys must not be negative", bucket=bucket)
        prefix = prefix or ""

        contents: list[ObjectSummary] = []
        is_truncated = False
        with _backend_errors(bucket=bucket):
            for path, key in self._iter_files(bucket_path, "", prefix):
                if len(contents) >= max_keys:
                    is_truncated = True
                    break
                try:
                    st = path.stat()
                    etag = calculate_etag(path)
                except FileNotFoundError:
                    # deleted while listing
                    continue
                contents.append(
                    ObjectSummary(
                        key=key,
                        last_modified=_timestamp(st.st_mtime),
                        etag=etag,
                        size=st.st_size,
                    )
                )

        logger.debug(
            "objects_listed",
            bucket=bucket,
            prefix=prefix,
            max_keys=max_keys,
            count=len(contents),
            is_truncated=is_truncated,
        )
        return ListObjectsResult(
            name=bucket,
            prefix=prefix,
            max_keys=max_keys,
            is_truncated=is_truncated,
            contents=contents,
        )
