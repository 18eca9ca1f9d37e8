"""S3-compatible API endpoints.

Path-style addressing only: ``/{bucket}`` and ``/{bucket}/{key}``. Responses
use the S3 XML documents and status codes so AWS SDKs work unmodified.
Errors raised by the engine are rendered as S3 ``<Error>`` documents by the
application's exception handlers.
"""

import base64
import hashlib
from email.utils import format_datetime
from typing import Optional
from xml.etree import ElementTree as ET

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response
from starlette.concurrency import run_in_threadpool

from objectstore.body import RequestBodyError, read_body
from objectstore.config import Settings
from objectstore.dependencies import get_settings, get_storage
from objectstore.models import Owner, format_iso_millis
from objectstore.storage import ObjectStorage

logger = structlog.get_logger()

router = APIRouter(tags=["S3 Compatible"])

S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"


# --- Helpers ---
def generate_xml_response(root: ET.Element, status_code: int = 200, headers: Optional[dict] = None) -> Response:
    content = ET.tostring(root, encoding="utf-8", xml_declaration=True)
    return Response(content=content, media_type="application/xml", status_code=status_code, headers=headers)


def build_error_xml(code: str, message: str, resource: str = "", request_id: str = "") -> ET.Element:
    root = ET.Element("Error")
    ET.SubElement(root, "Code").text = code
    ET.SubElement(root, "Message").text = message
    ET.SubElement(root, "Resource").text = resource
    ET.SubElement(root, "RequestId").text = request_id
    return root


def s3_error_response(request: Request, code: str, message: str, status_code: int, resource: str) -> Response:
    # HEAD responses never carry a body
    if request.method == "HEAD":
        return Response(status_code=status_code)
    request_id = getattr(request.state, "request_id", "")
    return generate_xml_response(build_error_xml(code, message, resource, request_id), status_code=status_code)


def quote_etag(etag: str) -> str:
    return f'"{etag}"'


def get_http_date(dt) -> str:
    return format_datetime(dt, usegmt=True)


# --- Service Operations ---

@router.get("/", summary="ListBuckets", description="List all buckets owned by the server.")
def list_buckets(storage: ObjectStorage = Depends(get_storage)):
    root = ET.Element("ListAllMyBucketsResult", xmlns=S3_NAMESPACE)
    owner = ET.SubElement(root, "Owner")
    ET.SubElement(owner, "ID").text = Owner.ID
    ET.SubElement(owner, "DisplayName").text = Owner.DisplayName

    buckets = ET.SubElement(root, "Buckets")
    for bucket in storage.list_buckets():
        entry = ET.SubElement(buckets, "Bucket")
        ET.SubElement(entry, "Name").text = bucket.name
        ET.SubElement(entry, "CreationDate").text = format_iso_millis(bucket.creation_date)
    return generate_xml_response(root)


# --- Bucket Operations ---

@router.put(
    "/{bucket_name}",
    summary="CreateBucket",
    responses={409: {"description": "BucketAlreadyExists"}},
)
def create_bucket(bucket_name: str, storage: ObjectStorage = Depends(get_storage)):
    storage.create_bucket(bucket_name)
    return Response(status_code=200, headers={"Location": f"/{bucket_name}"})


@router.head(
    "/{bucket_name}",
    summary="HeadBucket",
    responses={404: {"description": "NoSuchBucket"}},
)
def head_bucket(bucket_name: str, storage: ObjectStorage = Depends(get_storage)):
    if not storage.bucket_exists(bucket_name):
        return Response(status_code=404)
    return Response(status_code=200)


@router.delete(
    "/{bucket_name}",
    summary="DeleteBucket",
    status_code=204,
    responses={404: {"description": "NoSuchBucket"}, 409: {"description": "BucketNotEmpty"}},
)
def delete_bucket(bucket_name: str, storage: ObjectStorage = Depends(get_storage)):
    storage.delete_bucket(bucket_name)
    return Response(status_code=204)


@router.get(
    "/{bucket_name}",
    summary="ListObjects",
    description="ListObjects (v1) or ListObjectsV2 when `list-type=2`. Prefix is a plain string prefix; "
    "no delimiter grouping is performed.",
    responses={404: {"description": "NoSuchBucket"}},
)
def list_objects(
    bucket_name: str,
    list_type: Optional[int] = Query(None, alias="list-type"),
    prefix: Optional[str] = Query(None),
    max_keys: int = Query(1000, alias="max-keys", ge=0),
    storage: ObjectStorage = Depends(get_storage),
):
    result = storage.list_objects(bucket_name, prefix=prefix, max_keys=max_keys)

    root = ET.Element("ListBucketResult", xmlns=S3_NAMESPACE)
    ET.SubElement(root, "Name").text = result.name
    ET.SubElement(root, "Prefix").text = result.prefix
    if list_type == 2:
        ET.SubElement(root, "KeyCount").text = str(len(result.contents))
    else:
        ET.SubElement(root, "Marker").text = ""
    ET.SubElement(root, "MaxKeys").text = str(result.max_keys)
    ET.SubElement(root, "IsTruncated").text = str(result.is_truncated).lower()

    for obj in result.contents:
        contents = ET.SubElement(root, "Contents")
        ET.SubElement(contents, "Key").text = obj.key
        ET.SubElement(contents, "LastModified").text = format_iso_millis(obj.last_modified)
        ET.SubElement(contents, "ETag").text = quote_etag(obj.etag)
        ET.SubElement(contents, "Size").text = str(obj.size)
        ET.SubElement(contents, "StorageClass").text = obj.storage_class
    return generate_xml_response(root)


# --- Object Operations ---

@router.head(
    "/{bucket_name}/{key:path}",
    summary="HeadObject",
    responses={404: {"description": "NoSuchKey"}},
)
def head_object(bucket_name: str, key: str, storage: ObjectStorage = Depends(get_storage)):
    head = storage.head_object(bucket_name, key)
    headers = {
        "ETag": quote_etag(head.etag),
        "Content-Type": head.content_type,
        "Content-Length": str(head.size),
        "Last-Modified": get_http_date(head.last_modified),
    }
    return Response(status_code=200, headers=headers)


@router.put(
    "/{bucket_name}/{key:path}",
    summary="PutObject",
    responses={
        400: {"description": "BadDigest or malformed body"},
        404: {"description": "NoSuchBucket"},
        409: {"description": "KeyConflict"},
        413: {"description": "EntityTooLarge"},
    },
)
async def put_object(
    bucket_name: str,
    key: str,
    request: Request,
    storage: ObjectStorage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    body = await read_body(request, settings.max_upload_size)

    content_md5 = request.headers.get("content-md5")
    if content_md5 and base64.b64encode(hashlib.md5(body).digest()).decode() != content_md5:
        raise RequestBodyError("BadDigest", "The Content-MD5 you specified did not match what we received.")

    content_type = request.headers.get("content-type")
    result = await run_in_threadpool(storage.put_object, bucket_name, key, body, content_type)
    return Response(status_code=200, headers={"ETag": quote_etag(result.etag)})


@router.get(
    "/{bucket_name}/{key:path}",
    summary="GetObject",
    responses={404: {"description": "NoSuchKey"}},
)
def get_object(bucket_name: str, key: str, storage: ObjectStorage = Depends(get_storage)):
    obj = storage.get_object(bucket_name, key)
    headers = {
        "ETag": quote_etag(obj.etag),
        "Content-Type": obj.content_type,
        "Last-Modified": get_http_date(obj.last_modified),
    }
    return Response(content=obj.data, headers=headers)


@router.delete(
    "/{bucket_name}/{key:path}",
    summary="DeleteObject",
    status_code=204,
    responses={404: {"description": "NoSuchKey"}},
)
def delete_object(bucket_name: str, key: str, storage: ObjectStorage = Depends(get_storage)):
    storage.delete_object(bucket_name, key)
    return Response(status_code=204)
