"""Simplified JSON REST API over the object store.

Mounted under the configured ``api_prefix`` (``/api`` by default). Engine
errors are rendered as ``{"error": <code>, "message": <text>}``.
"""

from email.utils import format_datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from starlette.concurrency import run_in_threadpool

from objectstore.body import read_body
from objectstore.config import Settings
from objectstore.dependencies import get_settings, get_storage
from objectstore.models import format_iso_millis
from objectstore.storage import ObjectStorage

router = APIRouter()


# --- Buckets ---

@router.get("/buckets", tags=["Buckets"], summary="List all buckets")
def list_buckets(storage: ObjectStorage = Depends(get_storage)):
    buckets = storage.list_buckets()
    return {
        "Buckets": [
            {"Name": b.name, "CreationDate": format_iso_millis(b.creation_date)} for b in buckets
        ]
    }


@router.put(
    "/buckets/{bucket_name}",
    tags=["Buckets"],
    summary="Create a new bucket",
    responses={409: {"description": "Bucket already exists"}},
)
def create_bucket(bucket_name: str, storage: ObjectStorage = Depends(get_storage)):
    storage.create_bucket(bucket_name)
    return Response(status_code=200)


@router.delete(
    "/buckets/{bucket_name}",
    tags=["Buckets"],
    summary="Delete a bucket",
    status_code=204,
    responses={404: {"description": "Bucket not found"}, 409: {"description": "Bucket not empty"}},
)
def delete_bucket(bucket_name: str, storage: ObjectStorage = Depends(get_storage)):
    storage.delete_bucket(bucket_name)
    return Response(status_code=204)


# --- Objects ---

@router.get(
    "/buckets/{bucket_name}/objects",
    tags=["Objects"],
    summary="List objects in a bucket",
    responses={404: {"description": "Bucket not found"}},
)
def list_objects(
    bucket_name: str,
    prefix: Optional[str] = Query(None),
    max_keys: int = Query(1000, alias="max-keys", ge=0),
    storage: ObjectStorage = Depends(get_storage),
):
    result = storage.list_objects(bucket_name, prefix=prefix, max_keys=max_keys)
    return {
        "IsTruncated": result.is_truncated,
        "Contents": [
            {
                "Key": obj.key,
                "LastModified": format_iso_millis(obj.last_modified),
                "ETag": f'"{obj.etag}"',
                "Size": obj.size,
                "StorageClass": obj.storage_class,
            }
            for obj in result.contents
        ],
        "Name": result.name,
        "Prefix": result.prefix,
        "MaxKeys": result.max_keys,
    }


# Declared before the plain object routes so ".../head" is not read as part of the key
@router.get(
    "/buckets/{bucket_name}/objects/{key:path}/head",
    tags=["Objects"],
    summary="Get object metadata",
    responses={404: {"description": "Object not found"}},
)
def head_object(bucket_name: str, key: str, response: Response, storage: ObjectStorage = Depends(get_storage)):
    head = storage.head_object(bucket_name, key)
    response.headers["ETag"] = head.etag
    response.headers["Last-Modified"] = format_datetime(head.last_modified, usegmt=True)
    return {
        "size": head.size,
        "lastModified": format_iso_millis(head.last_modified),
        "etag": head.etag,
        "contentType": head.content_type,
    }


@router.put(
    "/buckets/{bucket_name}/objects/{key:path}",
    tags=["Objects"],
    summary="Upload an object to a bucket",
    responses={404: {"description": "Bucket not found"}, 409: {"description": "Key conflicts with another object"}},
)
async def put_object(
    bucket_name: str,
    key: str,
    request: Request,
    response: Response,
    storage: ObjectStorage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    body = await read_body(request, settings.max_upload_size)
    content_type = request.headers.get("content-type", "application/octet-stream")
    result = await run_in_threadpool(storage.put_object, bucket_name, key, body, content_type)
    response.headers["ETag"] = result.etag
    return {"ETag": result.etag}


@router.get(
    "/buckets/{bucket_name}/objects/{key:path}",
    tags=["Objects"],
    summary="Get an object from a bucket",
    responses={404: {"description": "Object not found"}},
)
def get_object(bucket_name: str, key: str, storage: ObjectStorage = Depends(get_storage)):
    obj = storage.get_object(bucket_name, key)
    return Response(content=obj.data, headers={"Content-Type": obj.content_type, "ETag": obj.etag})


@router.delete(
    "/buckets/{bucket_name}/objects/{key:path}",
    tags=["Objects"],
    summary="Delete an object from a bucket",
    status_code=204,
    responses={404: {"description": "Object not found"}},
)
def delete_object(bucket_name: str, key: str, storage: ObjectStorage = Depends(get_storage)):
    storage.delete_object(bucket_name, key)
    return Response(status_code=204)
