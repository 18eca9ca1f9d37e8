"""Tests for S3-Compatible API endpoints.

These tests verify XML documents, status codes and headers match what AWS
SDKs expect from an S3 endpoint using path-style addressing.
"""

import base64
import hashlib
from xml.etree import ElementTree as ET

import pytest

NS = {"s3": "http://s3.amazonaws.com/doc/2006-03-01/"}


def quoted_md5(content: bytes) -> str:
    return f'"{hashlib.md5(content).hexdigest()}"'


@pytest.fixture
def s3_bucket(client):
    response = client.put("/test")
    assert response.status_code == 200
    return "test"


class TestBucketOperations:
    def test_create_bucket(self, client):
        response = client.put("/photos")

        assert response.status_code == 200
        assert response.headers["Location"] == "/photos"

    def test_create_existing_bucket(self, client, s3_bucket):
        response = client.put(f"/{s3_bucket}")

        assert response.status_code == 409
        root = ET.fromstring(response.content)
        assert root.find("Code").text == "BucketAlreadyExists"
        assert root.find("Resource").text == f"/{s3_bucket}"
        assert root.find("RequestId").text == response.headers["x-amz-request-id"]

    def test_invalid_bucket_name(self, client):
        response = client.put("/bad name")

        assert response.status_code == 400
        assert ET.fromstring(response.content).find("Code").text == "InvalidBucketName"

    def test_list_buckets(self, client, s3_bucket):
        client.put("/another")

        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        root = ET.fromstring(response.content)
        assert root.tag == "{http://s3.amazonaws.com/doc/2006-03-01/}ListAllMyBucketsResult"
        assert root.find("s3:Owner/s3:ID", NS).text == "local-s3"
        names = [b.find("s3:Name", NS).text for b in root.findall("s3:Buckets/s3:Bucket", NS)]
        assert names == ["another", "test"]
        assert root.find("s3:Buckets/s3:Bucket/s3:CreationDate", NS).text.endswith("Z")

    def test_head_bucket(self, client, s3_bucket):
        assert client.head(f"/{s3_bucket}").status_code == 200
        assert client.head("/missing").status_code == 404

    def test_delete_bucket(self, client, s3_bucket):
        response = client.delete(f"/{s3_bucket}")

        assert response.status_code == 204
        assert client.head(f"/{s3_bucket}").status_code == 404

    def test_delete_missing_bucket(self, client):
        response = client.delete("/missing")

        assert response.status_code == 404
        assert ET.fromstring(response.content).find("Code").text == "NoSuchBucket"

    def test_delete_non_empty_bucket(self, client, s3_bucket):
        client.put(f"/{s3_bucket}/file.txt", content=b"data")

        response = client.delete(f"/{s3_bucket}")

        assert response.status_code == 409
        assert ET.fromstring(response.content).find("Code").text == "BucketNotEmpty"


class TestPutObject:
    def test_put_object(self, client, s3_bucket):
        content = b"Hello, World!"

        response = client.put(f"/{s3_bucket}/hello.txt", content=content)

        assert response.status_code == 200
        assert response.headers["ETag"] == quoted_md5(content)

    def test_put_object_missing_bucket(self, client):
        response = client.put("/missing/file.txt", content=b"data")

        assert response.status_code == 404
        assert ET.fromstring(response.content).find("Code").text == "NoSuchBucket"

    def test_put_object_with_content_md5(self, client, s3_bucket):
        content = b"Test data with MD5"
        content_md5 = base64.b64encode(hashlib.md5(content).digest()).decode()

        response = client.put(f"/{s3_bucket}/data/test.csv", content=content, headers={"Content-MD5": content_md5})

        assert response.status_code == 200

    def test_put_object_bad_md5(self, client, s3_bucket):
        response = client.put(
            f"/{s3_bucket}/data/test.csv",
            content=b"Test data with wrong MD5",
            headers={"Content-MD5": base64.b64encode(b"wrong").decode()},
        )

        assert response.status_code == 400
        assert ET.fromstring(response.content).find("Code").text == "BadDigest"
        assert client.get(f"/{s3_bucket}/data/test.csv").status_code == 404

    def test_put_object_aws_chunked(self, client, s3_bucket):
        body = b"5;chunk-signature=abc\r\nHello\r\n7;chunk-signature=def\r\n, World\r\n0;chunk-signature=000\r\n\r\n"

        response = client.put(
            f"/{s3_bucket}/chunked.txt",
            content=body,
            headers={
                "x-amz-content-sha256": "STREAMING-AWS4-HMAC-SHA256-PAYLOAD",
                "x-amz-decoded-content-length": "12",
                "Content-Type": "text/plain",
            },
        )

        assert response.status_code == 200
        assert response.headers["ETag"] == quoted_md5(b"Hello, World")
        assert client.get(f"/{s3_bucket}/chunked.txt").content == b"Hello, World"

    def test_put_object_malformed_chunked_body(self, client, s3_bucket):
        response = client.put(
            f"/{s3_bucket}/chunked.txt",
            content=b"zz\r\nHello",
            headers={"x-amz-content-sha256": "STREAMING-UNSIGNED-PAYLOAD-TRAILER"},
        )

        assert response.status_code == 400
        assert ET.fromstring(response.content).find("Code").text == "IncompleteBody"

    def test_put_object_too_large(self, client, s3_bucket):
        response = client.put(f"/{s3_bucket}/big.bin", content=b"x" * (client.app.state.settings.max_upload_size + 1))

        assert response.status_code == 413
        assert ET.fromstring(response.content).find("Code").text == "EntityTooLarge"

    def test_put_object_key_conflict(self, client, s3_bucket):
        client.put(f"/{s3_bucket}/a", content=b"file")

        response = client.put(f"/{s3_bucket}/a/b", content=b"nested")

        assert response.status_code == 409
        assert ET.fromstring(response.content).find("Code").text == "KeyConflict"


class TestGetObject:
    def test_get_object(self, client, s3_bucket):
        content = b"File content to download"
        client.put(f"/{s3_bucket}/download/test.txt", content=content, headers={"Content-Type": "text/plain"})

        response = client.get(f"/{s3_bucket}/download/test.txt")

        assert response.status_code == 200
        assert response.content == content
        assert response.headers["Content-Type"] == "text/plain"
        assert response.headers["ETag"] == quoted_md5(content)
        assert response.headers["Content-Length"] == str(len(content))
        assert response.headers["Last-Modified"].endswith("GMT")

    def test_get_missing_object(self, client, s3_bucket):
        response = client.get(f"/{s3_bucket}/nonexistent.txt")

        assert response.status_code == 404
        root = ET.fromstring(response.content)
        assert root.find("Code").text == "NoSuchKey"
        assert root.find("Resource").text == f"/{s3_bucket}/nonexistent.txt"


class TestHeadObject:
    def test_head_object(self, client, s3_bucket):
        content = b"metadata only"
        client.put(f"/{s3_bucket}/meta.json", content=content, headers={"Content-Type": "application/json"})

        response = client.head(f"/{s3_bucket}/meta.json")

        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["Content-Length"] == str(len(content))
        assert response.headers["Content-Type"] == "application/json"
        assert response.headers["ETag"] == quoted_md5(content)

    def test_head_missing_object(self, client, s3_bucket):
        response = client.head(f"/{s3_bucket}/missing")

        assert response.status_code == 404
        assert response.content == b""


class TestDeleteObject:
    def test_delete_object(self, client, s3_bucket):
        client.put(f"/{s3_bucket}/nested/dir/file.txt", content=b"bye")

        response = client.delete(f"/{s3_bucket}/nested/dir/file.txt")

        assert response.status_code == 204
        assert client.get(f"/{s3_bucket}/nested/dir/file.txt").status_code == 404

    def test_delete_missing_object(self, client, s3_bucket):
        response = client.delete(f"/{s3_bucket}/missing")

        assert response.status_code == 404
        assert ET.fromstring(response.content).find("Code").text == "NoSuchKey"


class TestListObjects:
    def _keys(self, response):
        root = ET.fromstring(response.content)
        return [c.find("s3:Key", NS).text for c in root.findall("s3:Contents", NS)]

    def test_list_objects_v2(self, client, s3_bucket):
        client.put(f"/{s3_bucket}/documents/report.txt", content=b"report")
        client.put(f"/{s3_bucket}/images/photo.jpg", content=b"photo")

        response = client.get(f"/{s3_bucket}", params={"list-type": "2"})

        assert response.status_code == 200
        root = ET.fromstring(response.content)
        assert root.find("s3:Name", NS).text == s3_bucket
        assert root.find("s3:KeyCount", NS).text == "2"
        assert root.find("s3:MaxKeys", NS).text == "1000"
        assert root.find("s3:IsTruncated", NS).text == "false"
        assert sorted(self._keys(response)) == ["documents/report.txt", "images/photo.jpg"]

        contents = root.find("s3:Contents", NS)
        assert contents.find("s3:ETag", NS).text.startswith('"')
        assert contents.find("s3:StorageClass", NS).text == "STANDARD"

    def test_list_objects_v1_has_marker(self, client, s3_bucket):
        response = client.get(f"/{s3_bucket}")

        root = ET.fromstring(response.content)
        assert root.find("s3:Marker", NS) is not None
        assert root.find("s3:KeyCount", NS) is None

    def test_list_objects_with_prefix(self, client, s3_bucket):
        client.put(f"/{s3_bucket}/documents/report.txt", content=b"report")
        client.put(f"/{s3_bucket}/images/photo.jpg", content=b"photo")

        response = client.get(f"/{s3_bucket}", params={"list-type": "2", "prefix": "documents/"})

        assert self._keys(response) == ["documents/report.txt"]
        assert ET.fromstring(response.content).find("s3:Prefix", NS).text == "documents/"

    def test_list_objects_truncated(self, client, s3_bucket):
        client.put(f"/{s3_bucket}/a.txt", content=b"a")
        client.put(f"/{s3_bucket}/b.txt", content=b"b")

        response = client.get(f"/{s3_bucket}", params={"max-keys": "1"})

        assert len(self._keys(response)) == 1
        assert ET.fromstring(response.content).find("s3:IsTruncated", NS).text == "true"

    @pytest.mark.parametrize(
        "params",
        [{"max-keys": "abc"}, {"max-keys": "-1"}, {"list-type": "x"}],
    )
    def test_list_objects_bad_query_is_s3_error(self, client, s3_bucket, params):
        response = client.get(f"/{s3_bucket}", params=params)

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("application/xml")
        root = ET.fromstring(response.content)
        assert root.find("Code").text == "InvalidArgument"
        assert root.find("Resource").text == f"/{s3_bucket}"

    def test_list_objects_missing_bucket(self, client):
        response = client.get("/missing")

        assert response.status_code == 404
        assert ET.fromstring(response.content).find("Code").text == "NoSuchBucket"

    def test_keys_are_escaped(self, client, s3_bucket):
        client.put(f"/{s3_bucket}/a&b<c>.txt", content=b"x")

        assert self._keys(client.get(f"/{s3_bucket}")) == ["a&b<c>.txt"]


def test_end_to_end_scenario(client):
    assert client.put("/test").status_code == 200
    assert client.put("/test/hello.txt", content=b"Hello World!").status_code == 200

    root = ET.fromstring(client.get("/test").content)
    contents = root.findall("s3:Contents", NS)
    assert [(c.find("s3:Key", NS).text, c.find("s3:Size", NS).text) for c in contents] == [("hello.txt", "12")]

    assert client.get("/test/hello.txt").content == b"Hello World!"
    assert client.delete("/test/hello.txt").status_code == 204
    assert ET.fromstring(client.get("/test").content).findall("s3:Contents", NS) == []


def test_health_is_not_a_bucket(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
