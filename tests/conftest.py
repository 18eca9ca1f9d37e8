"""Pytest configuration and fixtures."""

import os
import tempfile

# The module-level app in objectstore.main creates its storage root on import;
# keep it out of the working directory.
os.environ.setdefault("STORAGE_PATH", tempfile.mkdtemp(prefix="objectstore-tests-"))

import pytest
from fastapi.testclient import TestClient

from objectstore.config import Settings
from objectstore.main import create_app
from objectstore.storage import ObjectStorage

TEST_MAX_UPLOAD_SIZE = 1024 * 1024


@pytest.fixture
def storage_root(tmp_path):
    return tmp_path / "storage"


@pytest.fixture
def storage(storage_root):
    """Create an engine rooted in a temporary directory."""
    return ObjectStorage(storage_root)


@pytest.fixture
def settings(storage_root):
    return Settings(storage_path=storage_root, max_upload_size=TEST_MAX_UPLOAD_SIZE)


@pytest.fixture
def client(settings, storage):
    """Create a test client for an app sharing the ``storage`` fixture."""
    app = create_app(settings=settings, storage=storage)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def bucket(storage):
    storage.create_bucket("test")
    return "test"
