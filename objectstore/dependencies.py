from fastapi import Request

from objectstore.config import Settings
from objectstore.storage import ObjectStorage


def get_storage(request: Request) -> ObjectStorage:
    """Return the engine created once at app construction."""
    return request.app.state.storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
