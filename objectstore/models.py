from datetime import datetime, timezone
from typing import Optional, List
from sqlmodel import SQLModel, Field

DEFAULT_CONTENT_TYPE = "application/octet-stream"
STORAGE_CLASS = "STANDARD"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_iso_millis(dt: datetime) -> str:
    # 2024-01-31T12:00:00.123Z
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class Bucket(SQLModel):
    name: str
    creation_date: datetime = Field(default_factory=utcnow)

    def to_record(self) -> dict:
        return {"name": self.name, "creationDate": self.creation_date.isoformat()}

    @classmethod
    def from_record(cls, name: str, data: dict) -> "Bucket":
        return cls(name=name, creation_date=datetime.fromisoformat(data["creationDate"]))


class ObjectMetadata(SQLModel):
    """Side-record persisted next to the object bytes as ``<key>.metadata.json``."""

    content_type: str = Field(default=DEFAULT_CONTENT_TYPE)
    upload_date: datetime = Field(default_factory=utcnow)

    def to_record(self) -> dict:
        return {
            "contentType": self.content_type,
            "uploadDate": format_iso_millis(self.upload_date),
        }

    @classmethod
    def from_record(cls, data: dict) -> "ObjectMetadata":
        upload_raw = data.get("uploadDate")
        if isinstance(upload_raw, str):
            upload_date = datetime.fromisoformat(upload_raw)
        else:
            upload_date = utcnow()
        return cls(
            content_type=data.get("contentType") or DEFAULT_CONTENT_TYPE,
            upload_date=upload_date,
        )


class ObjectSummary(SQLModel):
    key: str
    last_modified: datetime
    etag: str
    size: int
    storage_class: str = Field(default=STORAGE_CLASS)


class ListObjectsResult(SQLModel):
    name: str
    prefix: str = ""
    max_keys: int = 1000
    is_truncated: bool = False
    contents: List[ObjectSummary] = Field(default_factory=list)


class PutObjectResult(SQLModel):
    etag: str


class ObjectHead(SQLModel):
    size: int
    last_modified: datetime
    etag: str
    content_type: str = Field(default=DEFAULT_CONTENT_TYPE)


class ObjectData(SQLModel):
    data: bytes
    content_type: str = Field(default=DEFAULT_CONTENT_TYPE)
    etag: str
    size: int
    last_modified: Optional[datetime] = None


class Owner:
    ID = "local-s3"
    DisplayName = "local-s3"
