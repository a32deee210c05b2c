"""Shared fixtures for Coffer tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import boto3
import pytest
from botocore.config import Config
from moto import mock_aws
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from coffer.config import CofferConfig
from coffer.fs.access import AccessEvaluator
from coffer.fs.files import FileService
from coffer.fs.folders import FolderService
from coffer.fs.sharing import SharingService
from coffer.models.files import FileRecord
from coffer.models.folders import Folder
from coffer.models.shares import ShareGrant
from coffer.store.s3 import S3ObjectStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from sqlalchemy.ext.asyncio import AsyncEngine

BUCKET = "coffer-test"


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fake credentials so boto3 never reaches for a real profile."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def s3_client(aws_credentials: None) -> Iterator[object]:
    """Mocked S3 client with the test bucket created."""
    with mock_aws():
        client = boto3.client(
            "s3", region_name="us-east-1", config=Config(signature_version="s3v4")
        )
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def store(s3_client: object) -> S3ObjectStore:
    return S3ObjectStore(BUCKET, client=s3_client)


@pytest.fixture
def config() -> CofferConfig:
    return CofferConfig(bucket=BUCKET, base_url="https://files.example.com")


@pytest.fixture
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Async in-memory SQLite engine with all tables created."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Async SQLModel session bound to the in-memory engine."""
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with factory() as session:
        yield session


@pytest.fixture
def folders(store: S3ObjectStore) -> FolderService:
    return FolderService(Folder, store)


@pytest.fixture
def files(store: S3ObjectStore) -> FileService:
    return FileService(FileRecord, Folder, store)


@pytest.fixture
def sharing(config: CofferConfig) -> SharingService:
    return SharingService(ShareGrant, FileRecord, Folder, config)


@pytest.fixture
def evaluator(
    sharing: SharingService, files: FileService, folders: FolderService
) -> AccessEvaluator:
    return AccessEvaluator(sharing, files, folders)


@pytest.fixture
def object_keys(s3_client: object):
    """Callable listing every key in the test bucket under a prefix, sorted."""

    def _list(prefix: str = "") -> list[str]:
        resp = s3_client.list_objects_v2(Bucket=BUCKET, Prefix=prefix)  # type: ignore[attr-defined]
        return sorted(item["Key"] for item in resp.get("Contents", []))

    return _list
