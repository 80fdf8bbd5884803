"""Shared test fixtures and configuration."""
import os
from typing import AsyncGenerator, Tuple

import boto3
import httpx
import pytest
import pytest_asyncio
from botocore.config import Config
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

os.environ.setdefault("S3_BUCKET", "test-bucket")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SIGN_RATE_LIMIT", "1000/minute")

from database import create_engine_and_sessionmaker, init_db
from services.storage_service import ObjectStorageGateway

TEST_BUCKET = "test-bucket"


@pytest.fixture
def s3_client():
    """A real boto3 S3 client with dummy credentials. Presigning never hits the network."""
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        config=Config(signature_version="s3v4"),
    )


@pytest.fixture
def storage(s3_client) -> ObjectStorageGateway:
    return ObjectStorageGateway(s3_client, TEST_BUCKET)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[Tuple[AsyncEngine, async_sessionmaker[AsyncSession]], None]:
    """Provide a clean in-memory database for each test."""
    engine, session_factory = create_engine_and_sessionmaker("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine, session_factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db) -> AsyncGenerator[AsyncSession, None]:
    _, session_factory = db
    async with session_factory() as session:
        yield session


@pytest.fixture
def app_state(db, storage):
    """Installs the test database and storage gateway where the app's middleware looks for them."""
    import main

    engine, session_factory = db
    main.app_state.update(engine=engine, session_factory=session_factory, storage=storage)
    yield main.app_state
    main.app_state.clear()


@pytest_asyncio.fixture
async def client(app_state) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client wired straight into the ASGI app."""
    from main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
