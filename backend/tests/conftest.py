"""Shared test fixtures: in-memory document store and storage, test client."""

from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from codeprism.config import settings
from codeprism.main import app
from codeprism.services.document_store import InMemoryDocumentStore, set_document_store
from codeprism.services.remote_auth import (
    DIRECT_SESSION_TYPE,
    SessionKind,
    SessionStatus,
    isoformat,
    utcnow,
)
from codeprism.services.storage import InMemoryStorageBackend, set_storage

APPROVER_TOKEN = "test-approver-token"


@pytest.fixture(autouse=True)
def store() -> InMemoryDocumentStore:
    """Use an in-memory document store for every test."""
    backend = InMemoryDocumentStore()
    set_document_store(backend)
    yield backend
    set_document_store(None)


@pytest.fixture(autouse=True)
def storage() -> InMemoryStorageBackend:
    """Use in-memory blob storage for every test."""
    backend = InMemoryStorageBackend()
    set_storage(backend)
    yield backend
    set_storage(None)


@pytest_asyncio.fixture
async def client() -> AsyncClient:
    """Yield an httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def admin_headers(store: InMemoryDocumentStore) -> dict:
    """Headers for a direct admin session the phone already approved."""
    session_id = "admin-session-for-tests"
    now = utcnow()
    await store.set(
        SessionKind.direct.collection,
        session_id,
        {
            "status": SessionStatus.authenticated.value,
            "createdAt": isoformat(now),
            "type": DIRECT_SESSION_TYPE,
            "expiresAt": isoformat(now + timedelta(hours=1)),
        },
    )
    return {"X-Admin-Session": session_id}


@pytest.fixture
def approver_headers(monkeypatch) -> dict:
    """Configure an approver token and return the header carrying it."""
    monkeypatch.setattr(settings, "approver_token", APPROVER_TOKEN)
    return {"X-Approver-Token": APPROVER_TOKEN}
