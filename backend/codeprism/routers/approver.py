"""Approver routes: what the owner's phone calls.

Exists only when APPROVER_TOKEN is configured, and every request must carry
it in ``X-Approver-Token``; otherwise these paths are plain 404s.
"""

from datetime import timedelta

from fastapi import APIRouter, Depends

from codeprism.config import settings
from codeprism.core.admin_auth import require_approver
from codeprism.core.errors import NotFoundError
from codeprism.dependencies import get_store
from codeprism.schemas.session import (
    RemoteToggleRequest,
    SessionGrant,
    SessionRead,
    SharedLinkCreate,
)
from codeprism.services import approver_service
from codeprism.services.document_store import DocumentStore
from codeprism.services.remote_auth import SessionKind

router = APIRouter(
    prefix="/approver",
    tags=["approver"],
    dependencies=[Depends(require_approver)],
)


def _session_read(kind: SessionKind, session_id: str, record: dict) -> SessionRead:
    return SessionRead(
        id=session_id,
        kind=kind.value,
        status=record.get("status"),
        createdAt=record.get("createdAt"),
        expiresAt=record.get("expiresAt"),
        userType=record.get("userType"),
        accessType=record.get("accessType"),
    )


def _ttl(body: SessionGrant | None) -> timedelta:
    minutes = body.expiresInMinutes if body and body.expiresInMinutes else settings.session_ttl_minutes
    return timedelta(minutes=minutes)


@router.put("/remote")
async def set_remote(
    body: RemoteToggleRequest,
    store: DocumentStore = Depends(get_store),
):
    await approver_service.arm_remote_login(store, enabled=body.enabled)
    return {"success": True, "remoteEnabled": body.enabled}


@router.post("/shared-links", status_code=201)
async def create_shared_link(
    body: SharedLinkCreate,
    store: DocumentStore = Depends(get_store),
):
    link_id, record = await approver_service.create_shared_link(
        store, user_type=body.userType, access_type=body.accessType
    )
    return {
        "success": True,
        "link": _session_read(SessionKind.shared, link_id, record).model_dump(),
    }


@router.get("/sessions/{kind}/{session_id}")
async def get_session(
    kind: SessionKind,
    session_id: str,
    store: DocumentStore = Depends(get_store),
):
    record = await store.get(kind.collection, session_id)
    if record is None:
        raise NotFoundError("Session not found")
    return {"success": True, "session": _session_read(kind, session_id, record).model_dump()}


@router.post("/sessions/{kind}/{session_id}/approve")
async def approve_session(
    kind: SessionKind,
    session_id: str,
    body: SessionGrant | None = None,
    store: DocumentStore = Depends(get_store),
):
    record = await approver_service.approve_session(
        store, kind=kind, session_id=session_id, ttl=_ttl(body)
    )
    return {"success": True, "session": _session_read(kind, session_id, record).model_dump()}


@router.post("/sessions/{kind}/{session_id}/extend")
async def extend_session(
    kind: SessionKind,
    session_id: str,
    body: SessionGrant | None = None,
    store: DocumentStore = Depends(get_store),
):
    record = await approver_service.extend_session(
        store, kind=kind, session_id=session_id, ttl=_ttl(body)
    )
    return {"success": True, "session": _session_read(kind, session_id, record).model_dump()}


@router.delete("/sessions/{kind}/{session_id}")
async def terminate_session(
    kind: SessionKind,
    session_id: str,
    store: DocumentStore = Depends(get_store),
):
    await approver_service.terminate_session(store, kind=kind, session_id=session_id)
    return {"success": True, "message": "Session terminated"}
