"""Approver service: the mutations the owner's phone performs.

The phone arms the QR login, approves pending sessions, hands out shared
links, stretches or kills live sessions. The browsers never call these; they
only observe the resulting documents.
"""

import logging
from datetime import datetime, timedelta

from codeprism.core.errors import InvalidTransitionError, NotFoundError
from codeprism.services.document_store import DocumentStore
from codeprism.services.remote_auth import (
    SessionKind,
    SessionStatus,
    isoformat,
    is_expired,
    new_session_id,
    new_shared_link_record,
    set_remote_enabled,
    short_id,
    utcnow,
)

logger = logging.getLogger("codeprism.auth")


async def arm_remote_login(
    store: DocumentStore,
    *,
    enabled: bool,
    now: datetime | None = None,
) -> None:
    """Arm (or disarm) the QR login surface on the admin console."""
    await set_remote_enabled(store, enabled, now)
    logger.info("remote login %s", "armed" if enabled else "disarmed")


async def create_shared_link(
    store: DocumentStore,
    *,
    user_type: str,
    access_type: str | None = None,
    now: datetime | None = None,
) -> tuple[str, dict]:
    """Create a shared link in ``active`` state. Returns (link_id, record)."""
    link_id = new_session_id()
    record = new_shared_link_record(user_type, access_type, now)
    await store.set(SessionKind.shared.collection, link_id, record)
    logger.info("shared link created link=%s user_type=%s", short_id(link_id), user_type)
    return link_id, record


async def _get_session(store: DocumentStore, kind: SessionKind, session_id: str) -> dict:
    record = await store.get(kind.collection, session_id)
    if record is None:
        raise NotFoundError("Session not found")
    return record


async def approve_session(
    store: DocumentStore,
    *,
    kind: SessionKind,
    session_id: str,
    ttl: timedelta,
    now: datetime | None = None,
) -> dict:
    """Approve a waiting session, exactly once.

    Direct sessions must be ``pending``. Shared links must be
    ``awaiting_auth`` with a visitor already bound to them.
    """
    now = now or utcnow()
    record = await _get_session(store, kind, session_id)
    status = record.get("status")

    if kind is SessionKind.direct:
        if status != SessionStatus.pending.value:
            raise InvalidTransitionError("Session is not pending approval")
    else:
        if status != SessionStatus.awaiting_auth.value or not record.get("visitorId"):
            raise InvalidTransitionError("No access request to approve")

    fields = {
        "status": SessionStatus.authenticated.value,
        "approvedAt": isoformat(now),
        "expiresAt": isoformat(now + ttl),
    }
    await store.update(kind.collection, session_id, fields)
    logger.info("session approved session=%s kind=%s", short_id(session_id), kind.value)
    return {**record, **fields}


async def extend_session(
    store: DocumentStore,
    *,
    kind: SessionKind,
    session_id: str,
    ttl: timedelta,
    now: datetime | None = None,
) -> dict:
    """Move the expiry of a live session to now + ttl."""
    now = now or utcnow()
    record = await _get_session(store, kind, session_id)
    if record.get("status") != SessionStatus.authenticated.value or is_expired(record, now):
        raise InvalidTransitionError("Session is not active")

    fields = {"expiresAt": isoformat(now + ttl)}
    await store.update(kind.collection, session_id, fields)
    logger.info("session extended session=%s kind=%s", short_id(session_id), kind.value)
    return {**record, **fields}


async def terminate_session(
    store: DocumentStore,
    *,
    kind: SessionKind,
    session_id: str,
) -> None:
    """Kill a session remotely. Watching consoles log out on the next event."""
    await store.delete(kind.collection, session_id)
    logger.info("session terminated session=%s kind=%s", short_id(session_id), kind.value)
